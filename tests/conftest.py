"""
ShareHub test configuration.

This module provides pytest fixtures for setting up test environments, including:
- Temporary project directories and configuration files
- A SQLite database and local datasource per test
- Lifecycle manager, folder aggregator and job dispatcher wired together
- API client setup
"""

import pytest
import os
from fastapi.testclient import TestClient
from sharehub.config.settings import ConfigManager
from sharehub.core.database import Database
from sharehub.core.datasource import LocalDatasource
from sharehub.core.files import (
    FileLifecycleManager,
    FolderAggregator,
    SQLFileRepository,
    SQLFolderRepository,
)
from sharehub.core.jobs import JobDispatcher, SQLJobQueue


# Session-level fixture to clear environment variables before any tests run
@pytest.fixture(scope="session", autouse=True)
def clear_env_vars():
    """
    Clear SHAREHUB environment variables at session start.

    This ensures that environment variables from .env files don't interfere
    with test isolation.
    """
    original_values = {
        var: value for var, value in os.environ.items()
        if var.startswith("SHAREHUB_")
    }
    for var in original_values:
        del os.environ[var]

    yield

    for var, value in original_values.items():
        os.environ[var] = value


@pytest.fixture
def test_project_dir(tmp_path):
    """Creates a project directory for one test."""
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def config_path(test_project_dir):
    """Writes a complete config file pointing at the test project directory."""
    config_path = test_project_dir / "test_config.yaml"
    config_path.write_text(f"""
datasource:
  type: local
  local:
    base_dir: "{test_project_dir / 'data'}"

database:
  connection_string: "sqlite:///{test_project_dir / 'sharehub.db'}"

files:
  max_upload_mb: 1
  chunk_size_kb: 4

thumbnails:
  enabled: true
  max_attempts: 2
  poll_interval_seconds: 0.01

expiration:
  sweep_enabled: false

logging:
  version: 1
  disable_existing_loggers: false
  formatters:
    default:
      format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  handlers:
    file:
      class: logging.FileHandler
      filename: "{test_project_dir / 'logs' / 'sharehub.log'}"
      formatter: default
      level: DEBUG
  loggers:
    sharehub:
      level: DEBUG
      handlers: [file]
""")
    return config_path


@pytest.fixture
def config_manager(config_path):
    """A ConfigManager loaded from the test config, reset afterwards."""
    ConfigManager.reset_instance()
    manager = ConfigManager.get_instance()
    manager.load(str(config_path))

    yield manager

    ConfigManager.reset_instance()


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    yield db
    db.dispose()


@pytest.fixture
def file_repository(database):
    return SQLFileRepository(database)


@pytest.fixture
def folder_repository(database):
    return SQLFolderRepository(database)


@pytest.fixture
def datasource(tmp_path):
    return LocalDatasource(str(tmp_path / "data"), chunk_size=1024)


@pytest.fixture
def dispatcher(database):
    return JobDispatcher(SQLJobQueue(database), max_attempts=3, poll_interval=0.01)


@pytest.fixture
def lifecycle(datasource, file_repository, folder_repository, dispatcher):
    return FileLifecycleManager(
        datasource,
        file_repository,
        folder_repository,
        dispatcher,
        max_upload_bytes=64 * 1024,
    )


@pytest.fixture
def folders(folder_repository, file_repository):
    return FolderAggregator(folder_repository, file_repository)


@pytest.fixture
def api_client(config_manager):
    """
    Creates an API client backed by the test project directory.

    Entering the client runs the application lifespan, so the datasource,
    database and managers are built exactly as in production.
    """
    from sharehub.main import create_app

    app = create_app(config_manager)
    with TestClient(app, base_url="http://testserver") as client:
        yield client
