"""Tests for datasource selection and the thumbnail worker command."""

import pytest
from click.testing import CliRunner

from sharehub.config.settings import ConfigManager, DatasourceSettings
from sharehub.core.datasource import (
    LocalDatasource,
    S3Datasource,
    create_datasource,
    open_datasource,
)
from sharehub.core.errors import StorageError
from sharehub.offload.cli import build_worker, main


@pytest.fixture(autouse=True)
def reset_config():
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


class TestDatasourceSelection:
    def test_local(self, tmp_path):
        settings = DatasourceSettings(type="local", local={"base_dir": str(tmp_path)})

        datasource = create_datasource(settings, chunk_size=2048)

        assert isinstance(datasource, LocalDatasource)
        assert datasource.name == "local"
        assert datasource.chunk_size == 2048

    def test_s3(self):
        settings = DatasourceSettings(
            type="s3", s3={"bucket": "shares", "region": "eu-west-1"})

        datasource = create_datasource(settings)

        assert isinstance(datasource, S3Datasource)
        assert datasource.name == "s3"
        assert datasource.bucket == "shares"

    @pytest.mark.asyncio
    async def test_unreachable_backend_is_fatal(self, tmp_path):
        blocker = tmp_path / "occupied"
        blocker.write_text("not a directory")
        settings = DatasourceSettings(type="local", local={"base_dir": str(blocker)})

        with pytest.raises(StorageError):
            await open_datasource(settings)


class TestWorkerCommand:
    def test_build_worker_from_config(self, config_manager, database, datasource):
        worker = build_worker(config_manager, datasource, database)

        assert worker.dispatcher.max_attempts == 2
        assert worker.dispatcher.poll_interval == 0.01
        assert worker.size == (320, 320)
        assert worker.max_source_bytes == 50 * 1024 * 1024

    def test_refuses_to_start_without_storage(self, config_path, tmp_path):
        blocker = tmp_path / "occupied"
        blocker.write_text("not a directory")
        text = config_path.read_text().replace(
            str(config_path.parent / "data"), str(blocker))
        config_path.write_text(text)

        result = CliRunner().invoke(main, ["--config", str(config_path)])

        assert result.exit_code == 1
        assert "Datasource unavailable" in result.output
