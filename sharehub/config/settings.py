"""
Configuration Manager for ShareHub using Pydantic Settings.

This module provides a type-safe configuration system with:
- Automatic config file discovery
- Environment variable override support with proper type conversion
- Configuration validation with clear error messages
- No circular dependencies with logging

Environment variables use the format SHAREHUB_SECTION__KEY, for example
SHAREHUB_DATASOURCE__TYPE=s3 or SHAREHUB_DATABASE__CONNECTION_STRING=...
"""

from __future__ import annotations

import os
import yaml
import logging
from typing import Any, ClassVar, Literal
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


# Use basic logging during config initialization (before custom logger is
# set up)
_basic_logger = logging.getLogger(__name__)


class LocalDatasourceSettings(BaseModel):
    """Settings for the local filesystem datasource."""
    base_dir: str = Field(default=".sharehub/data",
                          description="Root directory for stored objects")


class S3DatasourceSettings(BaseModel):
    """Settings for an S3-compatible object store."""
    bucket: str = Field(default="sharehub", description="Bucket name")
    endpoint_url: str | None = Field(
        default=None,
        description="Endpoint for S3-compatible stores (None = AWS)")
    region: str = Field(default="us-east-1")
    access_key_id: str | None = Field(default=None)
    secret_access_key: str | None = Field(default=None)
    force_path_style: bool = Field(
        default=False,
        description="Use path-style addressing (MinIO and friends)")
    part_size_mb: int = Field(
        default=8, ge=5, le=512,
        description="Multipart upload part size")


class DatasourceSettings(BaseModel):
    """Physical storage backend selection. Immutable for the process."""
    type: Literal["local", "s3"] = Field(
        default="local", description="Datasource type")
    local: LocalDatasourceSettings = Field(
        default_factory=LocalDatasourceSettings)
    s3: S3DatasourceSettings = Field(default_factory=S3DatasourceSettings)


class DatabaseSettings(BaseModel):
    """Persistence for file, folder and job records."""
    connection_string: str = Field(
        default="sqlite:///.sharehub/sharehub.db",
        description="SQLAlchemy connection string"
    )


class FileSettings(BaseModel):
    """Upload and streaming limits."""
    max_upload_mb: int = Field(default=100, ge=1, le=100000)
    chunk_size_kb: int = Field(
        default=64, ge=1, le=16384,
        description="Chunk size used when streaming bytes")
    key_length: int = Field(
        default=12, ge=6, le=64,
        description="Random characters in generated storage keys")
    default_visibility: Literal["public", "private"] = Field(default="public")


class ThumbnailSettings(BaseModel):
    """Offload worker configuration."""
    enabled: bool = Field(default=True,
                          description="Enqueue thumbnail jobs on upload")
    width: int = Field(default=320, ge=16, le=4096)
    height: int = Field(default=320, ge=16, le=4096)
    quality: int = Field(default=80, ge=1, le=95)
    max_attempts: int = Field(
        default=3, ge=0, le=100,
        description="Retry ceiling before a failing job is dropped")
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    decode_timeout_seconds: float = Field(default=30.0, gt=0)
    max_source_mb: int = Field(default=50, ge=1, le=10000)
    stale_after_seconds: int = Field(
        default=600, ge=1,
        description="Requeue jobs stuck in processing for longer than this")


class ExpirationSettings(BaseModel):
    """Expiration sweep scheduling."""
    sweep_enabled: bool = Field(default=True)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class APISettings(BaseModel):
    """API configuration."""
    host: str = Field(default="0.0.0.0", description="Host for uvicorn")
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port for uvicorn")
    identity_header: str = Field(
        default="X-User-Id",
        description="Header carrying the caller id set by the auth proxy")
    password_header: str = Field(
        default="X-File-Password",
        description="Header carrying a password for protected files")


class LoggingSettings(BaseModel):
    """Logging configuration (raw dict for logging.config.dictConfig)."""
    version: int = Field(default=1)
    disable_existing_loggers: bool = Field(default=False)
    formatters: dict[str, Any] = Field(default_factory=dict)
    handlers: dict[str, Any] = Field(default_factory=dict)
    root: dict[str, Any] = Field(default_factory=dict)
    loggers: dict[str, Any] = Field(default_factory=dict)

    # Allow extra fields for logging config flexibility
    model_config = {'extra': 'allow'}


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from a YAML file, overrides values from
    environment variables and validates the result.
    """

    datasource: DatasourceSettings = Field(default_factory=DatasourceSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    files: FileSettings = Field(default_factory=FileSettings)
    thumbnails: ThumbnailSettings = Field(default_factory=ThumbnailSettings)
    expiration: ExpirationSettings = Field(default_factory=ExpirationSettings)
    api: APISettings = Field(default_factory=APISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="SHAREHUB_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # YAML data handed from from_yaml() to the custom settings source
    _yaml_data: ClassVar[dict[str, Any] | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Priority (highest to lowest):
        1. Environment variables
        2. YAML file data (if loaded via from_yaml)
        3. Init arguments and defaults
        """
        class YamlSettingsSource(PydanticBaseSettingsSource):
            def get_field_value(
                    self, field: Any, field_name: str) -> tuple[Any, str, bool]:
                data = cls._yaml_data or {}
                if field_name in data:
                    return data[field_name], field_name, False
                return None, field_name, False

            def __call__(self) -> dict[str, Any]:
                return dict(cls._yaml_data or {})

        return (
            env_settings,
            YamlSettingsSource(settings_cls),
            init_settings,
        )

    @classmethod
    def from_yaml(cls, config_path: str | None = None) -> 'AppSettings':
        """
        Load configuration from YAML file with fallback search strategy.

        Search order:
        1. SHAREHUB_CONFIG_PATH environment variable (if set)
        2. ./config.yaml (working directory)
        3. sharehub/config/config.yaml (package defaults)

        Args:
            config_path: Explicit path to config file (skips search if provided)

        Returns:
            AppSettings instance

        Raises:
            FileNotFoundError: If no config file is found in any location
            ValueError: If config file has invalid structure or values
        """
        if config_path is None:
            config_path = cls._find_config_file()

        _basic_logger.info(f"Loading configuration from: {config_path}")

        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            _basic_logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}\n"
                f"Tried search paths: {cls._get_search_paths()}"
            )
        except yaml.YAMLError as e:
            _basic_logger.error(f"Invalid YAML in config file: {e}")
            raise ValueError(
                f"Invalid YAML in configuration file {config_path}: {e}")

        if not isinstance(config_data, dict):
            raise ValueError(
                f"Configuration file {config_path} must contain a mapping")

        cls._yaml_data = config_data
        try:
            settings = cls()
            _basic_logger.info(
                "Configuration loaded and validated successfully")
            return settings
        except ValidationError as e:
            _basic_logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Configuration validation failed:\n{e}")
        finally:
            cls._yaml_data = None

    @staticmethod
    def _get_search_paths() -> list[str]:
        """Get list of paths to search for config file."""
        return [
            os.getenv("SHAREHUB_CONFIG_PATH", ""),
            "./config.yaml",
            os.path.join(os.path.dirname(__file__), "config.yaml"),
        ]

    @classmethod
    def _find_config_file(cls) -> str:
        """
        Search for config file in multiple locations.

        Raises:
            FileNotFoundError: If no config file is found
        """
        search_paths = cls._get_search_paths()

        for path in search_paths:
            if path and os.path.isfile(path):
                _basic_logger.debug(f"Found config file at: {path}")
                return path

        error_msg = (
            "No configuration file found. Searched in:\n" +
            "\n".join(f"  - {p}" for p in search_paths if p) +
            "\n\nPlease either:\n"
            "  1. Set SHAREHUB_CONFIG_PATH environment variable\n"
            "  2. Place config.yaml in the working directory"
        )
        _basic_logger.error(error_msg)
        raise FileNotFoundError(error_msg)


class ConfigManager:
    """
    Singleton wrapper around AppSettings shared by the API process and the
    offload worker.
    """

    _instance: 'ConfigManager' | None = None
    _settings: AppSettings | None = None
    _config_path: str | None = None

    @classmethod
    def get_instance(cls) -> 'ConfigManager':
        """Get singleton instance of ConfigManager."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton instance (for testing)."""
        cls._instance = None
        cls._settings = None
        cls._config_path = None

    def load(self, config_path: str | None = None) -> dict[str, Any]:
        """
        Load configuration from file.

        Args:
            config_path: Optional path to config file

        Returns:
            Configuration as dictionary
        """
        if self._settings is not None and config_path is None:
            return self._settings.model_dump()

        self._config_path = config_path
        self._settings = AppSettings.from_yaml(config_path)

        return self._settings.model_dump()

    @property
    def settings(self) -> AppSettings:
        """Validated settings, loading them on first access."""
        if self._settings is None:
            self.load()
        return self._settings

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Config key in dot notation (e.g., "datasource.type")
            default: Default value if key not found
        """
        value = self.settings.model_dump()

        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_config_path(self) -> str | None:
        """Get path to loaded configuration file."""
        return self._config_path

    @property
    def datasource(self) -> DatasourceSettings:
        return self.settings.datasource

    @property
    def database_connection_string(self) -> str:
        return self.settings.database.connection_string

    @property
    def files(self) -> FileSettings:
        return self.settings.files

    @property
    def thumbnails(self) -> ThumbnailSettings:
        return self.settings.thumbnails

    @property
    def expiration(self) -> ExpirationSettings:
        return self.settings.expiration

    @property
    def api(self) -> APISettings:
        return self.settings.api

    @property
    def logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self.settings.logging.model_dump()


def get_config_manager() -> ConfigManager:
    """
    Get the ConfigManager singleton instance.

    Returns:
        ConfigManager instance
    """
    return ConfigManager.get_instance()


__all__ = [
    'ConfigManager',
    'AppSettings',
    'get_config_manager',
    'DatasourceSettings',
    'LocalDatasourceSettings',
    'S3DatasourceSettings',
    'DatabaseSettings',
    'FileSettings',
    'ThumbnailSettings',
    'ExpirationSettings',
    'APISettings',
    'LoggingSettings',
]
