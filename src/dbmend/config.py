"""
Configuration system for dbmend using Pydantic.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError, MissingConfigurationError


class ReconcileConfig(BaseModel):
    """Reconciliation behaviour."""

    mode: Literal["apply", "safe", "dry_run"] = Field(
        "apply", description="Operation mode"
    )
    schema_name: str = Field("public", description="Schema holding the repaired tables")
    command_timeout: Optional[float] = Field(
        None, description="Per-statement timeout in seconds (none by default)"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class DbmendConfig(BaseSettings):
    """Main dbmend configuration."""

    database_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices(
            "database_url", "DATABASE_URL", "DBMEND_DATABASE_URL"
        ),
        description="Postgres connection string",
    )
    application_name: str = Field("dbmend", description="Reported application_name")

    reconcile: ReconcileConfig = Field(
        default_factory=ReconcileConfig, description="Reconciliation configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DBMEND_",
        env_nested_delimiter="__",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DbmendConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "DbmendConfig":
        """Load from a YAML file when given, otherwise from the environment."""
        if path:
            return cls.from_yaml(path)
        try:
            return cls()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def require_database_url(self) -> str:
        """Return the connection string or raise MissingConfigurationError."""
        if not self.database_url or not self.database_url.strip():
            raise MissingConfigurationError("DATABASE_URL")
        return self.database_url.strip()


def configure_logging(config: LoggingConfig, debug: bool = False) -> logging.Logger:
    """Configure the ``dbmend`` logger from a LoggingConfig."""
    logger = logging.getLogger("dbmend")
    logger.setLevel(logging.DEBUG if debug else getattr(logging, config.level))

    # Reconfiguring replaces handlers installed by a previous call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.file:
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
