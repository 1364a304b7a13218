"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the ledger.
All parameters are loaded from YAML and validated using Pydantic models.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from peptide_ledger.utils.exceptions import ConfigurationError


class LedgerConfig(BaseModel):
    """Dose arithmetic and vial lifecycle configuration."""

    default_typical_dose: float = Field(300.0, gt=0)
    default_dose_unit: str = "mcg"
    clamp_credit_to_initial: bool = False
    low_stock_threshold: int = Field(3, ge=0)
    vial_shelf_life_days: int = Field(35, gt=0)
    default_bac_water_ml: float = Field(2.0, gt=0)
    timezone: str = "UTC"


class StorageConfig(BaseModel):
    """Backing store configuration."""

    environment: str = Field("development", pattern="^(development|production)$")
    data_dir: str = "data"
    max_retries: int = Field(3, ge=1)
    retry_wait_seconds: float = Field(0.5, ge=0)

    def environment_dir(self) -> Path:
        """Directory holding the documents of the configured environment."""
        return Path(self.data_dir) / self.environment


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(env_prefix="PEPTIDE_LEDGER_", case_sensitive=False)


class ParameterLoader:
    """
    Centralized parameter loader for the application.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            self.config = AppConfig(**config_dict)

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_ledger_config(self) -> LedgerConfig:
        """Get dose arithmetic configuration."""
        return self.config.ledger

    def get_storage_config(self) -> StorageConfig:
        """Get backing store configuration."""
        return self.config.storage

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging

    def get_raw_config(self) -> dict[str, Any]:
        """
        Get raw configuration dictionary.

        Returns:
            Dictionary representation of the configuration.
        """
        return self.config.model_dump()
