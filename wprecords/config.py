"""
Configuration management for wprecords.

Settings come from defaults, then the ``settings:`` mapping of a YAML config
file, then ``WPRECORDS_*`` environment variables (highest precedence).
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings

from wprecords.packages.exceptions import InvalidComposerVendor

ENV_PREFIX = "WPRECORDS_"
VENDOR_PATTERN = re.compile(r"^[a-z0-9_.-]+$")
DEVELOPMENT_ENVIRONMENTS = ("development", "local")


class Settings(BaseSettings):
    """Application settings."""

    # Storage
    storage_root: Path = Path("data/packages")
    temp_dir: Path = Path("data/tmp")
    state_dir: Path = Path("data/state")
    records_file: Path = Path("records.yaml")

    # Host install
    home_url: str = "http://localhost"
    document_root: str = ""
    plugins_dir: str = ""
    themes_dir: str = ""

    # Repository
    vendor: str = "wprecords"
    download_namespace: str = "wprecords"
    id_hash_salt: str = "wprecords"

    # Network
    environment: str = "production"
    download_timeout: int = 300
    github_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = {"env_prefix": ENV_PREFIX}

    @property
    def is_development(self) -> bool:
        return self.environment in DEVELOPMENT_ENVIRONMENTS

    @property
    def verify_tls(self) -> bool:
        return not self.is_development

    @property
    def allow_private_hosts(self) -> bool:
        return self.is_development

    def validate_vendor(self) -> None:
        """
        Check the Composer vendor name.

        Raises:
            InvalidComposerVendor: If the vendor is not a valid Composer vendor
        """
        if not VENDOR_PATTERN.match(self.vendor):
            raise InvalidComposerVendor.from_vendor(self.vendor)


def load_config(config_path: Path | str) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML config file

    Returns:
        Configuration dictionary (empty for an empty file)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        config = yaml.safe_load(f)

    return config or {}


def get_settings(config_path: Path | str | None = None) -> Settings:
    """
    Get application settings.

    Args:
        config_path: Optional YAML config file whose ``settings:`` mapping
            overrides the defaults

    Returns:
        Validated Settings instance

    Raises:
        InvalidComposerVendor: If the configured vendor is invalid
    """
    overrides: dict[str, Any] = {}
    if config_path is not None:
        config = load_config(config_path)
        overrides = config.get("settings", {}) or {}

    # Environment variables win over the config file
    overrides = {
        key: value
        for key, value in overrides.items()
        if f"{ENV_PREFIX}{key.upper()}" not in os.environ
    }

    settings = Settings(**overrides)
    settings.validate_vendor()
    return settings
