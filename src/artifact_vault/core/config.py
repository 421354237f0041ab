"""
Service configuration.

Settings are read from ``AV_*`` environment variables, optionally layered
on top of a YAML file named by ``AV_CONFIG_FILE``. Environment variables
always win over the file.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from artifact_vault.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 90

# Settings field -> environment variable
ENV_VARS: dict[str, str] = {
    "data_dir": "AV_DATA_DIR",
    "default_retention_days": "AV_DEFAULT_RETENTION_DAYS",
    "max_artifacts_per_run": "AV_MAX_ARTIFACTS_PER_RUN",
    "reaper_enabled": "AV_REAPER_ENABLED",
    "reaper_interval_seconds": "AV_REAPER_INTERVAL_SECONDS",
    "expired_grace_hours": "AV_EXPIRED_GRACE_HOURS",
    "stale_pending_hours": "AV_STALE_PENDING_HOURS",
    "token_secret": "AV_TOKEN_SECRET",
    "url_expiry_seconds": "AV_URL_EXPIRY_SECONDS",
}


class RepositorySettings(BaseModel):
    """Per-repository overrides."""

    retention_days: int | None = Field(
        default=None,
        ge=MIN_RETENTION_DAYS,
        le=MAX_RETENTION_DAYS,
        description="Default retention for artifacts uploaded by this repository",
    )


class ServiceSettings(BaseModel):
    """Configuration for the artifact service."""

    data_dir: Path = Field(
        default=Path("var/artifacts"), description="Root for the registry database and blobs"
    )
    default_retention_days: int = Field(
        default=MAX_RETENTION_DAYS,
        ge=MIN_RETENTION_DAYS,
        le=MAX_RETENTION_DAYS,
        description="Retention applied when neither caller nor repository sets one",
    )
    max_artifacts_per_run: int = Field(
        default=500, ge=1, description="Hard cap on live artifacts per run"
    )
    reaper_enabled: bool = Field(
        default=True, description="Run the retention reaper inside the API process"
    )
    reaper_interval_seconds: float = Field(
        default=300.0, gt=0, description="Seconds between reaper passes"
    )
    expired_grace_hours: float = Field(
        default=24.0, ge=0, description="How long expired metadata is kept for auditing"
    )
    stale_pending_hours: float = Field(
        default=6.0, gt=0, description="Age after which unsealed uploads are discarded"
    )
    token_secret: str = Field(
        default="", description="HMAC secret for capability tokens and signed URLs"
    )
    url_expiry_seconds: int = Field(
        default=600, ge=1, description="Lifetime of signed download locators"
    )
    repositories: dict[str, RepositorySettings] = Field(
        default_factory=dict, description="Per-repository overrides keyed by repository id"
    )

    @property
    def registry_path(self) -> Path:
        """SQLite registry location."""
        return self.data_dir / "registry.db"

    @property
    def blobs_dir(self) -> Path:
        """Directory holding sealed bundles."""
        return self.data_dir / "blobs"

    def retention_days_for(self, repository_id: str) -> int:
        """Return the default retention for a repository."""
        override = self.repositories.get(repository_id)
        if override and override.retention_days is not None:
            return override.retention_days
        return self.default_retention_days


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML settings file."""
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            config_file=str(path),
        )
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file: {e}",
            config_file=str(path),
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping",
            config_file=str(path),
        )
    return data


def load_settings(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServiceSettings:
    """
    Load settings from an optional YAML file and the environment.

    Args:
        config_file: YAML file to read (defaults to AV_CONFIG_FILE)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated ServiceSettings

    Raises:
        ConfigurationError: If the file or any value is invalid
    """
    environ = os.environ if environ is None else environ

    data: dict[str, Any] = {}
    file_path = config_file or (Path(environ["AV_CONFIG_FILE"]) if environ.get("AV_CONFIG_FILE") else None)
    if file_path is not None:
        data.update(_load_yaml(file_path))
        logger.debug(f"Loaded settings from {file_path}")

    for field_name, env_var in ENV_VARS.items():
        value = environ.get(env_var)
        if value:
            data[field_name] = value

    try:
        return ServiceSettings(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        config_key = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration value for '{config_key}': {first.get('msg')}",
            config_file=str(file_path) if file_path else None,
            env_var=ENV_VARS.get(config_key),
            config_key=config_key,
        ) from e


@lru_cache(maxsize=1)
def get_settings() -> ServiceSettings:
    """Get the process-wide settings."""
    return load_settings()
