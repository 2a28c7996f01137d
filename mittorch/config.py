"""
Configuration for mittorch.

Two layers:

- ``Settings``: process-level settings loaded from environment variables
  (and a ``.env`` file) with sensible defaults. Checkouts and the log file
  live under ``data_dir`` (``./.data`` by default).
- ``DeployConfig``: what to deploy, read from a JSON file (``mittorch.json``)
  and immutable for the lifetime of the process.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

load_dotenv()

logger = logging.getLogger(__name__)

# Account and repository names end up in paths and URLs
NAME_PATTERN = r"^[A-Za-z0-9._-]+$"


@dataclass
class Settings:
    """mittorch process settings."""

    # Paths
    data_dir: Path = Path(os.environ.get("MITTORCH_DATA_DIR", ".data"))
    config_path: Path = Path(os.environ.get("MITTORCH_CONFIG", "mittorch.json"))
    log_file: Path = None

    # Logging
    log_level: str = os.environ.get("MITTORCH_LOG_LEVEL", "INFO")
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Process management
    shell: str = os.environ.get("MITTORCH_SHELL", "/bin/bash")
    stop_grace_seconds: float = float(os.environ.get("MITTORCH_STOP_GRACE", "1"))

    # Remote
    api_url: str = os.environ.get("MITTORCH_API_URL", "https://api.github.com")
    git_host: str = os.environ.get("MITTORCH_GIT_HOST", "github.com")
    http_timeout: float = float(os.environ.get("MITTORCH_HTTP_TIMEOUT", "30"))

    def __post_init__(self):
        """Initialize derived paths."""
        self.data_dir = Path(self.data_dir)
        self.config_path = Path(self.config_path)
        if self.log_file is None:
            self.log_file = self.data_dir / "mittorch.log"


class DeployConfig(BaseModel):
    """The repository to track and the process to run against it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    account: str = Field(..., pattern=NAME_PATTERN, description="GitHub account or organisation")
    repository: str = Field(..., pattern=NAME_PATTERN, description="Repository name")
    branch: str = Field(..., min_length=1, description="Branch to track")
    token: Optional[str] = Field(None, description="Access token for private repositories")
    interval: int = Field(60, ge=1, description="Seconds between reconciliation ticks")
    start_command: Optional[str] = Field(None, alias="start-command", description="Command that runs the process")
    stop_command: Optional[str] = Field(None, alias="stop-command", description="Command that stops it gracefully")

    @field_validator("token", "start_command", "stop_command", mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("repository")
    @classmethod
    def _not_a_relative_path(cls, value: str) -> str:
        if value in (".", ".."):
            raise ValueError("repository must be a repository name")
        return value


def load_config(path) -> DeployConfig:
    """Load and validate the deploy configuration, raising ConfigError on any problem."""
    path = Path(path)
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e

    try:
        raw = json.loads(data)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    try:
        deploy = DeployConfig.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid config in {path}: {problems}") from e

    logger.info(f"Loaded config from {path}")
    return deploy


settings = Settings()
