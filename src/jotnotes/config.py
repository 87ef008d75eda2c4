"""Configuration module for jotnotes."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from jotnotes.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, lives next to the application config file
_USER_ENV = Path.home() / ".jotnotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_APP_CONFIG_PATH = Path.home() / ".jotnotes" / "config.json"


def _optional_path(env_var: str) -> Optional[Path]:
    value = os.getenv(env_var)
    return Path(value) if value else None


class AppConfig(BaseModel):
    """Contents of the application config file.

    The file is a JSON object whose only recognized key is ``notesRootPath``.
    The path is handed to the engine as-is; no validation happens here.
    """

    notes_root_path: Optional[str] = Field(default=None, alias="notesRootPath")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def load_app_config(path: Optional[Path] = None) -> AppConfig:
    """Load the application config file.

    A missing, unreadable or malformed file yields an empty config so that
    startup never fails on it.

    Args:
        path: Location of the config file. Defaults to ~/.jotnotes/config.json

    Returns:
        The parsed AppConfig.
    """
    config_path = Path(path) if path else DEFAULT_APP_CONFIG_PATH
    if not config_path.exists():
        return AppConfig()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object app config in {config_path}")
            return AppConfig()
        return AppConfig.model_validate(data)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load app config from {config_path}: {e}")
        return AppConfig()


def save_app_config(app_config: AppConfig, path: Optional[Path] = None) -> Path:
    """Write the application config file, creating its directory if needed.

    Returns:
        Path of the written file.
    """
    config_path = Path(path) if path else DEFAULT_APP_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(app_config.model_dump(by_alias=True), f, indent=2)
    return config_path


class JotConfig(BaseModel):
    """Runtime configuration for the note engine."""

    # Explicit notes root; overrides the app config file when set
    notes_root: Optional[Path] = Field(
        default_factory=lambda: _optional_path("JOT_NOTES_ROOT")
    )
    app_config_path: Path = Field(
        default_factory=lambda: (
            _optional_path("JOT_APP_CONFIG") or DEFAULT_APP_CONFIG_PATH
        )
    )
    # Quiet period before pending changes are flushed to disk
    debounce_seconds: float = Field(
        default_factory=lambda: float(os.getenv("JOT_DEBOUNCE_SECONDS", "0.8"))
    )
    # Per-note file operations run concurrently within one flush
    flush_workers: int = Field(
        default_factory=lambda: int(os.getenv("JOT_FLUSH_WORKERS", "4"))
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: _optional_path("JOT_LOG_DIR")
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("JOT_LOG_LEVEL", "INFO")
    )

    @model_validator(mode="after")
    def _validate_sync_settings(self) -> "JotConfig":
        """Reject settings the reconciliation engine cannot work with."""
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        if self.flush_workers < 1:
            raise ValueError("flush_workers must be >= 1")
        return self

    def resolve_notes_root(self) -> Optional[Path]:
        """Find the notes root: explicit setting first, then the app config file."""
        if self.notes_root is not None:
            return self.notes_root
        app_config = load_app_config(self.app_config_path)
        if app_config.notes_root_path:
            return Path(app_config.notes_root_path)
        return None

    def require_notes_root(self) -> Path:
        """Like resolve_notes_root, but raise when nothing is configured."""
        root = self.resolve_notes_root()
        if root is None:
            raise ConfigurationError(
                "No notes root configured. Set JOT_NOTES_ROOT or run 'jotnotes init PATH'",
                config_key="notesRootPath",
            )
        return root


# Create a global config instance
config = JotConfig()
