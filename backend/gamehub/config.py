"""GameHub realtime configuration.

Loads settings from a single YAML file:
  * gamehub.settings.yaml: non-secret configuration

Lookup order for the settings file:
  1. ``settings_path`` argument to :func:`load_config`
  2. ``GAMEHUB_SETTINGS_PATH`` environment variable
  3. ``./config/gamehub.settings.yaml``
  4. ``./gamehub.settings.yaml``

A missing file is not an error: every section has usable defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_ENV_VAR = "GAMEHUB_SETTINGS_PATH"
SETTINGS_FILENAME = "gamehub.settings.yaml"
DEFAULT_SETTINGS_PATHS = (
    Path("config") / SETTINGS_FILENAME,
    Path(SETTINGS_FILENAME),
)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_settings_path(settings_path: Optional[Union[str, Path]]) -> Path:
    if settings_path is not None:
        return Path(settings_path)
    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path)
    for candidate in DEFAULT_SETTINGS_PATHS:
        if candidate.exists():
            return candidate
    return DEFAULT_SETTINGS_PATHS[0]


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class RealtimeSettings(BaseModel):
    """Transport, reconnection and typing settings shared by server and client."""
    transport:              Literal["socket", "channel"] = "socket"
    endpoint_path:          str   = "/ws"
    channel_prefix:         str   = "event-"
    max_reconnect_attempts: int   = Field(default=5, ge=0)
    reconnect_base_delay:   float = Field(default=1.0, gt=0)
    reconnect_max_delay:    float = Field(default=30.0, gt=0)
    typing_ttl_seconds:     float = Field(default=3.0, gt=0)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "RealtimeSettings":
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_base_delay")
        return self


class MessageSettings(BaseModel):
    default_history_limit: int = Field(default=100, ge=1)
    max_history_limit:     int = Field(default=500, ge=1)
    max_content_length:    int = Field(default=4000, ge=1)

    @model_validator(mode="after")
    def _default_within_max(self) -> "MessageSettings":
        if self.default_history_limit > self.max_history_limit:
            raise ValueError("default_history_limit must be <= max_history_limit")
        return self


class StorageSettings(BaseModel):
    db_path: str = "gamehub.duckdb"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    messages: MessageSettings  = Field(default_factory=MessageSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object.

    Relative storage paths are resolved against the settings file directory,
    except the special DuckDB ``:memory:`` path which is kept verbatim.
    """
    path = _resolve_settings_path(settings_path)
    data = _load_yaml(path)

    config = AppConfig(**data)

    db_path = config.storage.db_path
    if db_path != ":memory:" and not Path(db_path).is_absolute() and path.exists():
        config.storage.db_path = str(path.parent.resolve() / db_path)

    logger.info(
        "Settings loaded from %s (transport=%s, max_reconnect_attempts=%d)",
        path,
        config.realtime.transport,
        config.realtime.max_reconnect_attempts,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide configuration (tests and embedding apps)."""
    global _config
    _config = config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None
