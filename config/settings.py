"""
config/settings.py — Overlay Chat Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - GatewayConfig picks the gateway base URL from a named environment
    (local / prod) unless base_url overrides it
  - ReconnectConfig carries the transport's backoff tuning; it is handed to
    the Socket.IO client untouched, the connection never re-implements it
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects OVERLAY_CHAT_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import tempfile
import threading as _threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from exceptions import ConfigError

__all__ = [
    "ConfigError",
    "GatewayConfig",
    "LoggingConfig",
    "ReconnectConfig",
    "Settings",
    "get_settings",
    "load_settings",
]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

ENVIRONMENT_URLS: dict[str, str] = {
    # http for local dev; the client upgrades to a websocket itself
    "local": "http://localhost:8081",
    "prod":  "https://your-chat-gateway-domain.com",
}


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https", "ws", "wss") and bool(parsed.netloc)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class ReconnectConfig(BaseModel):
    """Backoff policy passed straight to the Socket.IO client."""
    initial_delay: float = 2.0
    max_delay: float = 10.0
    randomization_factor: float = 0.5
    max_attempts: int = 0          # 0 = never give up

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def _positive_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.reconnect delays must be > 0")
        return v

    @field_validator("randomization_factor")
    @classmethod
    def _valid_jitter(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("gateway.reconnect.randomization_factor must be between 0.0 and 1.0")
        return v

    @field_validator("max_attempts")
    @classmethod
    def _non_negative_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("gateway.reconnect.max_attempts must be >= 0 (0 = unlimited)")
        return v


class GatewayConfig(BaseModel):
    env: str = "local"
    base_url: Optional[str] = None
    path: str = "/ws"
    websocket_only: bool = True
    presence_tick_seconds: float = 1.0
    image_dir: Optional[str] = None
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)

    @field_validator("env")
    @classmethod
    def _known_env(cls, v: str) -> str:
        v = v.lower()
        if v not in ENVIRONMENT_URLS:
            raise ValueError(
                f"gateway.env must be one of {sorted(ENVIRONMENT_URLS)}, got '{v}'"
            )
        return v

    @field_validator("base_url")
    @classmethod
    def _valid_base_url(cls, v: Optional[str]) -> Optional[str]:
        if v in (None, ""):
            return None
        if not _is_http_url(v):
            raise ValueError(f"gateway.base_url '{v}' is not an http(s) or ws(s) URL")
        return v.rstrip("/")

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        v = v.strip() or "/ws"
        return v if v.startswith("/") else "/" + v

    @field_validator("presence_tick_seconds")
    @classmethod
    def _positive_tick(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.presence_tick_seconds must be > 0")
        return v

    @field_validator("reconnect", mode="before")
    @classmethod
    def _coerce_reconnect(cls, v: Any) -> Any:
        return ReconnectConfig(**v) if isinstance(v, dict) else v

    @property
    def url(self) -> str:
        """Effective gateway URL (explicit base_url wins over env)."""
        return self.base_url or ENVIRONMENT_URLS[self.env]

    @property
    def image_directory(self) -> Path:
        """Where received images are materialized."""
        if self.image_dir:
            return Path(self.image_dir).expanduser()
        return Path(tempfile.gettempdir()) / "overlay-chat-images"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 3
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Overlay chat runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    gateway_token: Optional[str] = Field(default=None, alias="CHAT_GATEWAY_TOKEN")
    gateway_url_override: Optional[str] = Field(default=None, alias="CHAT_GATEWAY_URL")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    @field_validator("gateway_token", "gateway_url_override", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # -- Convenience properties ----------------------------------------------

    @property
    def gateway_url(self) -> str:
        return self.gateway_url_override or self.gateway.url

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches cross-field problems (env override URL, inverted backoff bounds,
        an image directory that exists but is not a directory).
        """
        errors: list[str] = []

        if self.gateway_url_override and not _is_http_url(self.gateway_url_override):
            errors.append(
                f"CHAT_GATEWAY_URL '{self.gateway_url_override}' is not an "
                f"http(s) or ws(s) URL."
            )

        rc = self.gateway.reconnect
        if rc.max_delay < rc.initial_delay:
            errors.append(
                f"gateway.reconnect.max_delay ({rc.max_delay}) must be >= "
                f"initial_delay ({rc.initial_delay})."
            )

        image_dir = self.gateway.image_directory
        if image_dir.exists() and not image_dir.is_dir():
            errors.append(
                f"gateway.image_dir '{image_dir}' exists and is not a directory."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nOverlay chat startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"gateway", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. OVERLAY_CHAT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("OVERLAY_CHAT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build_settings(config_path: str | Path | None) -> Settings:
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    Config path resolution order:
      1. config_path argument  (--config CLI flag)
      2. OVERLAY_CHAT_CONFIG env var
      3. config/config.yaml   (default)
    """
    global _singleton
    instance = _build_settings(config_path)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default path on
    first use. Guarded by _singleton_lock against double initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton  # fast path, no lock needed once set
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build_settings(None)
        return _singleton
