"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Validate settings and clamp optional ones to sane defaults.
- Expose a typed Settings object (ledger RPC, package id, DB URL, retry policy,
  API host/port, debug flag) used by the API server, ledger gateway and engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from backend_zombie.config.env import (
    get_package_id,
    get_sui_network,
    get_sui_rpc_url,
    load_zombie_env,
)

DEFAULT_DB_PATH = "zombie_index.db"
DEFAULT_CONFIRM_TIMEOUT_SEC = 30.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
DEFAULT_RPC_TIMEOUT_SEC = 15.0
DEFAULT_STORE_RETRY_ATTEMPTS = 3
DEFAULT_STORE_RETRY_BACKOFF_SEC = 0.5
LEDGER_BACKENDS = ("sui", "memory")


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _default_database_url() -> str:
    """ZOMBIE_DB_URL, DATABASE_URL for Postgres if set; else SQLite from ZOMBIE_DB_PATH or default."""
    url = (os.getenv("ZOMBIE_DB_URL") or os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("ZOMBIE_DB_PATH") or "").strip() or DEFAULT_DB_PATH
    return f"sqlite:///{path}"


@dataclass
class Settings:
    """Service configuration (env or explicit). Tests build it directly with overrides."""

    database_url: str = field(default_factory=_default_database_url)
    sui_network: str = field(default_factory=get_sui_network)
    sui_rpc_url: str = field(default_factory=get_sui_rpc_url)
    package_id: str = field(default_factory=get_package_id)
    ledger_backend: str = field(default_factory=lambda: (os.getenv("LEDGER_BACKEND") or "sui").strip().lower())
    confirm_timeout_sec: float = field(default_factory=lambda: _float_env("LEDGER_CONFIRM_TIMEOUT_SEC", DEFAULT_CONFIRM_TIMEOUT_SEC))
    confirm_poll_interval_sec: float = field(default_factory=lambda: _float_env("LEDGER_CONFIRM_POLL_INTERVAL_SEC", DEFAULT_CONFIRM_POLL_INTERVAL_SEC))
    rpc_timeout_sec: float = field(default_factory=lambda: _float_env("SUI_RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC))
    store_retry_attempts: int = field(default_factory=lambda: _int_env("STORE_RETRY_ATTEMPTS", DEFAULT_STORE_RETRY_ATTEMPTS))
    store_retry_backoff_sec: float = field(default_factory=lambda: _float_env("STORE_RETRY_BACKOFF_SEC", DEFAULT_STORE_RETRY_BACKOFF_SEC))
    debug: bool = field(default_factory=lambda: _parse_bool_env("DEBUG", False))
    api_host: str = field(default_factory=lambda: (os.getenv("API_HOST") or "0.0.0.0").strip())
    api_port: int = field(default_factory=lambda: _int_env("API_PORT", 8000))

    def __post_init__(self) -> None:
        if self.ledger_backend not in LEDGER_BACKENDS:
            raise ValueError(f"LEDGER_BACKEND must be one of {LEDGER_BACKENDS}, got {self.ledger_backend!r}")
        if self.confirm_timeout_sec <= 0:
            self.confirm_timeout_sec = DEFAULT_CONFIRM_TIMEOUT_SEC
        if self.confirm_poll_interval_sec <= 0:
            self.confirm_poll_interval_sec = DEFAULT_CONFIRM_POLL_INTERVAL_SEC
        if self.store_retry_attempts < 1:
            self.store_retry_attempts = 1
        if self.store_retry_backoff_sec < 0:
            self.store_retry_backoff_sec = 0.0


def get_settings() -> Settings:
    """
    Return the current application settings.

    Reads the environment (after loading .env) on every call; the API server
    calls it once at app creation.
    """
    load_zombie_env()
    return Settings()
