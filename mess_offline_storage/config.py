"""
Configuration for the offline storage layer.

Every component takes a small dataclass config with safe defaults.
Configs can be built from environment variables or from the ``offline``
section of a YAML settings file:

```yaml
offline:
  store:
    db_path: ~/.mess/mess_manager.db
    lock_timeout: 5.0
  sync:
    sync_interval: 30.0
  health:
    check_interval: 30.0
    enable_auto_recovery: true
  init:
    max_retries: 5
  api:
    base_url: https://api.example.com/api
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ValidationError

DEFAULT_DB_NAME = "mess_manager.db"

# Read-only remote paths. A queued item against one of these is replayed as GET.
DEFAULT_GET_ONLY_ENDPOINTS: tuple[str, ...] = (
    "/health",
    "/dashboard",
    "/dashboard/stats",
    "/dashboard/activities",
    "/meals/user",
    "/meals/all",
    "/meals/stats",
    "/bazar/user",
    "/bazar/all",
    "/bazar/stats",
    "/users/all",
    "/users/profile",
    "/analytics",
)


@dataclass
class StoreConfig:
    """Configuration for the embedded SQLite store."""

    db_path: str | Path = DEFAULT_DB_NAME
    busy_timeout_ms: int = 30000
    lock_timeout: float = 5.0  # seconds before a held lock is force-released
    max_retries: int = 3
    retry_delay: float = 0.1  # linear: attempt * retry_delay
    reset_delay: float = 0.5  # pause between hard reset steps
    emergency_reset_delay: float = 1.0  # pause between emergency reset steps

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Create config from environment variables."""
        return cls(
            db_path=os.environ.get("MESS_OFFLINE_DB_PATH", DEFAULT_DB_NAME),
            lock_timeout=float(os.environ.get("MESS_OFFLINE_LOCK_TIMEOUT", "5.0")),
        )


@dataclass
class SyncConfig:
    """Configuration for the sync queue drain loop and cache."""

    sync_interval: float = 30.0
    item_timeout: float = 30.0
    max_retries: int = 3
    cache_expiry: float = 24 * 60 * 60.0
    cache_sweep_interval: float = 300.0
    get_only_endpoints: tuple[str, ...] = DEFAULT_GET_ONLY_ENDPOINTS

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from environment variables."""
        return cls(
            sync_interval=float(os.environ.get("MESS_OFFLINE_SYNC_INTERVAL", "30.0")),
            item_timeout=float(os.environ.get("MESS_OFFLINE_SYNC_TIMEOUT", "30.0")),
        )


@dataclass
class HealthCheckConfig:
    """Configuration for the store health monitor."""

    check_interval: float = 30.0
    max_consecutive_failures: int = 3
    timeout: float = 5.0
    enable_auto_recovery: bool = True
    response_window: int = 10


@dataclass
class InitializationConfig:
    """Configuration for first-boot initialization."""

    max_retries: int = 5
    retry_delay: float = 1.0  # exponential: retry_delay * 2 ** (attempt - 1)
    initialization_timeout: float = 30.0
    cooldown: float = 5.0
    enable_health_monitoring: bool = True
    emergency_reset_after: int = 3


@dataclass
class ApiConfig:
    """Configuration for the remote API client."""

    base_url: str = "http://localhost:3000/api"
    auth_token: str | None = None
    timeout: float = 30.0
    health_path: str = "/health"

    @classmethod
    def from_env(cls) -> ApiConfig:
        """Create config from environment variables."""
        return cls(
            base_url=os.environ.get("MESS_OFFLINE_API_URL", "http://localhost:3000/api"),
            auth_token=os.environ.get("MESS_OFFLINE_API_TOKEN"),
        )


@dataclass
class OfflineConfig:
    """Aggregate configuration for the whole offline layer."""

    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    health: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    init: InitializationConfig = field(default_factory=InitializationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @classmethod
    def from_env(cls) -> OfflineConfig:
        """Create config from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            sync=SyncConfig.from_env(),
            api=ApiConfig.from_env(),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> OfflineConfig:
        """Load config from the ``offline`` section of a YAML settings file.

        Missing file or missing section yields the defaults. Unknown keys
        raise ValidationError so typos do not pass silently.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        section = raw.get("offline") or {}
        if not isinstance(section, dict):
            raise ValidationError("offline", "must be a mapping")

        return cls(
            store=_build(StoreConfig, section.get("store"), "store"),
            sync=_build(SyncConfig, section.get("sync"), "sync"),
            health=_build(HealthCheckConfig, section.get("health"), "health"),
            init=_build(InitializationConfig, section.get("init"), "init"),
            api=_build(ApiConfig, section.get("api"), "api"),
        )


def _build(config_cls: type, values: dict[str, Any] | None, section: str) -> Any:
    if not values:
        return config_cls()
    known = {f.name for f in fields(config_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValidationError(section, f"unknown keys: {', '.join(sorted(unknown))}")
    if "get_only_endpoints" in values:
        values = {**values, "get_only_endpoints": tuple(values["get_only_endpoints"])}
    if "db_path" in values:
        values = {**values, "db_path": Path(str(values["db_path"])).expanduser()}
    return config_cls(**values)
