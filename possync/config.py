"""Configuration loading for possync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "possync-node"


@dataclass
class RemoteConfig:
    """Connection to the PostgREST-style backend."""

    url: str = "http://localhost:54321"
    api_key: str | None = None
    schema: str = "public"
    timeout_seconds: float = 30.0


@dataclass
class RealtimeConfig:
    """Connection to the MQTT change feed."""

    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "possync"
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    connect_timeout_seconds: float = 10.0
    reconnect_base_seconds: float = 1.0
    reconnect_max_seconds: float = 60.0


@dataclass
class StoreConfig:
    db_path: str = "~/.possync/possync.db"


@dataclass
class SyncConfig:
    """Configuration for the push/pull engine and its scheduler."""

    enabled: bool = True
    interval_minutes: int = 15
    batch_size: int = 50
    max_retries: int = 3  # per queue entry, across cycles
    job_max_attempts: int = 3  # per scheduled job
    backoff_base_seconds: float = 10.0
    backoff_max_seconds: float = 300.0
    pull_after_push: bool = True
    connectivity_poll_seconds: float = 30.0
    connectivity_cache_seconds: float = 5.0


@dataclass
class SessionConfig:
    """Tenant used by the CLI when none is given on the command line."""

    tenant_id: str = ""
    user_id: str | None = None


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with POSSYNC_ prefix."""
    return os.environ.get(f"POSSYNC_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if api_key := _get_env("REMOTE_API_KEY"):
        config.remote.api_key = api_key
    if schema := _get_env("REMOTE_SCHEMA"):
        config.remote.schema = schema
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    # Realtime overrides
    if rt_enabled := _get_env("REALTIME_ENABLED"):
        config.realtime.enabled = _as_bool(rt_enabled)
    if broker := _get_env("REALTIME_BROKER"):
        config.realtime.broker = broker
    if port := _get_env("REALTIME_PORT"):
        config.realtime.port = int(port)
    if prefix := _get_env("REALTIME_TOPIC_PREFIX"):
        config.realtime.topic_prefix = prefix
    if username := _get_env("REALTIME_USERNAME"):
        config.realtime.username = username
    if password := _get_env("REALTIME_PASSWORD"):
        config.realtime.password = password

    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_minutes = int(interval)
    if batch_size := _get_env("SYNC_BATCH_SIZE"):
        config.sync.batch_size = int(batch_size)
    if max_retries := _get_env("SYNC_MAX_RETRIES"):
        config.sync.max_retries = int(max_retries)

    # Session overrides
    if tenant_id := _get_env("TENANT_ID"):
        config.session.tenant_id = tenant_id
    if user_id := _get_env("USER_ID"):
        config.session.user_id = user_id

    return config


def _section(data: dict, cls: type, current: Any) -> Any:
    """Build a section dataclass from YAML, keeping current values for absent keys."""
    known = cls.__dataclass_fields__
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return cls(**{name: data.get(name, getattr(current, name)) for name in known})


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.

    Raises:
        ValueError: If a section contains keys this version does not know.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = _section(data["node"] or {}, NodeConfig, config.node)
            if "remote" in data:
                config.remote = _section(data["remote"] or {}, RemoteConfig, config.remote)
            if "realtime" in data:
                config.realtime = _section(data["realtime"] or {}, RealtimeConfig, config.realtime)
            if "store" in data:
                config.store = _section(data["store"] or {}, StoreConfig, config.store)
            if "sync" in data:
                config.sync = _section(data["sync"] or {}, SyncConfig, config.sync)
            if "session" in data:
                config.session = _section(data["session"] or {}, SessionConfig, config.session)

    config = _apply_env_overrides(config)

    if config.sync.batch_size < 1:
        raise ValueError("sync.batch_size must be at least 1")
    if config.sync.max_retries < 1:
        raise ValueError("sync.max_retries must be at least 1")

    return config
