"""Configuration loading for tasksync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "tasksync-client"


@dataclass
class StorageConfig:
    db_path: str = "~/.tasksync/tasks.db"


@dataclass
class RemoteConfig:
    url: str = "http://localhost:8765"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_seconds: float = 1.0


@dataclass
class ConnectivityConfig:
    """Configuration for online/offline detection."""

    probe_enabled: bool = True
    probe_interval_seconds: float = 30.0
    force_offline: bool = False


@dataclass
class SyncConfig:
    """Configuration for reconciliation passes."""

    sync_interval_minutes: int = 5
    tombstone_ttl_days: int = 30


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "tasksync"
    username: str | None = None
    password: str | None = None


@dataclass
class NotifyConfig:
    """Configuration for notification delivery.

    backend is "log" or "mqtt".
    """

    backend: str = "log"
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)


@dataclass
class ServerConfig:
    """Configuration for the reference remote server."""

    host: str = "127.0.0.1"
    port: int = 8765
    db_path: str = "~/.tasksync/remote.db"


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TASKSYNC_ prefix."""
    return os.environ.get(f"TASKSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)
    if retries := _get_env("REMOTE_MAX_RETRIES"):
        config.remote.max_retries = int(retries)

    # Connectivity overrides
    if probe := _get_env("PROBE_ENABLED"):
        config.connectivity.probe_enabled = _is_true(probe)
    if probe_interval := _get_env("PROBE_INTERVAL"):
        config.connectivity.probe_interval_seconds = float(probe_interval)
    if offline := _get_env("OFFLINE"):
        config.connectivity.force_offline = _is_true(offline)

    # Sync overrides
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)
    if ttl := _get_env("TOMBSTONE_TTL_DAYS"):
        config.sync.tombstone_ttl_days = int(ttl)

    # Notification overrides
    if backend := _get_env("NOTIFY_BACKEND"):
        config.notify.backend = backend
    if broker := _get_env("MQTT_BROKER"):
        config.notify.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.notify.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.notify.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.notify.mqtt.password = password

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    url=remote_data.get("url", config.remote.url),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    max_retries=remote_data.get("max_retries", config.remote.max_retries),
                    backoff_seconds=remote_data.get(
                        "backoff_seconds", config.remote.backoff_seconds
                    ),
                )

            # Parse connectivity config
            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_enabled=conn_data.get(
                        "probe_enabled", config.connectivity.probe_enabled
                    ),
                    probe_interval_seconds=conn_data.get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    ),
                    force_offline=conn_data.get(
                        "force_offline", config.connectivity.force_offline
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                    tombstone_ttl_days=sync_data.get(
                        "tombstone_ttl_days", config.sync.tombstone_ttl_days
                    ),
                )

            # Parse notify config
            if "notify" in data:
                notify_data = data["notify"]
                mqtt_config = MQTTConfig()
                if "mqtt" in notify_data:
                    mqtt_data = notify_data["mqtt"]
                    mqtt_config = MQTTConfig(
                        broker=mqtt_data.get("broker", mqtt_config.broker),
                        port=mqtt_data.get("port", mqtt_config.port),
                        topic_prefix=mqtt_data.get("topic_prefix", mqtt_config.topic_prefix),
                        username=mqtt_data.get("username"),
                        password=mqtt_data.get("password"),
                    )

                config.notify = NotifyConfig(
                    backend=notify_data.get("backend", config.notify.backend),
                    mqtt=mqtt_config,
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    # Scope MQTT topics per client unless a custom prefix was given
    if config.notify.mqtt.topic_prefix == "tasksync":
        config.notify.mqtt.topic_prefix = f"tasksync/{config.node.name}"

    return config
