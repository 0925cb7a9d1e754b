from dataclasses import dataclass, field, replace
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_SECONDS = 30
DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class ConnectionConfig:
    name: str
    url: str


@dataclass(frozen=True)
class AppConfig:
    connections: list[ConnectionConfig] = field(default_factory=list)
    query_timeout_seconds: int = DEFAULT_QUERY_TIMEOUT_SECONDS
    preferred_timeout_seconds: int = 0
    page_size: int = DEFAULT_PAGE_SIZE


def config_dir() -> Path:
    return Path.home() / ".config" / ".dbnav"


def _config_path() -> Path:
    return config_dir() / "config.json"


def history_path() -> Path:
    return config_dir() / "history.json"


def log_path() -> Path:
    return config_dir() / "dbnav.log"


def load_config() -> AppConfig:
    config_path = _config_path()
    if not config_path.exists():
        return AppConfig()
    data = json.loads(config_path.read_text(encoding="utf-8"))
    connections = [
        ConnectionConfig(name=item["name"], url=item["url"])
        for item in data.get("connections", [])
    ]
    return AppConfig(
        connections=connections,
        query_timeout_seconds=int(
            data.get("query_timeout_seconds", DEFAULT_QUERY_TIMEOUT_SECONDS)
        ),
        preferred_timeout_seconds=int(data.get("preferred_timeout_seconds", 0)),
        page_size=int(data.get("page_size", DEFAULT_PAGE_SIZE)),
    )


def save_config(config: AppConfig) -> None:
    directory = config_dir()
    directory.mkdir(parents=True, exist_ok=True)
    payload = {
        "connections": [
            {"name": connection.name, "url": connection.url}
            for connection in config.connections
        ],
        "query_timeout_seconds": config.query_timeout_seconds,
        "preferred_timeout_seconds": config.preferred_timeout_seconds,
        "page_size": config.page_size,
    }
    _config_path().write_text(json.dumps(payload, indent=2), encoding="utf-8")


def add_connection(config: AppConfig, connection: ConnectionConfig) -> AppConfig:
    if any(existing.name == connection.name for existing in config.connections):
        raise ValueError(f"Connection name already exists: {connection.name}")
    return replace(config, connections=[*config.connections, connection])


def remove_connection(config: AppConfig, connection_name: str) -> AppConfig:
    remaining = [
        connection
        for connection in config.connections
        if connection.name != connection_name
    ]
    if len(remaining) == len(config.connections):
        raise ValueError(f"Unknown connection: {connection_name}")
    return replace(config, connections=remaining)


def find_connection(config: AppConfig, connection_name: str) -> ConnectionConfig:
    for connection in config.connections:
        if connection.name == connection_name:
            return connection
    raise ValueError(f"Unknown connection: {connection_name}")


class ConfigStore:
    """In-memory holder of the current config, persisted on every update."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def set(self, config: AppConfig) -> None:
        self._config = config
        save_config(config)

    def update(self, **changes: object) -> AppConfig:
        updated = replace(self._config, **changes)
        self.set(updated)
        logger.info("Saved config changes: %s", ", ".join(sorted(changes)))
        return updated

    def preferred_timeout_seconds(self) -> int:
        return self._config.preferred_timeout_seconds

    def set_preferred_timeout_seconds(self, seconds: int) -> None:
        self.update(preferred_timeout_seconds=seconds)
