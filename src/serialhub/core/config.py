"""
Configuration management for serialhub.

Loads configuration from YAML files with environment variable overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from serialhub.core.models import LineSettings
from serialhub.core.policy import AccessPolicy


# Default configuration paths
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "serialhub"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
SYSTEM_CONFIG_FILE = Path("/etc/serialhub/config.yaml")

DEFAULT_BUFFER_CAPACITY = 65535

MODES = ("http", "tcp", "udp", "echo")


@dataclass
class ServerConfig:
    """Network listener configuration."""

    host: str = "0.0.0.0"
    port: int = 5147
    mode: str = "http"
    prefix: str = "/api/v1"


@dataclass
class PermissionsConfig:
    """Capability flags and line allow-list."""

    listing: bool = True
    read: bool = True
    write: bool = True
    subscribe: bool = True
    relay: bool = True
    allowed_lines: list[str] = field(default_factory=list)

    def to_policy(self) -> AccessPolicy:
        """Freeze into an AccessPolicy."""
        return AccessPolicy.create(
            allowed_lines=self.allowed_lines,
            listing=self.listing,
            read=self.read,
            write=self.write,
            subscribe=self.subscribe,
            relay=self.relay,
        )


@dataclass
class LineConfig:
    """Line opened at startup by the relay and echo modes."""

    name: Optional[str] = None
    settings: LineSettings = field(default_factory=LineSettings)


@dataclass
class Config:
    """Main configuration for serialhub."""

    server: ServerConfig = field(default_factory=ServerConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    line: LineConfig = field(default_factory=LineConfig)
    buffer_capacity: int = DEFAULT_BUFFER_CAPACITY
    event_queue_size: int = 1024
    write_timeout: float = 2.0
    log_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        server_data = data.get("server", {})
        perm_data = data.get("permissions", {})
        line_data = data.get("line", {})

        server = ServerConfig(
            host=server_data.get("host", "0.0.0.0"),
            port=server_data.get("port", 5147),
            mode=server_data.get("mode", "http"),
            prefix=server_data.get("prefix", "/api/v1"),
        )

        permissions = PermissionsConfig(
            listing=perm_data.get("listing", True),
            read=perm_data.get("read", True),
            write=perm_data.get("write", True),
            subscribe=perm_data.get("subscribe", True),
            relay=perm_data.get("relay", True),
            allowed_lines=list(perm_data.get("allowed_lines", []) or []),
        )

        line = LineConfig(
            name=line_data.get("name"),
            settings=LineSettings.from_dict(line_data.get("settings", {}) or {}),
        )

        log_dir = data.get("log_dir")

        return cls(
            server=server,
            permissions=permissions,
            line=line,
            buffer_capacity=data.get("buffer_capacity", DEFAULT_BUFFER_CAPACITY),
            event_queue_size=data.get("event_queue_size", 1024),
            write_timeout=data.get("write_timeout", 2.0),
            log_dir=Path(log_dir) if log_dir else None,
            log_level=data.get("log_level", "INFO"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert Config to dictionary."""
        return {
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "mode": self.server.mode,
                "prefix": self.server.prefix,
            },
            "permissions": {
                "listing": self.permissions.listing,
                "read": self.permissions.read,
                "write": self.permissions.write,
                "subscribe": self.permissions.subscribe,
                "relay": self.permissions.relay,
                "allowed_lines": list(self.permissions.allowed_lines),
            },
            "line": {
                "name": self.line.name,
                "settings": {
                    "baud_rate": self.line.settings.baud_rate,
                    "data_bits": self.line.settings.data_bits,
                    "parity": self.line.settings.parity.value,
                    "stop_bits": self.line.settings.stop_bits,
                },
            },
            "buffer_capacity": self.buffer_capacity,
            "event_queue_size": self.event_queue_size,
            "write_timeout": self.write_timeout,
            "log_dir": str(self.log_dir) if self.log_dir else None,
            "log_level": self.log_level,
        }


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Search order:
    1. Explicit path if provided
    2. SERIALHUB_CONFIG environment variable
    3. ~/.config/serialhub/config.yaml
    4. /etc/serialhub/config.yaml
    5. Default values

    Environment variable overrides:
    - SERIALHUB_PORT: Override server.port
    - SERIALHUB_MODE: Override server.mode
    - SERIALHUB_PREFIX: Override server.prefix
    - SERIALHUB_ALLOW_PORTS: Comma-separated permissions.allowed_lines
    - SERIALHUB_LOG_DIR: Override log_dir
    - SERIALHUB_LOG_LEVEL: Override log_level

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Loaded configuration
    """
    # Determine config file path
    if config_path:
        paths_to_try = [config_path]
    else:
        env_path = os.environ.get("SERIALHUB_CONFIG")
        paths_to_try = []
        if env_path:
            paths_to_try.append(Path(env_path))
        paths_to_try.extend([DEFAULT_CONFIG_FILE, SYSTEM_CONFIG_FILE])

    # Try to load from file
    config_data = {}
    for path in paths_to_try:
        if path.exists():
            try:
                with open(path) as f:
                    config_data = yaml.safe_load(f) or {}
                break
            except (OSError, yaml.YAMLError):
                continue

    config = Config.from_dict(config_data)

    return _apply_env_overrides(config)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if "SERIALHUB_PORT" in os.environ:
        try:
            config.server.port = int(os.environ["SERIALHUB_PORT"])
        except ValueError:
            pass

    if "SERIALHUB_MODE" in os.environ:
        config.server.mode = os.environ["SERIALHUB_MODE"]

    if "SERIALHUB_PREFIX" in os.environ:
        config.server.prefix = os.environ["SERIALHUB_PREFIX"]

    if "SERIALHUB_ALLOW_PORTS" in os.environ:
        config.permissions.allowed_lines = [
            p for p in os.environ["SERIALHUB_ALLOW_PORTS"].split(",") if p
        ]

    if "SERIALHUB_LOG_DIR" in os.environ:
        config.log_dir = Path(os.environ["SERIALHUB_LOG_DIR"])

    if "SERIALHUB_LOG_LEVEL" in os.environ:
        config.log_level = os.environ["SERIALHUB_LOG_LEVEL"]

    return config


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Path to save to
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write("# serialhub configuration\n")
        f.write("# See documentation for all options\n\n")
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def get_default_config() -> Config:
    """Get default configuration without loading from file."""
    return Config()
