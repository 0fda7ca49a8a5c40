"""Configuration types with environment variable support.

All settings can be configured via environment variables with the CROWBAR_ prefix.
Example: CROWBAR_LISTEN=127.0.0.1:9000 sets the server listen address.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


class ClientConfig(BaseModel):
    """Client configuration."""

    server_url: str = "http://127.0.0.1:8080"
    username: str = ""
    secret: str = Field(default="", repr=False)
    timeout: float | None = Field(
        default=None,
        description="HTTP timeout in seconds. None waits indefinitely, which pulls rely on.",
    )


class ServerConfig(BaseSettings):
    """Server configuration.

    Values can be overridden via environment variables:
    - CROWBAR_LISTEN: Address to bind the HTTP server to
    - CROWBAR_USERFILE: Path of the account file
    - CROWBAR_PULL_TIMEOUT: Seconds a pull may wait before answering empty
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="CROWBAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    listen: str = Field(
        default="0.0.0.0:8080",
        description="Address to bind HTTP server to.",
    )
    userfile: str = Field(
        default="/etc/crowbard.conf",
        description="Path of user config file.",
    )
    queue_size: int = Field(
        default=10,
        ge=1,
        description="Capacity of each per-session queue.",
    )
    read_chunk_size: int = Field(
        default=4096,
        ge=1,
        description="Maximum bytes read from a remote socket per data response.",
    )
    connect_timeout: float = Field(
        default=30.0,
        description="Timeout for dialing the remote endpoint (seconds).",
    )
    pull_timeout: float | None = Field(
        default=None,
        description="Pull wait limit (seconds). None for indefinite.",
    )
    closed_session_ttl: float = Field(
        default=300.0,
        description="Seconds a finished session stays registered before being reaped. 0 disables reaping.",
    )
    cleanup_interval: float = Field(
        default=60.0,
        description="Cleanup loop interval (seconds).",
    )
    log_level: str = Field(
        default="info",
        description="Log level (debug, info, warning, error).",
    )

    def bind_address(self) -> tuple[str, int]:
        """Parse the listen address into host and port."""
        if ":" in self.listen:
            host, port = self.listen.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(self.listen)


_config: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Get the global server configuration instance.

    The instance is created once from the environment and cached for the
    lifetime of the process. To reload config (e.g., in tests), call
    clear_config() first.
    """
    global _config
    if _config is None:
        _config = ServerConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
