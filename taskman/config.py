"""Configuration system for the taskman client using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.taskman] section (project-level)
3. ./taskman.toml (project-level, explicit)
4. ~/.config/taskman/config.toml (user-level, overrides project)
5. File named by TASKMAN_CONFIG_FILE
6. Environment variables (highest priority)

Environment variables use TASKMAN_ prefix with nested delimiter __.
Example: TASKMAN_BACKEND__URL, TASKMAN_SESSION__FILE_PATH
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import-not-found]


DEFAULT_BACKEND_URL = "https://taskman.bbenetti.ca"
DEFAULT_SESSION_FILE = "~/.taskman/session.json"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    taskman_toml = Path("taskman.toml")
    if taskman_toml.exists():
        files.append(taskman_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "taskman" / "config.toml"
    else:
        user_config = Path("~/.config/taskman/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("TASKMAN_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            # Imported lazily: log.py must stay importable without config.
            from . import log

            log.warn(f"Ignoring unreadable config file {config_file}: {exc}")
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("taskman", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _TomlConfigSource(PydanticBaseSettingsSource):
    """Settings source that feeds merged TOML files below the environment."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_toml_config()


class BackendSettings(BaseSettings):
    """Backend RPC server settings.

    Environment prefix: TASKMAN_BACKEND__
    Example: TASKMAN_BACKEND__URL=http://localhost:8000

    The legacy ``TASKMAN_SERVER_URL`` variable is honoured as the default URL.
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMAN_BACKEND__",
        extra="ignore",
    )

    url: str = Field(
        default_factory=lambda: os.environ.get("TASKMAN_SERVER_URL") or DEFAULT_BACKEND_URL,
        description="Base URL of the taskman RPC backend",
    )
    timeout: float = Field(default=30.0, gt=0, description="RPC request timeout in seconds")


class SessionSettings(BaseSettings):
    """Local session persistence settings.

    Environment prefix: TASKMAN_SESSION__
    Example: TASKMAN_SESSION__FILE_PATH=~/.config/taskman/session.json
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMAN_SESSION__",
        extra="ignore",
    )

    file_path: str = Field(
        default=DEFAULT_SESSION_FILE,
        description="Session file path; a leading ~ expands to the home directory",
    )


class AuthSettings(BaseSettings):
    """Browser login flow settings.

    Environment prefix: TASKMAN_AUTH__
    Example: TASKMAN_AUTH__CALLBACK_PORT_START=9000
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMAN_AUTH__",
        extra="ignore",
    )

    callback_host: str = Field(
        default="localhost",
        description="Interface the OAuth redirect listener binds to",
    )
    callback_port_start: int = Field(default=8080, ge=0, le=65535)
    callback_port_end: int = Field(default=8089, ge=0, le=65535)
    success_shutdown_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds the listener stays up after a successful redirect",
    )
    error_shutdown_delay: float = Field(
        default=10.0,
        ge=0.0,
        description="Seconds the listener stays up after a failed redirect",
    )
    auth_timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Maximum seconds to wait for the browser redirect",
    )
    internal_token_buffer_seconds: int = Field(
        default=300,
        ge=0,
        description="Treat the internal token as expired this many seconds early",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for provider HTTP calls in seconds",
    )
    open_browser: bool = Field(
        default=True,
        description="Launch the system browser automatically",
    )

    @model_validator(mode="after")
    def _check_port_range(self) -> AuthSettings:
        if self.callback_port_end < self.callback_port_start:
            msg = (
                f"callback_port_end ({self.callback_port_end}) must not be lower "
                f"than callback_port_start ({self.callback_port_start})"
            )
            raise ValueError(msg)
        return self

    @property
    def callback_ports(self) -> range:
        """Ports scanned, in order, for the redirect listener."""
        return range(self.callback_port_start, self.callback_port_end + 1)


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: TASKMAN_LOG__
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMAN_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"


class TaskmanSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: TASKMAN_

    Configuration sources (in order of precedence, lowest first):
    1. Built-in defaults
    2. TOML files (see module docstring)
    3. Environment variables
    4. Explicit keyword arguments
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMAN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    backend: BackendSettings = Field(default_factory=BackendSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Place TOML files below the environment."""
        return (init_settings, env_settings, _TomlConfigSource(settings_cls))

    def to_display(self) -> str:
        """Render the effective configuration for the ``config`` command."""
        lines = []
        for section_name, section in self.model_dump().items():
            lines.append(f"[{section_name}]")
            for key, value in section.items():
                lines.append(f"{key} = {value!r}")
            lines.append("")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> TaskmanSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return TaskmanSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> TaskmanSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
