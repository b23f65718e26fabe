"""Pytest configuration and fixtures."""

from __future__ import annotations

import os

from collections.abc import Iterator

import pytest

from helpers import CLIENT_CONFIG, FakeServices

from taskman.auth.types import ClientConfig
from taskman.config import AuthSettings, clear_settings


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[None]:
    """Keep user config files and TASKMAN_* variables out of every test."""
    for name in list(os.environ):
        if name.startswith("TASKMAN_"):
            monkeypatch.delenv(name, raising=False)
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    monkeypatch.chdir(home)
    clear_settings()
    yield
    clear_settings()


@pytest.fixture()
def services() -> FakeServices:
    """Fake backend with the public client config already registered."""
    fake = FakeServices()
    fake.rpc("GET", "config.clientConfig", CLIENT_CONFIG)
    return fake


@pytest.fixture()
def client_config() -> ClientConfig:
    """Parsed client config for both providers."""
    return ClientConfig.model_validate(CLIENT_CONFIG)


@pytest.fixture()
def fast_auth_settings() -> AuthSettings:
    """Listener on an OS-assigned loopback port with short shutdown delays."""
    return AuthSettings(
        callback_host="127.0.0.1",
        callback_port_start=0,
        callback_port_end=0,
        success_shutdown_delay=0.05,
        error_shutdown_delay=0.05,
        auth_timeout_seconds=10,
    )
