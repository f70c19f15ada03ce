"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import socket
from typing import TYPE_CHECKING

import pytest

from snow_auth.config import Config, LogLevel
from snow_auth.store import CredentialStore

if TYPE_CHECKING:
    from pathlib import Path

VALID_CLIENT_SECRET = "f3Kq9ZxW2mB7vT4pL8nR1cY6hD5jG0aE"  # 32 chars, no weak words


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the user's environment and data directory."""
    for name in ("LOG_LEVEL", "CALLBACK_PORT", "STORE_PATH", "OPEN_BROWSER"):
        monkeypatch.delenv(f"SNOW_AUTH_{name}", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def client_secret() -> str:
    """A client secret that passes validation."""
    return VALID_CLIENT_SECRET


@pytest.fixture
def free_port() -> int:
    """Return a loopback port that is currently unused."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Path of a credential store file (not created)."""
    return tmp_path / "data" / "auth.json"


@pytest.fixture
def store(store_path: Path) -> CredentialStore:
    """Credential store backed by a temporary file."""
    return CredentialStore(store_path)


@pytest.fixture
def test_config(free_port: int, store_path: Path) -> Config:
    """Configuration bound to a free port and temporary store."""
    return Config(
        log_level=LogLevel.DEBUG,
        callback_port=free_port,
        callback_timeout_seconds=5.0,
        open_browser=True,
        store_path=store_path,
    )
