import json
import os
import pathlib
import signal
import sys
import time

import psutil
import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fastapi.testclient import TestClient  # noqa: E402

from orchat.app import create_app  # noqa: E402
from orchat.config import get_settings  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def cleanup_processes():
    """Kill any lingering child processes after all tests complete."""
    yield

    # Tool servers spawned over stdio may outlive a failed test
    try:
        children = psutil.Process().children(recursive=True)
        for child in children:
            try:
                child.send_signal(signal.SIGTERM)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        time.sleep(0.5)

        for child in children:
            try:
                if child.is_running():
                    child.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
    except psutil.Error as exc:
        print(f"[CLEANUP] Error during cleanup: {exc}")


@pytest.fixture
def app_env(monkeypatch, tmp_path):
    """Point every configurable path at ``tmp_path`` and disable tool servers."""

    for key in list(os.environ):
        if key.startswith("MCP_SERVER_"):
            monkeypatch.delenv(key, raising=False)

    mcp_file = tmp_path / "mcp_servers.json"
    mcp_file.write_text(json.dumps({"servers": []}), encoding="utf-8")

    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "orchat.db"))
    monkeypatch.setenv("FILE_STORAGE_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("MCP_SERVERS_PATH", str(mcp_file))
    monkeypatch.setenv("APP_URL", "http://testserver")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("CLEANUP_INTERVAL_MINUTES", "0")
    monkeypatch.delenv("CLEANUP_SECRET_TOKEN", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    get_settings.cache_clear()

    yield tmp_path

    get_settings.cache_clear()


@pytest.fixture
def client(app_env):
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def _register_and_login(
    client: TestClient, email: str, password: str = "password123"
) -> dict[str, str]:
    """Register ``email`` and return a bearer header for its session."""

    response = client.post("/api/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    login = client.post("/api/auth/login", json={"email": email, "password": password})
    assert login.status_code == 200, login.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {login.json()['token']}"}


@pytest.fixture
def make_user(client):
    def _make(email: str, password: str = "password123") -> dict[str, str]:
        return _register_and_login(client, email, password)

    return _make


@pytest.fixture
def user_headers(make_user):
    return make_user("alice@example.com")
