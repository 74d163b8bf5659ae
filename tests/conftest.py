"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest


def pytest_sessionstart() -> None:
    """Add backend directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    backend_path = project_root / "backend"
    if str(backend_path) not in sys.path:
        sys.path.insert(0, str(backend_path))


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, payload: Any = None, json_error: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._json_error = json_error

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._json_error:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Routes GET calls by URL suffix to queued responses or exceptions."""

    def __init__(self, routes: dict[str, list[Any]] | None = None) -> None:
        self.routes = {key: list(value) for key, value in (routes or {}).items()}
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, params: dict | None = None, headers: dict | None = None, timeout: float | None = None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        for suffix, queue in self.routes.items():
            if url.endswith(suffix):
                outcome = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return FakeResponse(404, {"detail": "not found"})


@pytest.fixture
def fake_session_factory():
    """Build a FakeSession from a suffix -> outcomes mapping."""
    return FakeSession


@pytest.fixture
def fake_response():
    """Expose the FakeResponse class to tests."""
    return FakeResponse


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch):
    """Fresh settings with fast retries and no .env influence."""
    from dashboard_api.core.config import Settings, get_settings

    get_settings.cache_clear()
    monkeypatch.setenv("UPSTREAM_RETRY_BACKOFF_SECONDS", "0")
    yield Settings(_env_file=None)
    get_settings.cache_clear()
