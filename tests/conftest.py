"""Shared fixtures for the wireflow suites.

Every test runs with a scrubbed environment and without ``.env`` loading;
filesystem fixtures (``home``, ``env``, ``project``) are opt-in.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from tests.helpers import FakeDispatcher, make_project
from wireflow.config import Environment

_SCRUBBED_PREFIXES = ("ANTHROPIC_", "WIREFLOW_", "WORKFLOW_")

# =============================================================================
# Isolation (autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def no_dotenv(request, monkeypatch):
    """Keep python-dotenv from reading a developer's ``.env``.

    Mark a test with ``allow_dotenv`` to load it anyway.
    """
    if request.node.get_closest_marker("allow_dotenv") is None:
        monkeypatch.setattr("dotenv.load_dotenv", lambda *_a, **_kw: False)


@pytest.fixture(autouse=True)
def scrubbed_environ(request, monkeypatch):
    """Remove API keys, prompt prefixes and XDG paths from ``os.environ``.

    Skipped for ``allow_env_pollution`` and ``api`` tests, which need the
    caller's real key.
    """
    node = request.node
    if node.get_closest_marker("allow_env_pollution") or "api" in node.keywords:
        return
    for name in [n for n in os.environ if n.startswith(_SCRUBBED_PREFIXES)]:
        monkeypatch.delenv(name)
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)


@pytest.fixture(scope="session", autouse=True)
def quiet_http_loggers():
    for name in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


# =============================================================================
# Filesystem fixtures
# =============================================================================


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A throwaway HOME; also the project discovery boundary."""
    path = tmp_path / "home"
    path.mkdir()
    monkeypatch.setenv("HOME", str(path))
    return path


@pytest.fixture
def env(home: Path) -> Environment:
    """Environment snapshot pointing at the throwaway HOME, with a prompt dir."""
    prompts = home / ".config" / "wireflow" / "prompts"
    prompts.mkdir(parents=True)
    (prompts / "base.txt").write_text("You are helpful.\n", encoding="utf-8")
    return Environment({"HOME": str(home), "ANTHROPIC_API_KEY": "sk-test"})


@pytest.fixture
def project(home: Path) -> Path:
    """An initialized project directly below HOME."""
    return make_project(home / "proj")


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


# =============================================================================
# Collection
# =============================================================================


def pytest_collection_modifyitems(items):
    """Skip ``api`` tests unless ENABLE_API_TESTS is set."""
    if os.getenv("ENABLE_API_TESTS"):
        return
    skip = pytest.mark.skip(reason="set ENABLE_API_TESTS=1 to call the real API")
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip)
