"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

CONFIG_ENV_PREFIXES = ("SONAR_", "GITLAB_")


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (live GitLab instance).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run in an empty directory with no publishing settings in the environment.

    ``os.environ`` is swapped for a copy so values loaded from a ``.env`` file
    do not leak into other tests.
    """
    environment = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(CONFIG_ENV_PREFIXES)
    }
    monkeypatch.setattr(os, "environ", environment)
    monkeypatch.chdir(tmp_path)
    return tmp_path
