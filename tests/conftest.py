"""Shared pytest fixtures for project-settings-sync tests."""

from pathlib import Path

import pytest

from settings_sync.config_schema import UnifiedConfig
from settings_sync.sync.engine import SyncEngine


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Run with CWD and HOME inside tmp_path and no config override."""
    monkeypatch.delenv("PSS_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """An empty project directory."""
    path = tmp_path / "my-app"
    path.mkdir()
    return path


@pytest.fixture
def make_engine(project_dir):
    """Factory fixture building a SyncEngine over ``project_dir``."""

    def _make(**sections) -> SyncEngine:
        config = UnifiedConfig(**sections) if sections else None
        return SyncEngine(project_dir, config)

    return _make
