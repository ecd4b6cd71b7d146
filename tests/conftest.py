"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from promptmux.services.backend import LocalBackend
from promptmux.services.settings import SecretVault, SettingsStore
from promptmux.ui.domain.project_store import ProjectStore
from promptmux.ui.events import EventBus


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep PROMPTMUX_* variables from the developer shell out of every test."""
    for name in list(os.environ):
        if name.startswith("PROMPTMUX_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("PROMPTMUX_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def settings_store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


@pytest.fixture
def backend(tmp_path: Path, settings_store: SettingsStore) -> LocalBackend:
    return LocalBackend(tmp_path / "data", settings_store=settings_store)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(backend: LocalBackend, event_bus: EventBus) -> ProjectStore:
    return ProjectStore(backend, event_bus)
