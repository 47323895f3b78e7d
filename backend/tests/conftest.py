from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from kidslearn.config import get_settings
from kidslearn.db.session import dispose_engine
from kidslearn.main import app
from kidslearn.progress_store import progress_store
from kidslearn.telemetry import clear_listeners

TEST_SECRET = "test-secret"


def _reset_state() -> None:
    get_settings.cache_clear()
    progress_store.reset()
    dispose_engine()
    clear_listeners()


@pytest.fixture(autouse=True)
def progress_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    data_dir = tmp_path / "progress-data"
    monkeypatch.setenv("KIDSLEARN_PERSISTENCE_MODE", "filesystem")
    monkeypatch.setenv("KIDSLEARN_PROGRESS_DATA_DIR", str(data_dir))
    monkeypatch.setenv("KIDSLEARN_AUTH_SECRET", TEST_SECRET)
    monkeypatch.delenv("KIDSLEARN_DATABASE_URL", raising=False)
    _reset_state()
    yield data_dir
    _reset_state()


@pytest.fixture()
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'progress.db'}"
    monkeypatch.setenv("KIDSLEARN_PERSISTENCE_MODE", "database")
    monkeypatch.setenv("KIDSLEARN_DATABASE_URL", url)
    _reset_state()
    return url


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"
