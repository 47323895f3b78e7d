"""Single-document-per-learner progress persistence.

Each learner owns exactly one JSON document addressed by
``progress/{username}.json``. Reads need no credentials; writes replace the
whole document and are authorised at the HTTP boundary.

There is no locking, versioning or merge here. Two concurrent writers for the
same username both succeed and whichever write lands last becomes the stored
document. This is a known limitation for a single-learner product.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .auth_tokens import normalize_username
from .config import get_settings
from .db.models import ProgressDocumentModel
from .db.session import session_scope

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

_UPSERT_INSERTS: Dict[str, Callable[..., Any]] = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class ProgressStoreError(RuntimeError):
    """Opaque storage-layer failure; callers decide whether to retry."""


def progress_path(username: str) -> str:
    return f"progress/{normalize_username(username)}.json"


class _Backend(Protocol):
    name: str

    def read(self, path: str) -> Optional[Document]: ...

    def write(self, path: str, username: str, document: Document) -> None: ...


class _DatabaseProgressBackend:
    name = "database"

    def read(self, path: str) -> Optional[Document]:
        with session_scope(commit=False) as session:
            model = session.get(ProgressDocumentModel, path)
            if model is None:
                return None
            return dict(model.document)

    def write(self, path: str, username: str, document: Document) -> None:
        with session_scope() as session:
            insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
            if insert is None:
                session.merge(ProgressDocumentModel(path=path, username=username, document=document))
                return
            # Single-statement upsert so concurrent first writes both succeed.
            stmt = insert(ProgressDocumentModel.__table__).values(path=path, username=username, document=document)
            stmt = stmt.on_conflict_do_update(
                index_elements=["path"],
                set_={"document": stmt.excluded.document, "updated_at": datetime.now(timezone.utc)},
            )
            session.execute(stmt)


class _FilesystemProgressBackend:
    """JSON files under a root directory, laid out by document path."""

    name = "filesystem"

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.RLock()

    def _file_for(self, path: str) -> Path:
        return self._root / path

    def read(self, path: str) -> Optional[Document]:
        target = self._file_for(path)
        with self._lock:
            if not target.exists():
                return None
            with target.open("r", encoding="utf-8") as handle:
                return json.load(handle)

    def write(self, path: str, username: str, document: Document) -> None:
        target = self._file_for(path)
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{username}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(document, handle)
                os.replace(temp_name, target)
            except BaseException:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise


def _backend_from_settings() -> _Backend:
    settings = get_settings()
    if settings.persistence_mode == "filesystem":
        return _FilesystemProgressBackend(settings.progress_data_dir)
    return _DatabaseProgressBackend()


class ProgressStore:
    """Facade that delegates to the configured persistence backend."""

    def __init__(self, backend: Optional[_Backend] = None) -> None:
        self._backend = backend

    @classmethod
    def filesystem(cls, root: Path) -> "ProgressStore":
        return cls(_FilesystemProgressBackend(root))

    @classmethod
    def database(cls) -> "ProgressStore":
        return cls(_DatabaseProgressBackend())

    @property
    def backend(self) -> _Backend:
        # Resolved lazily so settings changes made before first use are honoured.
        if self._backend is None:
            self._backend = _backend_from_settings()
        return self._backend

    def reset(self) -> None:
        self._backend = None

    def read(self, username: str) -> Optional[Document]:
        path = progress_path(username)
        try:
            return self.backend.read(path)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress read failed for %s via %s: %s", path, self.backend.name, exc)
            raise ProgressStoreError(f"Failed to read {path}") from exc

    def exists(self, username: str) -> bool:
        return self.read(username) is not None

    def write(self, username: str, document: Document) -> None:
        normalized = normalize_username(username)
        path = progress_path(normalized)
        try:
            self.backend.write(path, normalized, document)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress write failed for %s via %s: %s", path, self.backend.name, exc)
            raise ProgressStoreError(f"Failed to write {path}") from exc
        logger.debug("Stored %s via %s", path, self.backend.name)


progress_store = ProgressStore()

__all__ = [
    "Document",
    "ProgressStore",
    "ProgressStoreError",
    "progress_path",
    "progress_store",
]
