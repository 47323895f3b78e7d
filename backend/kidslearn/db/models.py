"""ORM models backing the database progress store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class ProgressDocumentModel(TimestampMixin, Base):
    """One row per learner, keyed by the public document path."""

    __tablename__ = "progress_documents"
    __table_args__ = (Index("ix_progress_documents_username", "username", unique=True),)

    path: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(20), nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)


class ProgressAuditEventModel(Base):
    __tablename__ = "progress_audit_events"
    __table_args__ = (Index("ix_progress_audit_events_username", "username"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "ProgressAuditEventModel",
    "ProgressDocumentModel",
]
