"""Telemetry listener that keeps an audit trail of progress writes in the database."""

from __future__ import annotations

import logging
from typing import List, Set

from sqlalchemy import select

from .db.models import ProgressAuditEventModel
from .db.session import session_scope
from .telemetry import TelemetryEvent, register_listener, unregister_listener

logger = logging.getLogger(__name__)

_AUDITED_EVENTS: Set[str] = {
    "progress_stored",
    "progress_write_rejected",
    "username_claimed",
}

_installed = False


def _persist_event(event: TelemetryEvent) -> None:
    if event.name not in _AUDITED_EVENTS:
        return
    username = event.payload.get("username")
    if not isinstance(username, str) or not username:
        return
    try:
        with session_scope() as session:
            session.add(
                ProgressAuditEventModel(
                    username=username,
                    event_type=event.name,
                    payload=dict(event.payload),
                )
            )
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist audit event %s for username=%s", event.name, username)


def install_audit_listener() -> None:
    global _installed
    if _installed:
        return
    register_listener(_persist_event)
    _installed = True


def uninstall_audit_listener() -> None:
    global _installed
    unregister_listener(_persist_event)
    _installed = False


def recent_audit_events(username: str, limit: int = 20) -> List[ProgressAuditEventModel]:
    with session_scope(commit=False) as session:
        stmt = (
            select(ProgressAuditEventModel)
            .where(ProgressAuditEventModel.username == username)
            .order_by(ProgressAuditEventModel.created_at.desc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars())


__all__ = [
    "install_audit_listener",
    "recent_audit_events",
    "uninstall_audit_listener",
]
