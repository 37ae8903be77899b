from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from flask import g, has_app_context
from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from app.vendorflow.db import storage_guard
from app.vendorflow.errors import AuditLogImmutable
from app.vendorflow.models import AuditEvent
from app.vendorflow.rbac import Actor
from app.vendorflow.utils import as_naive_utc, utcnow


class AuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMMENTED = "commented"
    LOGIN_REQUESTED = "login_requested"
    LOGIN_APPROVED = "login_approved"
    LOGIN_REJECTED = "login_rejected"


SUBJECT_DOCUMENT = "document"
SUBJECT_LOGIN_APPROVAL = "login_approval"
SUBJECT_VENDOR = "vendor"


def _latest_timestamp(s: Session, subject_type: str, subject_id: int) -> datetime | None:
    return s.execute(
        select(func.max(AuditEvent.created_at)).where(
            AuditEvent.subject_type == subject_type,
            AuditEvent.subject_id == subject_id,
        )
    ).scalar()


def record_event(
    s: Session,
    *,
    actor: Actor | None,
    action: AuditAction | str,
    subject_type: str,
    subject_id: int,
    detail: str = "",
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    now: datetime | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.

    The event is flushed immediately so later appends in the same transaction
    see it. Timestamps never go backwards for a subject: a clock that reads
    earlier than the latest stored event is clamped to it, and (created_at, id)
    keeps the order deterministic.
    """
    rid = request_id or (g.get("request_id") if has_app_context() else None)
    action_str = action.value if isinstance(action, AuditAction) else action
    with storage_guard():
        ts = as_naive_utc(now) if now else utcnow()
        latest = _latest_timestamp(s, subject_type, subject_id)
        if latest is not None and latest > ts:
            ts = latest
        ev = AuditEvent(
            created_at=ts,
            request_id=rid,
            subject_type=subject_type,
            subject_id=subject_id,
            action=action_str,
            actor_user_id=actor.id if actor else None,
            actor_name=(actor.name if actor else "system") or "",
            actor_role=actor.role if actor else "system",
            detail=detail or "",
            metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        )
        s.add(ev)
        s.flush()
    return ev


def list_events(s: Session, subject_type: str, subject_id: int) -> list[AuditEvent]:
    """Full history of one subject, oldest first."""
    with storage_guard():
        return list(
            s.execute(
                select(AuditEvent)
                .where(AuditEvent.subject_type == subject_type, AuditEvent.subject_id == subject_id)
                .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
            ).scalars()
        )


def list_events_by_actor(s: Session, actor_id: int, *, limit: int = 100) -> list[AuditEvent]:
    """Most recent activity of one user, newest first."""
    with storage_guard():
        return list(
            s.execute(
                select(AuditEvent)
                .where(AuditEvent.actor_user_id == actor_id)
                .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
                .limit(limit)
            ).scalars()
        )


def action_counts(s: Session, *, since: datetime | None = None) -> dict[str, int]:
    stmt = select(AuditEvent.action, func.count(AuditEvent.id)).group_by(AuditEvent.action)
    if since is not None:
        stmt = stmt.where(AuditEvent.created_at >= as_naive_utc(since))
    with storage_guard():
        return {action: count for action, count in s.execute(stmt).all()}


@event.listens_for(Session, "before_flush")
def _reject_audit_mutation(session: Session, flush_context, instances) -> None:  # type: ignore[no-untyped-def]
    for obj in session.deleted:
        if isinstance(obj, AuditEvent):
            raise AuditLogImmutable()
    for obj in session.dirty:
        if isinstance(obj, AuditEvent) and session.is_modified(obj):
            raise AuditLogImmutable()
