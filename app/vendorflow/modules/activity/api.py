from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, request

from app.vendorflow.audit import action_counts, list_events_by_actor
from app.vendorflow.db import db_session, storage_guard
from app.vendorflow.errors import InvalidRequest, NotFound
from app.vendorflow.models import User
from app.vendorflow.rbac import Capability, require_capability

bp = Blueprint("activity_api", __name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


def _since() -> datetime | None:
    raw = (request.args.get("since") or "").strip()
    if not raw:
        return None
    try:
        d = date.fromisoformat(raw)
    except ValueError:
        raise InvalidRequest("since must be a date (YYYY-MM-DD)", details={"since": raw}) from None
    return datetime(d.year, d.month, d.day)


def _limit() -> int:
    raw = request.args.get("limit")
    if raw is None:
        return DEFAULT_LIMIT
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRequest("limit must be an integer", details={"limit": raw}) from None
    return max(1, min(value, MAX_LIMIT))


@bp.get("/activity")
@require_capability(Capability.VIEW_ALL_USERS)
def activity_stats():
    since = _since()
    return {
        "since": since.isoformat() if since else None,
        "counts": action_counts(db_session(), since=since),
    }


@bp.get("/activity/users/<int:user_id>")
@require_capability(Capability.VIEW_ALL_USERS)
def user_activity(user_id: int):
    s = db_session()
    with storage_guard():
        user = s.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    events = list_events_by_actor(s, user.id, limit=_limit())
    return {
        "user": {"id": user.id, "name": user.name, "role": user.role},
        "events": [e.to_dict() for e in events],
    }
