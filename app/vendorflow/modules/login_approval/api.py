from __future__ import annotations

from flask import Blueprint, request

from app.vendorflow.db import db_session
from app.vendorflow.errors import InvalidRequest
from app.vendorflow.modules.login_approval import service
from app.vendorflow.rbac import Actor, Capability, current_actor, require_capability
from app.vendorflow.utils import utcnow

bp = Blueprint("login_approvals_api", __name__)


def _actor() -> Actor:
    a = current_actor()
    if a is None:
        raise RuntimeError("No current user")
    return a


@bp.get("/login-approvals")
@require_capability(Capability.APPROVE_LOGINS)
def list_pending():
    now = utcnow()
    pending = service.list_pending_for(db_session(), _actor(), now=now)
    return {"approvals": [la.to_dict(now) for la in pending]}


@bp.post("/login-approvals/<int:approval_id>/decision")
@require_capability(Capability.APPROVE_LOGINS)
def decide(approval_id: int):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    decision = (payload.get("decision") or "").strip()
    if not decision:
        raise InvalidRequest("decision is required (approve or reject)")
    la = service.decide(s, approval_id, decision, _actor(), payload.get("reason"))
    s.commit()
    return {"approval": la.to_dict()}


@bp.get("/login-approvals/<int:approval_id>/audit")
@require_capability(Capability.APPROVE_LOGINS)
def approval_audit(approval_id: int):
    events = service.approval_audit_trail(db_session(), _actor(), approval_id)
    return {"events": [e.to_dict() for e in events]}
