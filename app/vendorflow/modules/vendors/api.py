from __future__ import annotations

from flask import Blueprint, request

from app.vendorflow.db import db_session
from app.vendorflow.errors import InvalidRequest
from app.vendorflow.modules.vendors import service
from app.vendorflow.rbac import Actor, Capability, current_actor, login_required, require_capability

bp = Blueprint("vendors_api", __name__)


def _actor() -> Actor:
    a = current_actor()
    if a is None:
        raise RuntimeError("No current user")
    return a


@bp.get("/vendors")
@login_required
def list_vendors():
    vendors = service.list_vendors_for(db_session(), _actor())
    return {"vendors": [service.vendor_to_dict(v) for v in vendors]}


@bp.get("/vendors/<int:vendor_id>")
@login_required
def get_vendor(vendor_id: int):
    v = service.get_vendor(db_session(), _actor(), vendor_id)
    return {"vendor": service.vendor_to_dict(v)}


@bp.put("/vendors/<int:vendor_id>/consultant")
@require_capability(Capability.MANAGE_VENDORS)
def assign_consultant(vendor_id: int):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    if "consultantId" not in payload:
        raise InvalidRequest("consultantId is required (null to unassign)")
    raw = payload.get("consultantId")
    try:
        consultant_id = int(raw) if raw is not None else None
    except (TypeError, ValueError) as e:
        raise InvalidRequest("consultantId must be an integer or null") from e
    v = service.assign_consultant(s, _actor(), vendor_id, consultant_id)
    s.commit()
    return {"vendor": service.vendor_to_dict(v)}
