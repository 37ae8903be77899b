from __future__ import annotations

from datetime import date

from flask import Blueprint, request

from app.vendorflow.db import db_session
from app.vendorflow.errors import InvalidRequest
from app.vendorflow.modules.compliance.service import (
    ReportingMonth,
    compute_fleet_report,
    compute_vendor_status,
    report_vendor_ids_for,
)
from app.vendorflow.modules.vendors.service import get_vendor
from app.vendorflow.rbac import Actor, current_actor, login_required

bp = Blueprint("compliance_api", __name__)


def _actor() -> Actor:
    a = current_actor()
    if a is None:
        raise RuntimeError("No current user")
    return a


def _period() -> ReportingMonth:
    # ?month=Jan|January|1, optional ?asOf=YYYY-MM-DD reference date
    raw = (request.args.get("asOf") or "").strip()
    try:
        as_of = date.fromisoformat(raw) if raw else None
    except ValueError:
        raise InvalidRequest("asOf must be a date (YYYY-MM-DD)", details={"asOf": raw}) from None
    return ReportingMonth.parse(request.args.get("month") or None, reference=as_of)


@bp.get("/compliance/vendors/<int:vendor_id>")
@login_required
def vendor_status(vendor_id: int):
    s = db_session()
    get_vendor(s, _actor(), vendor_id)
    result = compute_vendor_status(s, vendor_id, _period())
    return {"vendor": result.to_dict()}


@bp.get("/compliance/report")
@login_required
def fleet_report():
    s = db_session()
    ids = report_vendor_ids_for(s, _actor())
    return compute_fleet_report(s, ids, _period())
