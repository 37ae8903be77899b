"""
Compliance aging.

A vendor is Compliant for a reporting month when its most recent approved
document of a required type (all monthly types, plus the annual types in
January) is at most ``COMPLIANCE_WINDOW_DAYS`` old at the reference date.
Without any required-type document the most recent document of any kind is
reported for display only and the vendor is NonCompliant.

Read-only: nothing here writes to the session.
"""
from __future__ import annotations

import calendar
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import and_, case, select
from sqlalchemy.orm import Session

from app.vendorflow.catalog import required_types_for_month
from app.vendorflow.db import storage_guard
from app.vendorflow.errors import InvalidRequest, NotFound
from app.vendorflow.models import User
from app.vendorflow.modules.documents.models import Document
from app.vendorflow.modules.documents.workflow import DocumentStatus
from app.vendorflow.rbac import Actor, Capability, Role, check_capability, require
from app.vendorflow.utils import as_naive_utc, utcnow

COMPLIANT = "Compliant"
NON_COMPLIANT = "NonCompliant"

DEFAULT_WINDOW_DAYS = 30
UNASSIGNED = "Unassigned"

_MONTHS: dict[str, int] = {}
for _i in range(1, 13):
    _MONTHS[calendar.month_name[_i].lower()] = _i
    _MONTHS[calendar.month_abbr[_i].lower()] = _i


@dataclass(frozen=True)
class ReportingMonth:
    """Month whose required-type set applies, plus the instant ages are measured from."""

    month: int
    reference_date: datetime

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidRequest(f"Invalid month: {self.month}", details={"month": self.month})

    @classmethod
    def parse(cls, value: Any = None, *, reference: datetime | date | None = None) -> "ReportingMonth":
        """
        Accepts "Jan", "January", "1", 1, a date or a datetime (None means now).

        A bare month uses ``reference`` (default: now) as the reference date;
        a date/datetime is its own reference.
        """
        if isinstance(value, cls):
            return value
        ref = _to_datetime(reference) if reference is not None else utcnow()
        if value is None:
            return cls(ref.month, ref)
        if isinstance(value, (datetime, date)):
            dt = _to_datetime(value)
            return cls(dt.month, dt)
        if isinstance(value, int):
            return cls(value, ref)
        text = str(value).strip().lower()
        if text.isdigit():
            return cls(int(text), ref)
        month = _MONTHS.get(text)
        if month is None:
            raise InvalidRequest(f"Invalid month: {value!r}", details={"month": str(value)})
        return cls(month, ref)

    @property
    def required_types(self) -> frozenset[str]:
        return required_types_for_month(self.month)


def _to_datetime(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return as_naive_utc(value)
    return datetime(value.year, value.month, value.day)


@dataclass
class VendorComplianceStatus:
    vendor_id: int
    status: str
    days_since_last_upload: int | None
    last_upload_date: datetime | None
    last_document_type: str | None = None
    vendor_name: str = ""
    email: str = ""
    company: str | None = None
    assigned_consultant: str = UNASSIGNED

    @property
    def is_compliant(self) -> bool:
        return self.status == COMPLIANT

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.vendor_id,
            "vendorName": self.vendor_name,
            "email": self.email,
            "company": self.company,
            "assignedConsultant": self.assigned_consultant,
            "lastDocumentUploadDate": self.last_upload_date.isoformat() if self.last_upload_date else None,
            "daysSinceLastUpload": self.days_since_last_upload,
            "status": self.status,
            "lastDocumentType": self.last_document_type,
        }


def window_days() -> int:
    if has_app_context():
        return int(current_app.config.get("COMPLIANCE_WINDOW_DAYS") or DEFAULT_WINDOW_DAYS)
    return DEFAULT_WINDOW_DAYS


def whole_days_between(later: datetime, earlier: datetime) -> int:
    """Integer days, truncated toward zero."""
    return int((later - earlier) / timedelta(days=1))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_vendor_status(
    s: Session,
    vendor_id: int,
    as_of: ReportingMonth | datetime | date | str | int | None = None,
    *,
    window: int | None = None,
) -> VendorComplianceStatus:
    period = ReportingMonth.parse(as_of)
    limit = window if window is not None else window_days()
    required = sorted(period.required_types)

    qualifies = and_(
        Document.status == DocumentStatus.APPROVED.value,
        Document.document_type.in_(required),
    )
    # One row: the newest qualifying document if any, else the newest document of
    # any kind. Documents created after the reference date do not exist yet.
    stmt = (
        select(User, Document, case((qualifies, 1), else_=0).label("qualifying"))
        .outerjoin(
            Document,
            and_(Document.vendor_id == User.id, Document.created_at <= period.reference_date),
        )
        .where(User.id == vendor_id)
        .order_by(
            case((qualifies, 1), else_=0).desc(),
            Document.created_at.desc(),
            Document.id.desc(),
        )
        .limit(1)
    )
    with storage_guard():
        row = s.execute(stmt).first()
    if row is None or Role.parse(row[0].role) is not Role.VENDOR:
        raise NotFound("Vendor", vendor_id)
    vendor, doc, qualifying = row

    result = VendorComplianceStatus(
        vendor_id=vendor.id,
        status=NON_COMPLIANT,
        days_since_last_upload=None,
        last_upload_date=None,
        vendor_name=vendor.name,
        email=vendor.email,
        company=vendor.company,
        assigned_consultant=(
            vendor.assigned_consultant.name if vendor.assigned_consultant is not None else UNASSIGNED
        ),
    )
    if doc is None:
        return result

    result.days_since_last_upload = whole_days_between(period.reference_date, doc.created_at)
    result.last_upload_date = doc.created_at
    result.last_document_type = doc.document_type
    if qualifying and result.days_since_last_upload <= limit:
        result.status = COMPLIANT
    return result


def summarize(results: Iterable[VendorComplianceStatus]) -> dict[str, int]:
    rows = list(results)
    days = [r.days_since_last_upload for r in rows if r.days_since_last_upload is not None]
    return {
        "totalVendors": len(rows),
        "compliantVendors": sum(1 for r in rows if r.status == COMPLIANT),
        "nonCompliantVendors": sum(1 for r in rows if r.status == NON_COMPLIANT),
        "averageDaysSinceUpload": round_half_up(sum(days) / len(days)) if days else 0,
    }


def all_vendor_ids(s: Session) -> list[int]:
    with storage_guard():
        return list(
            s.execute(select(User.id).where(User.role == Role.VENDOR.value).order_by(User.id.asc())).scalars()
        )


def compute_fleet_report(
    s: Session,
    vendor_ids: Iterable[int] | None = None,
    as_of: ReportingMonth | datetime | date | str | int | None = None,
    *,
    window: int | None = None,
) -> dict[str, Any]:
    period = ReportingMonth.parse(as_of)
    ids = list(vendor_ids) if vendor_ids is not None else all_vendor_ids(s)
    results = [compute_vendor_status(s, vid, period, window=window) for vid in ids]
    return {
        "generatedAt": period.reference_date.isoformat(),
        "month": calendar.month_name[period.month],
        "summary": summarize(results),
        "vendors": [r.to_dict() for r in results],
    }


def report_vendor_ids_for(s: Session, actor: Actor) -> list[int]:
    """
    Vendors an actor may include in a fleet report: consultants their assigned
    vendors, report-capable roles everyone.
    """
    role = Role.parse(actor.role)
    decision = check_capability(role, Capability.GENERATE_REPORTS)
    if not decision and role is not None:
        decision = check_capability(role, Capability.GENERATE_APPROVAL_REPORTS)
    require(decision)
    if role is Role.CONSULTANT:
        with storage_guard():
            return list(
                s.execute(
                    select(User.id)
                    .where(User.role == Role.VENDOR.value, User.assigned_consultant_id == actor.id)
                    .order_by(User.id.asc())
                ).scalars()
            )
    return all_vendor_ids(s)
