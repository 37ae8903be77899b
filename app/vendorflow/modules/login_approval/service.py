from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.vendorflow.audit import SUBJECT_LOGIN_APPROVAL, AuditAction, list_events, record_event
from app.vendorflow.db import storage_guard
from app.vendorflow.errors import (
    AlreadyDecided,
    ConcurrentModification,
    DuplicatePendingApproval,
    Expired,
    GovernanceError,
    InvalidRequest,
    NotFound,
)
from app.vendorflow.models import AuditEvent, User
from app.vendorflow.rbac import NOT_ASSIGNED, AccessDecision, Actor, Capability, Role, check_capability, require
from app.vendorflow.utils import as_naive_utc, utcnow

from .models import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED, LoginApproval

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24

_DECISIONS = {
    "approve": STATUS_APPROVED,
    "approved": STATUS_APPROVED,
    "reject": STATUS_REJECTED,
    "rejected": STATUS_REJECTED,
}


def _ttl() -> timedelta:
    hours = DEFAULT_TTL_HOURS
    if has_app_context():
        hours = int(current_app.config.get("LOGIN_APPROVAL_TTL_HOURS") or DEFAULT_TTL_HOURS)
    return timedelta(hours=hours)


def _now(now: datetime | None) -> datetime:
    return as_naive_utc(now) if now else utcnow()


def new_request_token() -> str:
    return secrets.token_hex(32)


def _lock_vendor(s: Session, vendor_id: int) -> User:
    with storage_guard():
        vendor = s.execute(select(User).where(User.id == vendor_id).with_for_update()).scalar_one_or_none()
    if vendor is None or Role.parse(vendor.role) is not Role.VENDOR:
        raise NotFound("Vendor", vendor_id)
    return vendor


def _open_request(s: Session, vendor_id: int, now: datetime) -> LoginApproval | None:
    with storage_guard():
        return s.execute(
            select(LoginApproval)
            .where(
                LoginApproval.vendor_id == vendor_id,
                LoginApproval.status == STATUS_PENDING,
                LoginApproval.expires_at >= now,
            )
            .order_by(LoginApproval.created_at.desc(), LoginApproval.id.desc())
        ).scalars().first()


def request_approval(
    s: Session,
    vendor_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> LoginApproval:
    """
    Open a login approval request for a vendor.

    The vendor row is locked while checking for an open request and its
    version is bumped with the insert, so of two concurrent logins only one
    creates a request; the other gets ConcurrentModification.
    """
    ts = _now(now)
    vendor = _lock_vendor(s, vendor_id)
    existing = _open_request(s, vendor.id, ts)
    if existing is not None:
        raise DuplicatePendingApproval(existing.id)

    la = LoginApproval(
        vendor_id=vendor.id,
        status=STATUS_PENDING,
        request_token=new_request_token(),
        created_at=ts,
        expires_at=ts + _ttl(),
        ip_address=(ip_address or None),
        user_agent=(user_agent or "")[:512] or None,
        assigned_consultant_id=vendor.assigned_consultant_id,
    )
    s.add(la)
    vendor.last_login_request_at = ts
    try:
        with storage_guard():
            s.flush()
        record_event(
            s,
            actor=Actor.from_user(vendor),
            action=AuditAction.LOGIN_REQUESTED,
            subject_type=SUBJECT_LOGIN_APPROVAL,
            subject_id=la.id,
            detail=f"Login approval requested by {vendor.email}",
            metadata={"vendorId": vendor.id, "ipAddress": la.ip_address},
            now=ts,
        )
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("Vendor", vendor_id) from e
    except GovernanceError:
        s.rollback()
        raise
    logger.info("Login approval %s requested for vendor %s", la.id, vendor.id)
    return la


def can_decide_for_vendor(actor: Actor, vendor: User) -> AccessDecision:
    """
    Consultants handle their own vendors and any vendor without a consultant;
    admins handle all.
    """
    decision = check_capability(actor.role, Capability.APPROVE_LOGINS)
    if not decision:
        return decision
    if Role.parse(actor.role) is Role.CONSULTANT:
        if vendor.assigned_consultant_id not in (None, actor.id):
            return AccessDecision(False, reason=NOT_ASSIGNED, capability=Capability.APPROVE_LOGINS.value)
    return decision


def decide(
    s: Session,
    approval_id: int,
    decision: str,
    actor: Actor,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> LoginApproval:
    """
    Approve or reject a pending request.

    Expiry wins over any stored status: an expired request raises Expired even
    if it was already decided. Of two concurrent deciders only the first
    commits; the other gets ConcurrentModification.
    """
    outcome = _DECISIONS.get((decision or "").strip().lower())
    if outcome is None:
        raise InvalidRequest(f"Unknown decision: {decision!r}", details={"decision": decision})

    ts = _now(now)
    with storage_guard():
        la = s.execute(
            select(LoginApproval).where(LoginApproval.id == approval_id).with_for_update()
        ).scalar_one_or_none()
    if la is None:
        raise NotFound("Login approval", approval_id)

    access = can_decide_for_vendor(actor, la.vendor)
    if not access:
        logger.warning(
            "Login decision denied: actor=%s role=%s approval=%s reason=%s",
            actor.id, actor.role, la.id, access.reason,
        )
    require(access, "You are not allowed to decide on this login request" if access.reason == NOT_ASSIGNED else None)

    if la.is_expired(ts):
        raise Expired()
    if la.status != STATUS_PENDING:
        raise AlreadyDecided(la.status)

    note = (reason or "").strip() or None
    la.status = outcome
    la.decided_at = ts
    la.decided_by_user_id = actor.id
    if outcome == STATUS_REJECTED:
        la.rejection_reason = note or "Login request rejected"
    else:
        vendor = la.vendor
        vendor.last_login_at = ts
        if not vendor.first_login_completed:
            vendor.first_login_completed = True

    metadata: dict[str, object] = {"vendorId": la.vendor_id, "previousStatus": STATUS_PENDING, "newStatus": outcome}
    if note:
        metadata["reason"] = note
    try:
        with storage_guard():
            s.flush()
        record_event(
            s,
            actor=actor,
            action=AuditAction.LOGIN_APPROVED if outcome == STATUS_APPROVED else AuditAction.LOGIN_REJECTED,
            subject_type=SUBJECT_LOGIN_APPROVAL,
            subject_id=la.id,
            detail=f"Login {outcome} for vendor {la.vendor_id}",
            metadata=metadata,
            now=ts,
        )
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("LoginApproval", approval_id) from e
    except GovernanceError:
        s.rollback()
        raise
    logger.info("Login approval %s %s by %s (%s)", la.id, outcome, actor.id, actor.role)
    return la


def poll_by_token(s: Session, token: str) -> LoginApproval:
    """Lookup used by the vendor's polling client. Callers read ``effective_status``."""
    if not token:
        raise NotFound("Login approval")
    with storage_guard():
        la = s.execute(select(LoginApproval).where(LoginApproval.request_token == token)).scalar_one_or_none()
    if la is None:
        raise NotFound("Login approval")
    return la


def list_pending_for(s: Session, actor: Actor, *, now: datetime | None = None) -> list[LoginApproval]:
    require(check_capability(actor.role, Capability.APPROVE_LOGINS))
    ts = _now(now)
    stmt = (
        select(LoginApproval)
        .join(User, User.id == LoginApproval.vendor_id)
        .where(LoginApproval.status == STATUS_PENDING, LoginApproval.expires_at >= ts)
    )
    if Role.parse(actor.role) is Role.CONSULTANT:
        stmt = stmt.where(or_(User.assigned_consultant_id == actor.id, User.assigned_consultant_id.is_(None)))
    with storage_guard():
        return list(s.execute(stmt.order_by(LoginApproval.created_at.asc(), LoginApproval.id.asc())).scalars())


def has_valid_login_approval(s: Session, vendor_id: int, *, now: datetime | None = None) -> bool:
    """True when the vendor holds an approved request that has not expired."""
    ts = _now(now)
    with storage_guard():
        found = s.execute(
            select(LoginApproval.id)
            .where(
                LoginApproval.vendor_id == vendor_id,
                LoginApproval.status == STATUS_APPROVED,
                LoginApproval.expires_at >= ts,
            )
            .limit(1)
        ).scalar_one_or_none()
    return found is not None


def approval_audit_trail(s: Session, actor: Actor, approval_id: int) -> list[AuditEvent]:
    with storage_guard():
        la = s.get(LoginApproval, approval_id)
    if la is None:
        raise NotFound("Login approval", approval_id)
    require(can_decide_for_vendor(actor, la.vendor))
    return list_events(s, SUBJECT_LOGIN_APPROVAL, la.id)
