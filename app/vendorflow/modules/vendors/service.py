from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.vendorflow.audit import SUBJECT_VENDOR, AuditAction, record_event
from app.vendorflow.db import storage_guard
from app.vendorflow.errors import ConcurrentModification, GovernanceError, InvalidRequest, NotFound
from app.vendorflow.models import User
from app.vendorflow.rbac import Actor, Capability, Role, can_act_on_vendor, check_capability, require

logger = logging.getLogger(__name__)


def _get_user(s: Session, user_id: int, role: Role, entity: str) -> User:
    with storage_guard():
        u = s.get(User, user_id)
    if u is None or Role.parse(u.role) is not role:
        raise NotFound(entity, user_id)
    return u


def get_vendor(s: Session, actor: Actor, vendor_id: int) -> User:
    v = _get_user(s, vendor_id, Role.VENDOR, "Vendor")
    role = Role.parse(actor.role)
    cap = Capability.VIEW_OWN_PROFILE if role is Role.VENDOR else None
    require(can_act_on_vendor(actor, v.id, v.assigned_consultant_id, cap))
    return v


def list_vendors_for(s: Session, actor: Actor) -> list[User]:
    """Admins see all vendors, approvers the vendor list, consultants their assigned ones."""
    role = Role.parse(actor.role)
    stmt = select(User).where(User.role == Role.VENDOR.value)
    if role is Role.CONSULTANT:
        require(check_capability(role, Capability.VIEW_ASSIGNED_VENDORS))
        stmt = stmt.where(User.assigned_consultant_id == actor.id)
    elif role is Role.ADMIN:
        require(check_capability(role, Capability.VIEW_ALL_USERS))
    else:
        require(check_capability(role, Capability.VIEW_VENDOR_LIST))
    with storage_guard():
        return list(s.execute(stmt.order_by(User.name.asc(), User.id.asc())).scalars())


def assign_consultant(
    s: Session,
    actor: Actor,
    vendor_id: int,
    consultant_id: int | None,
    *,
    now: datetime | None = None,
) -> User:
    """Set (or clear, with ``None``) a vendor's consultant."""
    require(check_capability(actor.role, Capability.MANAGE_VENDORS))
    vendor = _get_user(s, vendor_id, Role.VENDOR, "Vendor")
    if consultant_id is not None:
        consultant = _get_user(s, consultant_id, Role.CONSULTANT, "Consultant")
        if not consultant.is_active:
            raise InvalidRequest("Consultant account is inactive", details={"consultantId": consultant_id})

    previous = vendor.assigned_consultant_id
    if previous == consultant_id:
        return vendor
    vendor.assigned_consultant_id = consultant_id
    try:
        with storage_guard():
            s.flush()
        record_event(
            s,
            actor=actor,
            action=AuditAction.UPDATED,
            subject_type=SUBJECT_VENDOR,
            subject_id=vendor.id,
            detail="Consultant assignment changed",
            metadata={"previousConsultantId": previous, "newConsultantId": consultant_id},
            now=now,
        )
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("Vendor", vendor_id) from e
    except GovernanceError:
        s.rollback()
        raise
    # Drop the cached relationship so readers see the new consultant.
    s.expire(vendor, ["assigned_consultant"])
    logger.info("Vendor %s consultant %s -> %s by %s", vendor.id, previous, consultant_id, actor.id)
    return vendor


def vendor_to_dict(v: User) -> dict[str, object]:
    consultant = v.assigned_consultant
    return {
        "id": v.id,
        "name": v.name,
        "email": v.email,
        "company": v.company,
        "isActive": v.is_active,
        "requiresLoginApproval": v.requires_login_approval,
        "firstLoginCompleted": v.first_login_completed,
        "lastLogin": v.last_login_at.isoformat() if v.last_login_at else None,
        "assignedConsultant": (
            {"id": consultant.id, "name": consultant.name, "email": consultant.email} if consultant else None
        ),
    }
