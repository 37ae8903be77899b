"""
Static role -> capability table plus the ownership / assignment predicates.

The table is built once at import time and exposed read-only. Unknown roles
and unknown capabilities always fail closed.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from flask import g

from app.vendorflow.errors import PermissionDenied

if TYPE_CHECKING:
    from app.vendorflow.models import User


class Role(str, Enum):
    ADMIN = "admin"
    CONSULTANT = "consultant"
    CROSS_VERIFIER = "cross_verifier"
    APPROVER = "approver"
    VENDOR = "vendor"

    @classmethod
    def parse(cls, value: "Role | str | None") -> "Role | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def capabilities(self) -> frozenset["Capability"]:
        return PERMISSIONS[self]


class Capability(str, Enum):
    VIEW_ALL_DOCUMENTS = "canViewAllDocuments"
    VIEW_ASSIGNED_DOCUMENTS = "canViewAssignedDocuments"
    VIEW_OWN_DOCUMENTS = "canViewOwnDocuments"
    VIEW_ALL_USERS = "canViewAllUsers"
    VIEW_ASSIGNED_VENDORS = "canViewAssignedVendors"
    VIEW_VENDOR_LIST = "canViewVendorList"
    VIEW_OWN_PROFILE = "canViewOwnProfile"
    EDIT_OWN_PROFILE = "canEditOwnProfile"
    CREATE_USERS = "canCreateUsers"
    EDIT_USERS = "canEditUsers"
    DELETE_USERS = "canDeleteUsers"
    APPROVE_DOCUMENTS = "canApproveDocuments"
    REJECT_DOCUMENTS = "canRejectDocuments"
    GENERATE_REPORTS = "canGenerateReports"
    GENERATE_APPROVAL_REPORTS = "canGenerateApprovalReports"
    GENERATE_MIS_REPORTS = "canGenerateMISReports"
    MANAGE_SETTINGS = "canManageSettings"
    APPROVE_LOGINS = "canApproveLogins"
    MANAGE_CONSULTANTS = "canManageConsultants"
    MANAGE_VENDORS = "canManageVendors"
    GENERATE_CREDENTIALS = "canGenerateCredentials"
    PERFORM_CONSULTANT_REVIEW = "canPerformConsultantReview"
    PERFORM_CROSS_VERIFICATION = "canPerformCrossVerification"
    PERFORM_FINAL_APPROVAL = "canPerformFinalApproval"
    SEND_AUTOMATED_REMINDERS = "canSendAutomatedReminders"
    DOWNLOAD_DOCUMENT_SETS = "canDownloadDocumentSets"
    UPLOAD_DOCUMENTS = "canUploadDocuments"
    CREATE_SUBMISSIONS = "canCreateSubmissions"
    RESUBMIT_DOCUMENTS = "canResubmitDocuments"

    @classmethod
    def parse(cls, value: "Capability | str | None") -> "Capability | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


C = Capability

PERMISSIONS: Mapping[Role, frozenset[Capability]] = MappingProxyType(
    {
        Role.ADMIN: frozenset(
            {
                C.VIEW_ALL_DOCUMENTS,
                C.VIEW_ALL_USERS,
                C.CREATE_USERS,
                C.EDIT_USERS,
                C.DELETE_USERS,
                C.APPROVE_DOCUMENTS,
                C.REJECT_DOCUMENTS,
                C.GENERATE_REPORTS,
                C.MANAGE_SETTINGS,
                C.APPROVE_LOGINS,
                C.MANAGE_CONSULTANTS,
                C.MANAGE_VENDORS,
                C.GENERATE_CREDENTIALS,
                C.PERFORM_CONSULTANT_REVIEW,
                C.PERFORM_CROSS_VERIFICATION,
                C.PERFORM_FINAL_APPROVAL,
                C.GENERATE_MIS_REPORTS,
                C.SEND_AUTOMATED_REMINDERS,
            }
        ),
        Role.CONSULTANT: frozenset(
            {
                C.VIEW_ASSIGNED_DOCUMENTS,
                C.VIEW_ASSIGNED_VENDORS,
                C.APPROVE_DOCUMENTS,
                C.REJECT_DOCUMENTS,
                C.GENERATE_REPORTS,
                C.APPROVE_LOGINS,
                C.EDIT_OWN_PROFILE,
                C.PERFORM_CONSULTANT_REVIEW,
                C.DOWNLOAD_DOCUMENT_SETS,
            }
        ),
        Role.CROSS_VERIFIER: frozenset(
            {
                C.VIEW_ASSIGNED_DOCUMENTS,
                C.PERFORM_CROSS_VERIFICATION,
                C.DOWNLOAD_DOCUMENT_SETS,
                C.EDIT_OWN_PROFILE,
            }
        ),
        Role.APPROVER: frozenset(
            {
                C.VIEW_ALL_DOCUMENTS,
                C.VIEW_VENDOR_LIST,
                C.PERFORM_FINAL_APPROVAL,
                C.GENERATE_APPROVAL_REPORTS,
                C.DOWNLOAD_DOCUMENT_SETS,
                C.EDIT_OWN_PROFILE,
            }
        ),
        Role.VENDOR: frozenset(
            {
                C.VIEW_OWN_DOCUMENTS,
                C.UPLOAD_DOCUMENTS,
                C.VIEW_OWN_PROFILE,
                C.EDIT_OWN_PROFILE,
                C.CREATE_SUBMISSIONS,
                C.RESUBMIT_DOCUMENTS,
            }
        ),
    }
)

# Reason codes carried by AccessDecision / PermissionDenied.
ROLE_NOT_RECOGNIZED = "role_not_recognized"
CAPABILITY_DENIED = "capability_denied"
NOT_OWNER = "not_owner"
NOT_ASSIGNED = "not_assigned"
DRAFT_PRIVATE = "draft_private"

_DRAFT_STATUS = "draft"


@dataclass(frozen=True)
class Actor:
    """Verified identity handed to the core by the identity layer."""

    id: int
    role: str
    name: str = ""

    @classmethod
    def from_user(cls, user: "User") -> "Actor":
        return cls(id=user.id, role=user.role, name=user.name or user.email)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None
    capability: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


_ALLOW = AccessDecision(True)


def _deny(reason: str, capability: Capability | str | None = None) -> AccessDecision:
    cap = capability.value if isinstance(capability, Capability) else capability
    return AccessDecision(False, reason=reason, capability=cap)


def check_capability(role: Role | str | None, capability: Capability | str) -> AccessDecision:
    r = Role.parse(role)
    if r is None:
        return _deny(ROLE_NOT_RECOGNIZED, capability)
    cap = Capability.parse(capability)
    if cap is None or cap not in PERMISSIONS[r]:
        return _deny(CAPABILITY_DENIED, capability)
    return _ALLOW


def has_capability(role: Role | str | None, capability: Capability | str) -> bool:
    return check_capability(role, capability).allowed


def can_act_on_vendor(
    actor: Actor,
    vendor_id: int,
    assigned_consultant_id: int | None,
    capability: Capability | str | None = None,
) -> AccessDecision:
    """
    Assignment-scoped access to a vendor (profile, documents, compliance).

    - admin: always, given the base capability
    - vendor: only itself
    - consultant: only vendors assigned to it
    - cross_verifier / approver: capability-gated only
    """
    role = Role.parse(actor.role)
    if role is None:
        return _deny(ROLE_NOT_RECOGNIZED, capability)
    if capability is not None:
        decision = check_capability(role, capability)
        if not decision:
            return decision

    if role is Role.ADMIN:
        return _ALLOW
    if role is Role.VENDOR:
        return _ALLOW if vendor_id == actor.id else _deny(NOT_OWNER, capability)
    if role is Role.CONSULTANT:
        if assigned_consultant_id is not None and assigned_consultant_id == actor.id:
            return _ALLOW
        return _deny(NOT_ASSIGNED, capability)
    return _ALLOW


def can_act_on_document(actor: Actor, document: Any, capability: Capability | str) -> AccessDecision:
    """
    Ownership / assignment check for one document.

    Drafts are private to the owning vendor; no other role may see or move them.
    """
    role = Role.parse(actor.role)
    if role is None:
        return _deny(ROLE_NOT_RECOGNIZED, capability)

    if document.status == _DRAFT_STATUS and not (role is Role.VENDOR and document.vendor_id == actor.id):
        return _deny(DRAFT_PRIVATE, capability)

    vendor = getattr(document, "vendor", None)
    assigned = vendor.assigned_consultant_id if vendor is not None else None
    return can_act_on_vendor(actor, document.vendor_id, assigned, capability)


def require(decision: AccessDecision, message: str | None = None) -> None:
    """Raise PermissionDenied for a negative decision."""
    if decision:
        return
    if decision.reason == ROLE_NOT_RECOGNIZED:
        default = "Role not recognized"
    elif decision.reason == NOT_ASSIGNED:
        default = "You are not assigned to this vendor"
    elif decision.reason in (NOT_OWNER, DRAFT_PRIVATE):
        default = "You do not have permission to access this document"
    else:
        default = "You do not have permission to perform this action"
    raise PermissionDenied(message or default, reason=decision.reason or CAPABILITY_DENIED, capability=decision.capability)


def current_actor() -> Actor | None:
    user = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return Actor.from_user(user)


def require_capability(capability: Capability) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            actor = current_actor()
            if actor is None:
                return _unauthenticated()
            require(check_capability(actor.role, capability))
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def _unauthenticated():
    return {"error": {"code": "unauthenticated", "message": "Login required", "details": {}}}, 401


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_actor() is None:
            return _unauthenticated()
        return fn(*args, **kwargs)

    return wrapped
