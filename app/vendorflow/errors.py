"""
Typed failures raised by the governance core.

Every service entry point either succeeds or raises one of these after the
session has been left without partial mutations. The Flask app renders them
through a single error handler (see ``app.vendorflow.create_app``).
"""
from __future__ import annotations

from typing import Any


class GovernanceError(Exception):
    code = "governance_error"
    http_status = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class PermissionDenied(GovernanceError):
    """Role lacks a capability, or fails ownership/assignment scoping."""

    code = "permission_denied"
    http_status = 403

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        *,
        reason: str,
        capability: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.reason = reason
        self.capability = capability
        merged = {"reason": reason}
        if capability:
            merged["capability"] = capability
        merged.update(details or {})
        super().__init__(message, details=merged)


class InvalidTransition(GovernanceError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, action: str, current_state: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {action} a document in state '{current_state}'",
            details={"action": action, "currentState": current_state},
        )


class DuplicatePendingApproval(GovernanceError):
    code = "duplicate_pending_approval"
    http_status = 409

    def __init__(self, approval_id: int):
        super().__init__(
            "A login approval request is already pending for this vendor",
            details={"approvalId": approval_id},
        )


class AlreadyDecided(GovernanceError):
    code = "already_decided"
    http_status = 409

    def __init__(self, status: str):
        super().__init__(f"Login request has already been {status}", details={"status": status})


class Expired(GovernanceError):
    code = "expired"
    http_status = 410

    def __init__(self, message: str = "Login request has expired. Vendor must attempt login again."):
        super().__init__(message)


class ConcurrentModification(GovernanceError):
    code = "concurrent_modification"
    http_status = 409

    def __init__(self, entity: str, entity_id: int | str | None):
        super().__init__(
            f"{entity} was modified by another request; reload and retry",
            details={"entity": entity, "id": entity_id},
        )


class NotFound(GovernanceError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: int | str | None = None):
        details: dict[str, Any] = {"entity": entity}
        if entity_id is not None:
            details["id"] = entity_id
        super().__init__(f"{entity} not found", details=details)


class InvalidRequest(GovernanceError):
    """Malformed input (unknown document type, missing attachments, ...)."""

    code = "invalid_request"
    http_status = 400


class StorageUnavailable(GovernanceError):
    """Persistence layer unreachable. Never retried by the core."""

    code = "storage_unavailable"
    http_status = 503

    def __init__(self, message: str = "Storage is unavailable"):
        super().__init__(message)


class AuditLogImmutable(GovernanceError):
    code = "audit_log_immutable"
    http_status = 500

    def __init__(self) -> None:
        super().__init__("Audit events are append-only and cannot be modified or deleted")
