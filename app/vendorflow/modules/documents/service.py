"""
Document service layer.

Every mutating entry point runs all permission and legality checks before it
touches the record, then applies the mutation and its single audit event in
the caller's transaction. On any failure the session is rolled back, so no
partial state is observable. Concurrent writers are detected through the
document's version counter.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import ColumnElement, and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.vendorflow.audit import SUBJECT_DOCUMENT, AuditAction, list_events, record_event
from app.vendorflow.catalog import is_known_type
from app.vendorflow.db import storage_guard
from app.vendorflow.errors import (
    ConcurrentModification,
    GovernanceError,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    PermissionDenied,
)
from app.vendorflow.models import AuditEvent, User
from app.vendorflow.rbac import (
    ROLE_NOT_RECOGNIZED,
    Actor,
    Capability,
    Role,
    can_act_on_document,
    check_capability,
    has_capability,
    require,
)
from app.vendorflow.utils import as_naive_utc, utcnow

from .models import Document, DocumentFile
from .workflow import (
    AUDIT_ACTION,
    DRAFT,
    PENDING,
    STAGE_APPROVAL_CAPABILITY,
    Action,
    DocumentState,
    DocumentStatus,
    is_legal,
    next_state,
    required_capability,
)

logger = logging.getLogger(__name__)

# Ad-hoc types outside the catalog follow the same naming convention.
_TYPE_ID_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

_VIEW_CAPABILITIES = (
    Capability.VIEW_ALL_DOCUMENTS,
    Capability.VIEW_ASSIGNED_DOCUMENTS,
    Capability.VIEW_OWN_DOCUMENTS,
)


@dataclass(frozen=True)
class Attachment:
    storage_key: str
    filename: str
    content_type: str = "application/octet-stream"
    size_bytes: int = 0


def normalize_document_type(type_id: str) -> str:
    t = (type_id or "").strip().upper()
    if not is_known_type(t) and not _TYPE_ID_RE.fullmatch(t):
        raise InvalidRequest(f"Unknown document type: {type_id!r}", details={"documentType": type_id})
    return t


def view_capability(role: str) -> Capability:
    for cap in _VIEW_CAPABILITIES:
        if has_capability(role, cap):
            return cap
    return Capability.VIEW_OWN_DOCUMENTS


def _load(s: Session, document_id: int) -> Document:
    with storage_guard():
        d = s.get(Document, document_id)
    if not d:
        raise NotFound("Document", document_id)
    return d


def _add_files(d: Document, files: Iterable[Attachment], now: datetime) -> int:
    start = len(d.files)
    added = 0
    for i, f in enumerate(files):
        d.files.append(
            DocumentFile(
                position=start + i,
                storage_key=f.storage_key,
                filename=f.filename,
                content_type=f.content_type or "application/octet-stream",
                size_bytes=int(f.size_bytes or 0),
                uploaded_at=now,
            )
        )
        added += 1
    return added


def _commit_mutation(s: Session, d: Document, write_audit, *, entity_id: int | None = None) -> None:  # type: ignore[no-untyped-def]
    """
    Flush the document change, then its audit event; roll back on any failure.

    ``entity_id`` names the record reported on a conflict when ``d`` is new.
    """
    entity_id = entity_id if entity_id is not None else d.id
    try:
        with storage_guard():
            s.flush()
        write_audit()
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("Document", entity_id) from e
    except IntegrityError as e:
        s.rollback()
        raise ConcurrentModification("Document", entity_id) from e
    except GovernanceError:
        s.rollback()
        raise


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_document(s: Session, actor: Actor, document_id: int) -> Document:
    d = _load(s, document_id)
    require(can_act_on_document(actor, d, view_capability(actor.role)))
    return d


def _status_filter(status: str) -> ColumnElement[bool]:
    """``pending``, ``under_review`` (any stage) or ``under_review:<stage>``."""
    value = status.strip().lower()
    if value == DocumentStatus.UNDER_REVIEW.value:
        return Document.status == value
    try:
        wanted = DocumentState.parse(value)
    except ValueError:
        raise InvalidRequest(f"Unknown status: {status!r}", details={"status": status}) from None
    if wanted.stage is None:
        return Document.status == wanted.status.value
    return and_(Document.status == wanted.status.value, Document.review_stage == wanted.stage.value)


def list_documents_for(
    s: Session,
    actor: Actor,
    *,
    status: str | None = None,
    vendor_id: int | None = None,
) -> list[Document]:
    """
    Role-scoped listing: vendors see their own (drafts included), consultants
    their assigned vendors, everyone else with a view capability all
    submitted documents.
    """
    role = Role.parse(actor.role)
    if role is None:
        raise PermissionDenied("Role not recognized", reason=ROLE_NOT_RECOGNIZED)
    cap = view_capability(role)
    require(check_capability(role, cap))

    stmt = select(Document)
    if role is Role.VENDOR:
        stmt = stmt.where(Document.vendor_id == actor.id)
    else:
        stmt = stmt.where(Document.status != DocumentStatus.DRAFT.value)
        if role is Role.CONSULTANT:
            assigned = select(User.id).where(User.assigned_consultant_id == actor.id)
            stmt = stmt.where(Document.vendor_id.in_(assigned))
    if status:
        stmt = stmt.where(_status_filter(status))
    if vendor_id is not None:
        stmt = stmt.where(Document.vendor_id == vendor_id)
    with storage_guard():
        return list(s.execute(stmt.order_by(Document.created_at.desc(), Document.id.desc())).scalars())


def document_audit_trail(s: Session, actor: Actor, document_id: int) -> list[AuditEvent]:
    get_document(s, actor, document_id)
    return list_events(s, SUBJECT_DOCUMENT, document_id)


def successor_of(s: Session, document_id: int) -> Document | None:
    with storage_guard():
        return s.execute(select(Document).where(Document.supersedes_id == document_id)).scalar_one_or_none()


def list_resubmission_chain(s: Session, actor: Actor, document_id: int) -> list[Document]:
    """All submissions linked by resubmission, oldest first."""
    d = get_document(s, actor, document_id)
    chain = [d]
    while chain[0].supersedes is not None:
        chain.insert(0, chain[0].supersedes)
    nxt = successor_of(s, chain[-1].id)
    while nxt is not None:
        chain.append(nxt)
        nxt = successor_of(s, nxt.id)
    return chain


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def require_can_create(actor: Actor) -> None:
    require(check_capability(actor.role, Capability.CREATE_SUBMISSIONS))


def create_document(
    s: Session,
    actor: Actor,
    *,
    document_type: str,
    files: Sequence[Attachment] = (),
    title: str = "",
    as_draft: bool = False,
    now: datetime | None = None,
) -> Document:
    """Vendor submission. Starts ``pending``, or ``draft`` for a partially filled form."""
    require_can_create(actor)
    type_id = normalize_document_type(document_type)
    if not as_draft and not files:
        raise InvalidRequest("Document must have at least one file")

    ts = as_naive_utc(now) if now else utcnow()
    state = DRAFT if as_draft else PENDING
    d = Document(vendor_id=actor.id, document_type=type_id, title=(title or "").strip(), created_at=ts, updated_at=ts)
    d.state = state
    _add_files(d, files, ts)
    s.add(d)

    _commit_mutation(
        s,
        d,
        lambda: record_event(
            s,
            actor=actor,
            action=AuditAction.CREATED,
            subject_type=SUBJECT_DOCUMENT,
            subject_id=d.id,
            detail=f"{type_id} {'saved as draft' if as_draft else 'submitted'}",
            metadata={"previousStatus": None, "newStatus": str(state), "documentType": type_id},
            now=ts,
        ),
    )
    logger.info("Document %s created by vendor %s (%s, %s)", d.id, actor.id, type_id, state)
    return d


def attach_files(
    s: Session,
    actor: Actor,
    document_id: int,
    files: Sequence[Attachment],
    *,
    now: datetime | None = None,
) -> Document:
    """Add attachments to a draft. Only the owning vendor may do this."""
    d = _load(s, document_id)
    require(can_act_on_document(actor, d, Capability.UPLOAD_DOCUMENTS))
    if d.state != DRAFT:
        raise InvalidTransition("attach files to", str(d.state), "Files can only be added while the document is a draft")
    if not files:
        raise InvalidRequest("No files provided")

    ts = as_naive_utc(now) if now else utcnow()
    added = _add_files(d, files, ts)
    d.updated_at = ts
    _commit_mutation(
        s,
        d,
        lambda: record_event(
            s,
            actor=actor,
            action=AuditAction.UPDATED,
            subject_type=SUBJECT_DOCUMENT,
            subject_id=d.id,
            detail=f"{added} file(s) attached",
            metadata={"filesAdded": [f.filename for f in files]},
            now=ts,
        ),
    )
    return d


def comment_on_document(
    s: Session,
    actor: Actor,
    document_id: int,
    comment: str,
    *,
    now: datetime | None = None,
) -> AuditEvent:
    text = (comment or "").strip()
    if not text:
        raise InvalidRequest("Comment is required")
    d = get_document(s, actor, document_id)
    try:
        return record_event(
            s,
            actor=actor,
            action=AuditAction.COMMENTED,
            subject_type=SUBJECT_DOCUMENT,
            subject_id=d.id,
            detail="Comment added",
            metadata={"comment": text},
            now=now,
        )
    except GovernanceError:
        s.rollback()
        raise


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _acting_capability(actor: Actor, d: Document, action: Action) -> Capability:
    """
    Capability the actor would use for ``action`` on ``d``.

    For approve/reject this depends on the stage: an actor holding an approval
    capability for another stage still gets that capability back, so the
    stage mismatch surfaces as InvalidTransition rather than a denial.
    """
    state = d.state
    if action is Action.APPROVE:
        needed = required_capability(state, action)
        if has_capability(actor.role, needed):
            return needed
        for cap in STAGE_APPROVAL_CAPABILITY.values():
            if has_capability(actor.role, cap):
                return cap
        return needed
    if action is Action.REJECT:
        if has_capability(actor.role, Capability.REJECT_DOCUMENTS):
            return Capability.REJECT_DOCUMENTS
        if state.stage is not None and has_capability(actor.role, STAGE_APPROVAL_CAPABILITY[state.stage]):
            return STAGE_APPROVAL_CAPABILITY[state.stage]
        return Capability.REJECT_DOCUMENTS
    return required_capability(state, action)


def transition(
    s: Session,
    actor: Actor,
    document_id: int,
    action: Action | str,
    *,
    comment: str | None = None,
    files: Sequence[Attachment] | None = None,
    now: datetime | None = None,
) -> Document:
    """
    Apply one lifecycle action. Returns the document now carrying the result
    (the new record for ``resubmit``).

    Raises NotFound, PermissionDenied, InvalidTransition, ConcurrentModification
    or StorageUnavailable; none of them leaves a partial mutation behind.
    """
    try:
        act = Action(action)
    except ValueError:
        raise InvalidRequest(f"Unknown action: {action!r}", details={"action": str(action)}) from None
    if act is Action.RESUBMIT:
        return resubmit(s, actor, document_id, files=files, comment=comment, now=now)

    d = _load(s, document_id)
    current = d.state
    cap = _acting_capability(actor, d, act)
    decision = can_act_on_document(actor, d, cap)
    if not decision:
        logger.warning(
            "Document transition denied: actor=%s role=%s action=%s reason=%s",
            actor.id, actor.role, act.value, decision.reason,
        )
    require(decision)

    if current.is_terminal:
        raise InvalidTransition(act.value, str(current), "Approved documents are final")
    if not is_legal(current, act):
        raise InvalidTransition(act.value, str(current))
    if act is Action.APPROVE and cap is not STAGE_APPROVAL_CAPABILITY[current.stage]:  # type: ignore[index]
        raise InvalidTransition(
            act.value,
            str(current),
            f"Review stage '{current.stage.value}' must be completed before this approval",  # type: ignore[union-attr]
        )
    if act is Action.SUBMIT and not d.files:
        raise InvalidRequest("Document must have at least one file")

    ts = as_naive_utc(now) if now else utcnow()
    new = next_state(current, act)
    d.state = new
    d.updated_at = ts
    note = (comment or "").strip()
    if note and act in (Action.APPROVE, Action.REJECT):
        d.review_notes = note

    metadata: dict[str, object] = {"previousStatus": str(current), "newStatus": str(new)}
    if note:
        metadata["comment"] = note
    _commit_mutation(
        s,
        d,
        lambda: record_event(
            s,
            actor=actor,
            action=AUDIT_ACTION[act],
            subject_type=SUBJECT_DOCUMENT,
            subject_id=d.id,
            detail=f"{act.value}: {current} -> {new}",
            metadata=metadata,
            now=ts,
        ),
    )
    logger.info("Document %s %s by %s (%s): %s -> %s", d.id, act.value, actor.id, actor.role, current, new)
    return d


def resubmit(
    s: Session,
    actor: Actor,
    document_id: int,
    *,
    files: Sequence[Attachment] | None = None,
    title: str | None = None,
    comment: str | None = None,
    now: datetime | None = None,
) -> Document:
    """
    Resubmit a rejected document as a brand-new ``pending`` record.

    The rejected record is left untouched; the new one points back at it via
    ``supersedes_id``. Without new files the previous attachments are carried over.
    """
    old = _load(s, document_id)
    require(can_act_on_document(actor, old, Capability.RESUBMIT_DOCUMENTS))
    if not is_legal(old.state, Action.RESUBMIT):
        raise InvalidTransition(Action.RESUBMIT.value, str(old.state))
    if successor_of(s, old.id) is not None:
        raise InvalidTransition(Action.RESUBMIT.value, str(old.state), "Document has already been resubmitted")

    ts = as_naive_utc(now) if now else utcnow()
    carried = [
        Attachment(f.storage_key, f.filename, f.content_type, f.size_bytes) for f in old.files
    ]
    new_files = list(files) if files else carried
    if not new_files:
        raise InvalidRequest("Document must have at least one file")

    d = Document(
        vendor_id=old.vendor_id,
        document_type=old.document_type,
        title=(title if title is not None else old.title).strip(),
        supersedes_id=old.id,
        created_at=ts,
        updated_at=ts,
    )
    d.state = PENDING
    _add_files(d, new_files, ts)
    s.add(d)

    metadata: dict[str, object] = {
        "previousStatus": str(old.state),
        "newStatus": str(PENDING),
        "supersedes": old.id,
        "documentType": old.document_type,
    }
    if comment and comment.strip():
        metadata["comment"] = comment.strip()
    _commit_mutation(
        s,
        d,
        lambda: record_event(
            s,
            actor=actor,
            action=AUDIT_ACTION[Action.RESUBMIT],
            subject_type=SUBJECT_DOCUMENT,
            subject_id=d.id,
            detail=f"Resubmission of rejected document {old.id}",
            metadata=metadata,
            now=ts,
        ),
        entity_id=old.id,
    )
    logger.info("Document %s resubmitted as %s by vendor %s", old.id, d.id, actor.id)
    return d
