from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from typing import Any

from flask import Blueprint, current_app, request, send_file

from app.vendorflow.catalog import DOCUMENT_TYPES, is_mandatory, is_one_time_optional
from app.vendorflow.db import db_session
from app.vendorflow.errors import InvalidRequest, NotFound, StorageUnavailable
from app.vendorflow.modules.compliance.service import ReportingMonth
from app.vendorflow.modules.documents import service
from app.vendorflow.modules.documents.service import Attachment
from app.vendorflow.rbac import Actor, Capability, can_act_on_document, current_actor, login_required, require
from app.vendorflow.storage import (
    DEFAULT_CONTENT_TYPE,
    Storage,
    StorageError,
    StoredObject,
    storage_from_config,
    vendor_document_key,
)

bp = Blueprint("documents_api", __name__)


def _actor() -> Actor:
    a = current_actor()
    if a is None:
        raise RuntimeError("No current user")
    return a


def _payload() -> dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object")
        return payload
    return request.form.to_dict()


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _text(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or isinstance(value, str):
        return value
    raise InvalidRequest(f"{key} must be a string", details={key: value})


def _uploads(storage: Storage, vendor_id: int, document_type: str) -> list[tuple[str, StoredObject]]:
    """Store multipart "files" uploads; nothing is kept if one of them fails."""
    stored: list[tuple[str, StoredObject]] = []
    for f in request.files.getlist("files"):
        if not f or not f.filename:
            continue
        key = vendor_document_key(vendor_id, document_type, f.filename)
        try:
            stored.append((f.filename, storage.put(key, f.read(), f.mimetype)))
        except StorageError as e:
            storage.discard(o for _, o in stored)
            raise StorageUnavailable(f"File storage error: {e}") from e
    return stored


def _size(item: dict[str, Any]) -> int:
    raw = item.get("size") or 0
    try:
        size = int(raw)
    except (TypeError, ValueError):
        size = -1
    if isinstance(raw, bool) or size < 0:
        raise InvalidRequest("File size must be a non-negative integer", details={"size": raw})
    return size


def _json_attachments(payload: dict[str, Any]) -> list[Attachment]:
    """Already-stored file metadata: [{"path", "name", "mimeType", "size"}]."""
    raw = payload.get("files") or []
    if not isinstance(raw, list):
        raise InvalidRequest("files must be a list")
    out = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("path"):
            raise InvalidRequest("Each file needs a storage path", details={"file": item})
        out.append(
            Attachment(
                storage_key=str(item["path"]),
                filename=str(item.get("name") or item["path"]),
                content_type=str(item.get("mimeType") or DEFAULT_CONTENT_TYPE),
                size_bytes=_size(item),
            )
        )
    return out


@contextmanager
def _attachments(vendor_id: int, document_type: str, payload: dict[str, Any]) -> Iterator[list[Attachment]]:
    """
    Yields the request's attachments. Bytes uploaded here are removed again
    if the block raises, so a rejected request leaves no orphaned files.
    """
    storage = storage_from_config(current_app.config)
    stored = _uploads(storage, vendor_id, document_type)
    if not stored:
        yield _json_attachments(payload)
        return
    try:
        yield [Attachment(o.key, name, o.content_type, o.size_bytes) for name, o in stored]
    except Exception:
        storage.discard(o for _, o in stored)
        raise


@bp.get("/document-types")
@login_required
def list_document_types():
    # ?month=Jan|1 (default: current month) decides which types are mandatory
    month = ReportingMonth.parse(request.args.get("month") or None).month
    return {
        "month": month,
        "documentTypes": [
            {
                "id": t.id,
                "name": t.name,
                "category": t.category.value,
                "description": t.description,
                "mandatory": is_mandatory(t.id, month),
                "oneTimeOptional": is_one_time_optional(t.id),
            }
            for t in DOCUMENT_TYPES
        ],
    }


@bp.get("/documents")
@login_required
def list_documents():
    s = db_session()
    vendor_id = request.args.get("vendorId", type=int)
    docs = service.list_documents_for(s, _actor(), status=request.args.get("status") or None, vendor_id=vendor_id)
    return {"documents": [d.to_dict() for d in docs]}


@bp.post("/documents")
@login_required
def create_document():
    s = db_session()
    actor = _actor()
    payload = _payload()
    document_type = service.normalize_document_type(_text(payload, "documentType") or "")
    title = _text(payload, "title") or ""
    # Capability is checked before anything is written to storage.
    service.require_can_create(actor)
    with _attachments(actor.id, document_type, payload) as files:
        d = service.create_document(
            s,
            actor,
            document_type=document_type,
            title=title,
            files=files,
            as_draft=_is_truthy(payload.get("draft")),
        )
        s.commit()
    return {"document": d.to_dict()}, 201


@bp.get("/documents/<int:document_id>")
@login_required
def get_document(document_id: int):
    d = service.get_document(db_session(), _actor(), document_id)
    return {"document": d.to_dict()}


@bp.post("/documents/<int:document_id>/transitions")
@login_required
def transition_document(document_id: int):
    s = db_session()
    payload = _payload()
    action = (_text(payload, "action") or "").strip()
    if not action:
        raise InvalidRequest("action is required")
    d = service.transition(s, _actor(), document_id, action, comment=_text(payload, "comment"))
    s.commit()
    return {"document": d.to_dict()}


@bp.post("/documents/<int:document_id>/resubmit")
@login_required
def resubmit_document(document_id: int):
    s = db_session()
    actor = _actor()
    payload = _payload()
    title, comment = _text(payload, "title"), _text(payload, "comment")
    old = service.get_document(s, actor, document_id)
    # Only the owning vendor may upload; resubmit() refuses anyone else.
    uploads = _attachments(old.vendor_id, old.document_type, payload) if actor.id == old.vendor_id else nullcontext([])
    with uploads as files:
        d = service.resubmit(
            s,
            actor,
            document_id,
            files=files or None,
            title=title,
            comment=comment,
        )
        s.commit()
    return {"document": d.to_dict()}, 201


@bp.post("/documents/<int:document_id>/files")
@login_required
def attach_document_files(document_id: int):
    s = db_session()
    actor = _actor()
    payload = _payload()
    d = service.get_document(s, actor, document_id)
    require(can_act_on_document(actor, d, Capability.UPLOAD_DOCUMENTS))
    with _attachments(d.vendor_id, d.document_type, payload) as files:
        d = service.attach_files(s, actor, document_id, files)
        s.commit()
    return {"document": d.to_dict()}


@bp.post("/documents/<int:document_id>/comments")
@login_required
def comment_document(document_id: int):
    s = db_session()
    ev = service.comment_on_document(s, _actor(), document_id, _text(_payload(), "comment") or "")
    s.commit()
    return {"event": ev.to_dict()}, 201


@bp.get("/documents/<int:document_id>/audit")
@login_required
def document_audit(document_id: int):
    events = service.document_audit_trail(db_session(), _actor(), document_id)
    return {"events": [e.to_dict() for e in events]}


@bp.get("/documents/<int:document_id>/chain")
@login_required
def document_chain(document_id: int):
    chain = service.list_resubmission_chain(db_session(), _actor(), document_id)
    return {"documents": [d.to_dict() for d in chain]}


@bp.get("/documents/<int:document_id>/files/<int:file_id>")
@login_required
def download_document_file(document_id: int, file_id: int):
    d = service.get_document(db_session(), _actor(), document_id)
    f = next((f for f in d.files if f.id == file_id), None)
    if f is None:
        raise NotFound("File", file_id)
    storage = storage_from_config(current_app.config)
    try:
        if not storage.exists(f.storage_key):
            raise NotFound("File", file_id)
        stream = storage.open(f.storage_key)
    except StorageError as e:
        raise StorageUnavailable(f"File storage error: {e}") from e
    return send_file(stream, mimetype=f.content_type, as_attachment=True, download_name=f.filename)
