from flask import Blueprint
from sqlalchemy import text

from app.vendorflow.db import db_session, storage_guard

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON; raises StorageUnavailable (503) if the DB is down."""
    with storage_guard():
        db_session().execute(text("SELECT 1"))
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check. No DB access, minimal overhead.
    """
    return "ok", 200
