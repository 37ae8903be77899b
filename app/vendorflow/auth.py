from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.security import check_password_hash

from app.vendorflow.db import db_session
from app.vendorflow.errors import ConcurrentModification
from app.vendorflow.models import User
from app.vendorflow.modules.login_approval.models import STATUS_APPROVED
from app.vendorflow.modules.login_approval.service import has_valid_login_approval, poll_by_token, request_approval
from app.vendorflow.rbac import Role
from app.vendorflow.utils import utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def _error(code: str, message: str, status: int):
    return {"error": {"code": code, "message": message, "details": {}}}, status


def user_to_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "company": user.company,
        "firstLoginCompleted": user.first_login_completed,
        "assignedConsultantId": user.assigned_consultant_id,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _start_session(user: User) -> None:
    session.clear()
    session["user_id"] = user.id
    session.permanent = True


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return _error("rate_limited", "Too many login attempts. Please wait 5 minutes.", 429)
    _record_attempt(ip)

    s = db_session()
    user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        current_app.logger.warning("Login failed (email=%s request_id=%s)", email, g.get("request_id"))
        return _error("invalid_credentials", "Invalid credentials", 401)
    _login_attempts[ip].clear()

    if Role.parse(user.role) is Role.VENDOR and user.requires_login_approval:
        if not has_valid_login_approval(s, user.id):
            la = request_approval(
                s,
                user.id,
                ip_address=ip,
                user_agent=request.headers.get("User-Agent"),
            )
            s.commit()
            return {
                "status": "pending_approval",
                "message": "Login approval required. A consultant has been notified.",
                "approvalId": la.id,
                "requestToken": la.request_token,
                "expiresAt": la.expires_at.isoformat(),
            }, 202

    user_id = user.id
    user.last_login_at = utcnow()
    try:
        s.commit()
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("User", user_id) from e
    _start_session(user)
    return {"status": "ok", "user": user_to_dict(user)}


@bp.get("/login-status/<token>")
def login_status(token: str):
    """Polled by a vendor waiting on approval; starts the session once approved."""
    s = db_session()
    la = poll_by_token(s, token)
    now = utcnow()
    status = la.effective_status(now)
    logged_in = status == STATUS_APPROVED and not la.is_expired(now) and la.vendor.is_active
    if logged_in:
        _start_session(la.vendor)
    return {
        "status": status,
        "expired": la.is_expired(now),
        "rejectionReason": la.rejection_reason,
        "loggedIn": logged_in,
        "user": user_to_dict(la.vendor) if logged_in else None,
    }


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return _error("unauthenticated", "Login required", 401)
    return {"user": user_to_dict(user)}


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        current_app.logger.info("User %s logged out", user.id)
    session.pop("user_id", None)
    return {"status": "ok"}
