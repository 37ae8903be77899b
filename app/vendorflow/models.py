from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.vendorflow.utils import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Any account: admin, consultant, cross_verifier, approver or vendor.

    A vendor row carries its consultant assignment (one consultant per vendor,
    nullable).
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="vendor")
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_login_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_login_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    assigned_consultant_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_login_request_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Bumped on every UPDATE; a writer holding a stale row gets StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    assigned_consultant: Mapped["User | None"] = relationship(
        "User",
        remote_side=[id],
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class AuditEvent(Base):
    """
    Append-only audit trail event.

    Subjects are documents and login approvals (plus vendors for assignment
    changes). Ordering is (created_at, id); ``id`` is the insertion sequence.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_subject", "subject_type", "subject_id", "created_at", "id"),
        Index("idx_audit_actor", "actor_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    subject_type: Mapped[str] = mapped_column(String(32), nullable=False)  # "document" | "login_approval" | "vendor"
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(32), nullable=False)  # e.g. "approved"

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    actor_role: Mapped[str] = mapped_column(String(32), nullable=False, default="")

    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string

    @property
    def event_metadata(self) -> dict[str, Any]:
        return json.loads(self.metadata_json) if self.metadata_json else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subjectType": self.subject_type,
            "subjectId": self.subject_id,
            "action": self.action,
            "actor": {"id": self.actor_user_id, "name": self.actor_name, "role": self.actor_role},
            "detail": self.detail,
            "timestamp": self.created_at.isoformat(),
            "metadata": self.event_metadata,
        }


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.vendorflow.modules.documents.models import Document, DocumentFile  # noqa: E402,F401
from app.vendorflow.modules.login_approval.models import LoginApproval  # noqa: E402,F401
