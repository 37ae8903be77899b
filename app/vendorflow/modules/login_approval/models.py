from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.vendorflow.models import Base, User
from app.vendorflow.utils import utcnow

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


class LoginApproval(Base):
    """
    One vendor login attempt waiting for a consultant/admin decision.

    Expiry is not stored as a status: ``effective_status`` treats a request
    past ``expires_at`` as rejected for every reader, whatever was decided.
    """

    __tablename__ = "login_approvals"
    __table_args__ = (Index("idx_login_approvals_vendor_status", "vendor_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    vendor_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    request_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    decided_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Snapshot of the vendor's consultant when the request was made.
    assigned_consultant_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    vendor: Mapped[User] = relationship("User", foreign_keys=[vendor_id], lazy="selectin")
    decided_by: Mapped[User | None] = relationship("User", foreign_keys=[decided_by_user_id], lazy="selectin")
    assigned_consultant: Mapped[User | None] = relationship(
        "User", foreign_keys=[assigned_consultant_id], lazy="selectin"
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def effective_status(self, now: datetime) -> str:
        if self.is_expired(now):
            return STATUS_REJECTED
        return self.status

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        ts = now or utcnow()
        vendor = self.vendor
        return {
            "id": self.id,
            "vendor": {
                "id": self.vendor_id,
                "name": vendor.name if vendor else None,
                "email": vendor.email if vendor else None,
                "company": vendor.company if vendor else None,
            },
            "status": self.effective_status(ts),
            "expired": self.is_expired(ts),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "decidedAt": self.decided_at.isoformat() if self.decided_at else None,
            "decidedBy": self.decided_by.name if self.decided_by else None,
            "rejectionReason": self.rejection_reason,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "assignedConsultantId": self.assigned_consultant_id,
        }
