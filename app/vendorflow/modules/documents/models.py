from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.vendorflow.models import Base, User
from app.vendorflow.modules.documents.workflow import DocumentState, DocumentStatus, ReviewStage
from app.vendorflow.utils import utcnow


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    vendor_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    document_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # draft | pending | under_review | approved | rejected
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=DocumentStatus.PENDING.value)
    # consultant | cross_verification | final (only while under_review)
    review_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Resubmission creates a new record pointing at the rejected one.
    supersedes_id: Mapped[int | None] = mapped_column(
        ForeignKey("documents.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    vendor: Mapped[User] = relationship("User", foreign_keys=[vendor_id], lazy="selectin")

    files: Mapped[list["DocumentFile"]] = relationship(
        "DocumentFile",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentFile.position",
    )

    supersedes: Mapped["Document | None"] = relationship(
        "Document",
        remote_side=[id],
        foreign_keys=[supersedes_id],
        lazy="selectin",
    )

    @property
    def state(self) -> DocumentState:
        stage = ReviewStage(self.review_stage) if self.review_stage else None
        return DocumentState(DocumentStatus(self.status), stage)

    @state.setter
    def state(self, value: DocumentState) -> None:
        self.status = value.status.value
        self.review_stage = value.stage.value if value.stage else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vendorId": self.vendor_id,
            "documentType": self.document_type,
            "title": self.title,
            "status": self.status,
            "reviewStage": self.review_stage,
            "state": str(self.state),
            "reviewNotes": self.review_notes,
            "supersedesId": self.supersedes_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
            "files": [f.to_dict() for f in self.files],
        }


class DocumentFile(Base):
    """Opaque attachment metadata; the core never opens the file."""

    __tablename__ = "document_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="files", lazy="selectin")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.storage_key,
            "name": self.filename,
            "mimeType": self.content_type,
            "size": self.size_bytes,
        }
