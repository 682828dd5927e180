from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.edms.models import Base
from app.edms.utils import utcnow

if TYPE_CHECKING:
    from app.edms.modules.review_workflow.models import ReviewWorkflow


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("code", "module", "entity_type", "entity_id", name="uq_documents_code_context"),
        Index("idx_documents_module", "module"),
        Index("idx_documents_document_type", "document_type_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    code: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Context: owning module and, optionally, the business entity inside it.
    module: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    document_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # ALPHABETICAL (A, B, ..., Z, AA) or NUMERIC (0, 1, 2, ...)
    revision_scheme: Mapped[str] = mapped_column(String(16), nullable=False, default="ALPHABETICAL")

    terminated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_id: Mapped[int] = mapped_column(Integer, nullable=False)

    revisions: Mapped[list["Revision"]] = relationship(
        "Revision",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Revision.id",
    )


class Revision(Base):
    __tablename__ = "revisions"
    __table_args__ = (
        UniqueConstraint("document_id", "revision_code", name="uq_revisions_document_code"),
        Index("idx_revisions_document_status", "document_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    revision_code: Mapped[str] = mapped_column(String(16), nullable=False)  # e.g. "A", "B", "0"

    # DRAFT -> IN_REVIEW -> APPROVED -> SUPERSEDED (IN_REVIEW -> DRAFT on rejection)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_id: Mapped[int] = mapped_column(Integer, nullable=False)

    document: Mapped[Document] = relationship(
        "Document",
        back_populates="revisions",
        lazy="selectin",
    )

    versions: Mapped[list["Version"]] = relationship(
        "Version",
        back_populates="revision",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Version.version_number",
    )

    # Review history, oldest first. Only the latest can be live.
    workflows: Mapped[list["ReviewWorkflow"]] = relationship(
        "ReviewWorkflow",
        back_populates="revision",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReviewWorkflow.id",
    )

    @property
    def workflow(self) -> "ReviewWorkflow | None":
        return self.workflows[-1] if self.workflows else None


class Version(Base):
    __tablename__ = "versions"
    __table_args__ = (
        UniqueConstraint("revision_id", "version_number", name="uq_versions_revision_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    revision_id: Mapped[int] = mapped_column(ForeignKey("revisions.id", ondelete="CASCADE"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Opaque reference into blob storage.
    file_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    checksum: Mapped[str | None] = mapped_column(String(128), nullable=True)

    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)

    revision: Mapped[Revision] = relationship(
        "Revision",
        back_populates="versions",
        lazy="selectin",
    )
