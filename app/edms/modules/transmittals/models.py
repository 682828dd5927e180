from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.edms.models import Base
from app.edms.utils import utcnow

if TYPE_CHECKING:
    from app.edms.modules.documents.models import Revision


class Transmittal(Base):
    __tablename__ = "transmittals"
    __table_args__ = (
        UniqueConstraint("code", name="uq_transmittals_code"),
        Index("idx_transmittals_project", "project_id"),
        Index("idx_transmittals_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    code: Mapped[str] = mapped_column(String(32), nullable=False)  # TR-001
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    issued_to: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # DRAFT, ISSUED, ACKNOWLEDGED, RESPONDED, CLOSED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")

    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    issued_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    response_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_id: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["TransmittalItem"]] = relationship(
        "TransmittalItem",
        back_populates="transmittal",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransmittalItem.id",
    )


class TransmittalItem(Base):
    __tablename__ = "transmittal_items"
    __table_args__ = (
        UniqueConstraint("transmittal_id", "revision_id", name="uq_transmittal_items_revision"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    transmittal_id: Mapped[int] = mapped_column(ForeignKey("transmittals.id", ondelete="CASCADE"), nullable=False)

    # Snapshot of a specific revision; later revisions of the document are not tracked.
    revision_id: Mapped[int] = mapped_column(ForeignKey("revisions.id", ondelete="RESTRICT"), nullable=False)

    purpose_code: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. FOR_APPROVAL
    client_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    client_comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    transmittal: Mapped[Transmittal] = relationship(
        "Transmittal",
        back_populates="items",
        lazy="selectin",
    )

    revision: Mapped["Revision"] = relationship("Revision", lazy="selectin")
