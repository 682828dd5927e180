from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.edms.models import Base
from app.edms.utils import utcnow

if TYPE_CHECKING:
    from app.edms.modules.documents.models import Revision


class ReviewWorkflow(Base):
    __tablename__ = "review_workflows"
    __table_args__ = (
        Index("idx_review_workflows_revision", "revision_id"),
        Index("idx_review_workflows_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    revision_id: Mapped[int] = mapped_column(ForeignKey("revisions.id", ondelete="CASCADE"), nullable=False)

    # PENDING, IN_PROGRESS, COMPLETED, REJECTED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="IN_PROGRESS")

    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    initiated_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    revision: Mapped["Revision"] = relationship(
        "Revision",
        back_populates="workflows",
        lazy="selectin",
    )

    steps: Mapped[list["ReviewStep"]] = relationship(
        "ReviewStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReviewStep.step_order",
    )


class ReviewStep(Base):
    __tablename__ = "review_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_review_steps_workflow_order"),
        Index("idx_review_steps_assignee_status", "assigned_to_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    workflow_id: Mapped[int] = mapped_column(ForeignKey("review_workflows.id", ondelete="CASCADE"), nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)

    # REVIEW, APPROVAL, ACKNOWLEDGE (advisory)
    step_type: Mapped[str] = mapped_column(String(16), nullable=False, default="REVIEW")

    # PENDING, APPROVED, REJECTED, SKIPPED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    assigned_to_id: Mapped[int] = mapped_column(Integer, nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # SHA-256 hex of the approval/rejection event; written once.
    signature_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    workflow: Mapped[ReviewWorkflow] = relationship(
        "ReviewWorkflow",
        back_populates="steps",
        lazy="selectin",
    )
