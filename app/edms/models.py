from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.edms.utils import utcnow


class Base(DeclarativeBase):
    pass


class AuditEvent(Base):
    """
    Append-only audit trail event.
    One row per successful mutation and one per failed operation.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_action", "action"),
        Index("idx_audit_events_actor", "actor_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    level: Mapped[str] = mapped_column(String(16), nullable=False, default="INFO")  # INFO, WARNING, ERROR
    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "workflow.step.approve"
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Users live in the authorization service; only the id is kept here.
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Revision"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class CodeSequence(Base):
    """
    Named counter row. Locked FOR UPDATE while a sequential code is generated and inserted.
    """

    __tablename__ = "code_sequences"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g. "transmittal"
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.edms.modules.documents.models import Document, Revision, Version  # noqa: E402,F401
from app.edms.modules.review_workflow.models import ReviewStep, ReviewWorkflow  # noqa: E402,F401
from app.edms.modules.transmittals.models import Transmittal, TransmittalItem  # noqa: E402,F401
from app.edms.modules.scanned_files.models import ScannedFile  # noqa: E402,F401
