from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.edms.models import Base
from app.edms.utils import utcnow


class ScannedFile(Base):
    __tablename__ = "scanned_files"
    __table_args__ = (
        Index("idx_scanned_files_project", "project_id"),
        Index("idx_scanned_files_digital", "digital_disposition"),
        Index("idx_scanned_files_physical", "physical_disposition"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)  # box/folder label
    physical_location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Opaque reference to the scan in blob storage.
    file_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/pdf")

    # PENDING -> ACCEPTED -> UPLOADED, or PENDING -> DISCARDED
    digital_disposition: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    document_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    classification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    discard_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    classified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    classified_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # PENDING -> DESTROY -> DESTROYED, or PENDING -> ARCHIVE -> ARCHIVED
    physical_disposition: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    physical_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    physical_confirmed_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    terminated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
