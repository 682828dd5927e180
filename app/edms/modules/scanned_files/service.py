"""
Scanned files service layer.
Handles intake, digital classification/upload, and physical destroy/archive confirmation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from flask import current_app, has_app_context
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.edms.audit import record_event
from app.edms.constants import (
    SCANNED_FILES_CREATE,
    SCANNED_FILES_DELETE,
    SCANNED_FILES_LIST,
    SCANNED_FILES_READ,
    SCANNED_FILES_UPDATE,
)
from app.edms.errors import InvalidStateError, ValidationError
from app.edms.modules.documents.service import FileRef
from app.edms.operations import operation
from app.edms.repository import (
    TERMINATED_ACTIVE,
    OrderBy,
    Page,
    Pagination,
    apply_order_by,
    get_or_raise,
    paginate,
    terminated_clause,
)
from app.edms.utils import clean_str, utcnow

from .models import ScannedFile

if TYPE_CHECKING:
    from app.edms.rbac import Actor


# Digital disposition
DIGITAL_STATUSES = ("PENDING", "ACCEPTED", "DISCARDED", "UPLOADED")
DIGITAL_TRANSITIONS = {
    "PENDING": {"ACCEPTED", "DISCARDED"},
    "ACCEPTED": {"UPLOADED"},
    "DISCARDED": set(),
    "UPLOADED": set(),
}

# Physical disposition; DESTROY/ARCHIVE are decisions, DESTROYED/ARCHIVED are confirmed facts
PHYSICAL_STATUSES = ("PENDING", "DESTROY", "ARCHIVE", "DESTROYED", "ARCHIVED")
PHYSICAL_DECISIONS = ("DESTROY", "ARCHIVE")
PHYSICAL_TRANSITIONS = {
    "PENDING": {"DESTROY", "ARCHIVE"},
    "DESTROY": {"ARCHIVE", "DESTROYED"},
    "ARCHIVE": {"DESTROY", "ARCHIVED"},
    "DESTROYED": set(),
    "ARCHIVED": set(),
}
PHYSICAL_CONFIRMATIONS = {"DESTROY": "DESTROYED", "ARCHIVE": "ARCHIVED"}

SCANNED_FILE_ORDER_FIELDS = {
    "TITLE": ScannedFile.title,
    "CREATED_AT": ScannedFile.created_at,
    "UPDATED_AT": ScannedFile.updated_at,
    "DIGITAL_DISPOSITION": ScannedFile.digital_disposition,
    "PHYSICAL_DISPOSITION": ScannedFile.physical_disposition,
}


@dataclass(frozen=True)
class ScannedFileFilter:
    query: str | None = None
    project_id: int | None = None
    digital_disposition: str | None = None
    physical_disposition: str | None = None
    terminated_filter: str | None = TERMINATED_ACTIVE


def can_transition_to(current: str, new_status: str, transitions: dict[str, set[str]]) -> tuple[bool, list[str]]:
    errors = []

    if current not in transitions:
        errors.append(f"Current disposition '{current}' is invalid")
        return False, errors

    if new_status not in transitions[current]:
        errors.append(f"Cannot transition from '{current}' to '{new_status}'")
        return False, errors

    return True, []


def _ensure_active(f: ScannedFile) -> None:
    if f.terminated_at is not None:
        raise InvalidStateError("The scanned file is terminated.")


def _require_digital(f: ScannedFile, expected: str) -> None:
    if f.digital_disposition != expected:
        raise InvalidStateError(
            f"Digital disposition must be {expected}, not {f.digital_disposition}.",
            digital_disposition=f.digital_disposition,
        )


def _touch(f: ScannedFile, actor: Actor) -> None:
    f.updated_at = utcnow()
    f.updated_by_id = actor.user_id


def external_url(f: ScannedFile, base_url: str | None = None) -> str | None:
    """Link into the external records system, once the file has been uploaded there."""
    if not f.external_reference:
        return None
    if base_url is None and has_app_context():
        base_url = current_app.config.get("EXTERNAL_SYSTEM_BASE_URL")
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/{quote(f.external_reference.strip(), safe='')}"


@operation("scanned_file.create", permission=SCANNED_FILES_CREATE)
def create_scanned_file(
    s: Session,
    *,
    title: str,
    file: FileRef,
    project_id: int | None = None,
    description: str | None = None,
    original_reference: str | None = None,
    physical_location: str | None = None,
    actor: Actor,
) -> ScannedFile:
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required.")
    ref = file.validated()

    now = utcnow()
    f = ScannedFile(
        project_id=project_id,
        title=title,
        description=clean_str(description),
        original_reference=clean_str(original_reference),
        physical_location=clean_str(physical_location),
        file_key=ref.file_key.strip(),
        file_name=ref.file_name.strip(),
        file_size=ref.file_size,
        mime_type=ref.mime_type.strip(),
        digital_disposition="PENDING",
        physical_disposition="PENDING",
        created_at=now,
        updated_at=now,
        created_by_id=actor.user_id,
        updated_by_id=actor.user_id,
    )
    s.add(f)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="scanned_file.create",
        entity_type="ScannedFile",
        entity_id=str(f.id),
        metadata={"title": f.title, "project_id": project_id, "file_name": f.file_name},
    )
    return f


@operation("scanned_file.classify", permission=SCANNED_FILES_UPDATE)
def classify_scanned_file(
    s: Session,
    file_id: int,
    *,
    disposition: str,
    document_type_id: int | None = None,
    discard_reason: str | None = None,
    notes: str | None = None,
    actor: Actor,
) -> ScannedFile:
    """PENDING -> ACCEPTED (needs document_type_id) or PENDING -> DISCARDED (needs discard_reason)."""
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    _ensure_active(f)
    _require_digital(f, "PENDING")

    ok, _ = can_transition_to(f.digital_disposition, disposition, DIGITAL_TRANSITIONS)
    if not ok:
        raise ValidationError(f"Invalid classification: {disposition!r}. Must be ACCEPTED or DISCARDED.")

    reason = clean_str(discard_reason)
    if disposition == "ACCEPTED" and not document_type_id:
        raise ValidationError("A document type is required to accept a scanned file.")
    if disposition == "DISCARDED" and not reason:
        raise ValidationError("A reason is required to discard a scanned file.")

    now = utcnow()
    f.digital_disposition = disposition
    f.document_type_id = document_type_id if disposition == "ACCEPTED" else None
    f.discard_reason = reason if disposition == "DISCARDED" else None
    f.classification_notes = clean_str(notes)
    f.classified_at = now
    f.classified_by_id = actor.user_id
    _touch(f, actor)

    record_event(
        s,
        actor=actor,
        action="scanned_file.classify",
        entity_type="ScannedFile",
        entity_id=str(f.id),
        reason=reason,
        metadata={"from": "PENDING", "to": disposition, "document_type_id": f.document_type_id},
    )
    return f


@operation("scanned_file.mark_uploaded", permission=SCANNED_FILES_UPDATE)
def mark_as_uploaded(s: Session, file_id: int, *, external_reference: str, actor: Actor) -> ScannedFile:
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    _ensure_active(f)
    _require_digital(f, "ACCEPTED")

    ref = clean_str(external_reference)
    if not ref:
        raise ValidationError("An external reference is required.")

    f.digital_disposition = "UPLOADED"
    f.external_reference = ref
    f.uploaded_at = utcnow()
    _touch(f, actor)

    record_event(
        s,
        actor=actor,
        action="scanned_file.mark_uploaded",
        entity_type="ScannedFile",
        entity_id=str(f.id),
        metadata={"from": "ACCEPTED", "to": "UPLOADED", "external_reference": ref},
    )
    return f


@operation("scanned_file.physical_disposition", permission=SCANNED_FILES_UPDATE)
def update_physical_disposition(s: Session, file_id: int, *, disposition: str, actor: Actor) -> ScannedFile:
    """Decide DESTROY or ARCHIVE. The decision can change until it is confirmed."""
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    _ensure_active(f)
    if f.physical_disposition not in ("PENDING",) + PHYSICAL_DECISIONS:
        raise InvalidStateError(
            f"Physical disposition is already confirmed as {f.physical_disposition}.",
            physical_disposition=f.physical_disposition,
        )
    if disposition not in PHYSICAL_DECISIONS:
        raise ValidationError(f"Invalid physical disposition: {disposition!r}. Must be DESTROY or ARCHIVE.")

    ok, errors = can_transition_to(f.physical_disposition, disposition, PHYSICAL_TRANSITIONS)
    if not ok:
        raise InvalidStateError("; ".join(errors), physical_disposition=f.physical_disposition)

    old = f.physical_disposition
    f.physical_disposition = disposition
    _touch(f, actor)

    record_event(
        s,
        actor=actor,
        action="scanned_file.physical_disposition",
        entity_type="ScannedFile",
        entity_id=str(f.id),
        metadata={"from": old, "to": disposition},
    )
    return f


@operation("scanned_file.confirm_physical", permission=SCANNED_FILES_UPDATE)
def confirm_physical_disposition(s: Session, file_id: int, *, actor: Actor) -> ScannedFile:
    """DESTROY -> DESTROYED or ARCHIVE -> ARCHIVED, stamping who confirmed it."""
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    _ensure_active(f)

    target = PHYSICAL_CONFIRMATIONS.get(f.physical_disposition)
    if target is None:
        raise InvalidStateError(
            f"Nothing to confirm: physical disposition is {f.physical_disposition}.",
            physical_disposition=f.physical_disposition,
        )

    old = f.physical_disposition
    now = utcnow()
    f.physical_disposition = target
    f.physical_confirmed_at = now
    f.physical_confirmed_by_id = actor.user_id
    _touch(f, actor)

    record_event(
        s,
        actor=actor,
        action="scanned_file.confirm_physical",
        entity_type="ScannedFile",
        entity_id=str(f.id),
        metadata={"from": old, "to": target},
    )
    return f


@operation("scanned_file.terminate", permission=SCANNED_FILES_DELETE)
def terminate_scanned_file(s: Session, file_id: int, *, actor: Actor) -> ScannedFile:
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    if f.terminated_at is not None:
        raise InvalidStateError("The scanned file is already terminated.")
    f.terminated_at = utcnow()
    _touch(f, actor)
    record_event(s, actor=actor, action="scanned_file.terminate", entity_type="ScannedFile", entity_id=str(f.id))
    return f


@operation("scanned_file.activate", permission=SCANNED_FILES_UPDATE)
def activate_scanned_file(s: Session, file_id: int, *, actor: Actor) -> ScannedFile:
    f = get_or_raise(s, ScannedFile, file_id, lock=True, message="Scanned file not found.")
    if f.terminated_at is None:
        raise InvalidStateError("The scanned file is already active.")
    f.terminated_at = None
    _touch(f, actor)
    record_event(s, actor=actor, action="scanned_file.activate", entity_type="ScannedFile", entity_id=str(f.id))
    return f


@operation("scanned_file.get", permission=SCANNED_FILES_READ, messages={"not_found": "Scanned file not found."})
def get_scanned_file(s: Session, file_id: int, *, actor: Actor) -> ScannedFile:
    return get_or_raise(s, ScannedFile, file_id, message="Scanned file not found.")


@operation("scanned_file.list", permission=SCANNED_FILES_LIST)
def list_scanned_files(
    s: Session,
    filt: ScannedFileFilter | None = None,
    *,
    pagination: Pagination | None = None,
    order_by: OrderBy | None = None,
    actor: Actor,
) -> Page[ScannedFile]:
    filt = filt or ScannedFileFilter()
    stmt = select(ScannedFile)

    clause = terminated_clause(ScannedFile.terminated_at, filt.terminated_filter)
    if clause is not None:
        stmt = stmt.where(clause)
    if filt.project_id:
        stmt = stmt.where(ScannedFile.project_id == filt.project_id)
    if filt.digital_disposition:
        if filt.digital_disposition not in DIGITAL_STATUSES:
            raise ValidationError(f"Invalid digital disposition: {filt.digital_disposition!r}")
        stmt = stmt.where(ScannedFile.digital_disposition == filt.digital_disposition)
    if filt.physical_disposition:
        if filt.physical_disposition not in PHYSICAL_STATUSES:
            raise ValidationError(f"Invalid physical disposition: {filt.physical_disposition!r}")
        stmt = stmt.where(ScannedFile.physical_disposition == filt.physical_disposition)
    if filt.query:
        q = filt.query.strip()
        stmt = stmt.where(
            or_(
                ScannedFile.title.contains(q),
                ScannedFile.original_reference.contains(q),
                ScannedFile.file_name.contains(q),
            )
        )

    stmt = apply_order_by(stmt, order_by, SCANNED_FILE_ORDER_FIELDS, [ScannedFile.created_at.desc(), ScannedFile.id.desc()])
    return paginate(s, stmt, pagination)


@operation("scanned_file.stats", permission=SCANNED_FILES_LIST)
def scanned_files_stats(s: Session, project_id: int | None = None, *, actor: Actor) -> dict[str, Any]:
    """Counts of active files per digital and physical disposition."""
    base = [ScannedFile.terminated_at.is_(None)]
    if project_id:
        base.append(ScannedFile.project_id == project_id)

    def counts(column: Any, statuses: tuple[str, ...]) -> dict[str, int]:
        rows = s.execute(select(column, func.count()).where(*base).group_by(column)).all()
        found = {status: n for status, n in rows}
        return {status: int(found.get(status, 0)) for status in statuses}

    digital = counts(ScannedFile.digital_disposition, DIGITAL_STATUSES)
    physical = counts(ScannedFile.physical_disposition, PHYSICAL_STATUSES)
    return {"total": sum(digital.values()), "digital": digital, "physical": physical}
