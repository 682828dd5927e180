"""
Documents service layer.
Handles document creation, revisioning, version registration and the "current" views.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.edms.audit import record_event
from app.edms.codes import (
    ALPHABETICAL,
    REVISION_SCHEMES,
    code_matches_scheme,
    first_revision_code,
    highest_code_in_scheme,
    next_revision_code_for_scheme,
    revision_code_key,
)
from app.edms.constants import (
    DOCUMENTS_CREATE,
    DOCUMENTS_DELETE,
    DOCUMENTS_LIST,
    DOCUMENTS_READ,
    DOCUMENTS_SELECT,
    DOCUMENTS_UPDATE,
)
from app.edms.errors import ConflictError, InvalidStateError, ValidationError
from app.edms.operations import operation
from app.edms.repository import (
    OrderBy,
    Page,
    Pagination,
    apply_order_by,
    get_or_raise,
    paginate,
    terminated_clause,
)
from app.edms.utils import clean_str, utcnow

from .models import Document, Revision, Version

if TYPE_CHECKING:
    from app.edms.rbac import Actor


# Valid revision statuses
REVISION_STATUSES = ("DRAFT", "IN_REVIEW", "APPROVED", "SUPERSEDED")

# A document has at most one revision in one of these at a time
ACTIVE_REVISION_STATUSES = ("DRAFT", "IN_REVIEW")

DOCUMENT_ORDER_FIELDS = {
    "CODE": Document.code,
    "TITLE": Document.title,
    "CREATED_AT": Document.created_at,
    "UPDATED_AT": Document.updated_at,
    "MODULE": Document.module,
}


@dataclass(frozen=True)
class FileRef:
    """Opaque reference to a stored file."""

    file_key: str
    file_name: str
    file_size: int = 0
    mime_type: str = "application/octet-stream"
    checksum: str | None = None

    def validated(self) -> "FileRef":
        if not clean_str(self.file_key) or not clean_str(self.file_name):
            raise ValidationError("file_key and file_name are required.")
        if not clean_str(self.mime_type):
            raise ValidationError("mime_type is required.")
        if self.file_size is None or self.file_size < 0:
            raise ValidationError("file_size must be >= 0.")
        return self


@dataclass(frozen=True)
class DocumentFilter:
    query: str | None = None
    module: str | None = None
    document_type_id: int | None = None
    status: str | None = None  # any revision in this status
    terminated_filter: str | None = None


def normalize_doc_code(code: str | None) -> str:
    return (code or "").strip()


def normalize_revision_scheme(scheme: str | None) -> str:
    value = (scheme or "").strip().upper()
    if value not in REVISION_SCHEMES:
        raise ValidationError(f"Invalid revision scheme: {scheme!r}. Must be one of: {', '.join(REVISION_SCHEMES)}")
    return value


def _is(column: Any, value: Any) -> Any:
    return column.is_(None) if value is None else column == value


def _new_version(number: int, f: FileRef, *, comment: str | None, user_id: int) -> Version:
    return Version(
        version_number=number,
        file_key=f.file_key.strip(),
        file_name=f.file_name.strip(),
        file_size=f.file_size,
        mime_type=f.mime_type.strip(),
        checksum=clean_str(f.checksum),
        comment=clean_str(comment),
        created_at=utcnow(),
        created_by_id=user_id,
    )


def _latest_revision(s: Session, document_id: int) -> Revision | None:
    return s.execute(
        select(Revision)
        .where(Revision.document_id == document_id)
        .order_by(Revision.created_at.desc(), Revision.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _active_revision(s: Session, document_id: int) -> Revision | None:
    return s.execute(
        select(Revision)
        .where(Revision.document_id == document_id, Revision.status.in_(ACTIVE_REVISION_STATUSES))
        .limit(1)
    ).scalar_one_or_none()


def current_revision(document: Document) -> Revision | None:
    """
    The revision a reader should see: APPROVED first, then the active one
    (DRAFT/IN_REVIEW), otherwise the most recently created.
    """
    revisions = list(document.revisions or [])
    if not revisions:
        return None

    def newest(rs: list[Revision]) -> Revision:
        return max(rs, key=lambda r: (r.created_at, r.id))

    approved = [r for r in revisions if r.status == "APPROVED"]
    if approved:
        return newest(approved)
    active = [r for r in revisions if r.status in ACTIVE_REVISION_STATUSES]
    if active:
        return newest(active)
    return newest(revisions)


def current_version(revision: Revision) -> Version | None:
    versions = list(revision.versions or [])
    if not versions:
        return None
    return max(versions, key=lambda v: v.version_number)


@operation(
    "document.create",
    permission=DOCUMENTS_CREATE,
    messages={
        "unique_constraint": "A document with that code already exists in this context.",
        "default": "Error creating the document.",
    },
)
def create_document(
    s: Session,
    *,
    code: str,
    title: str,
    module: str,
    file: FileRef,
    description: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    document_type_id: int | None = None,
    revision_scheme: str | None = None,
    initial_revision_code: str | None = None,
    actor: Actor,
) -> Document:
    """Create a document with its first revision (DRAFT) and first version (1)."""
    code = normalize_doc_code(code)
    title = (title or "").strip()
    module = (module or "").strip()
    entity_type = clean_str(entity_type)

    if not code or not title:
        raise ValidationError("code and title are required.")
    if not module:
        raise ValidationError("module is required.")

    scheme = normalize_revision_scheme(revision_scheme or ALPHABETICAL)
    revision_code = (initial_revision_code or "").strip().upper() or first_revision_code(scheme)
    if not code_matches_scheme(revision_code, scheme):
        raise ValidationError(f"Revision code {revision_code!r} does not match the {scheme} scheme.")
    f = file.validated()

    exists = s.execute(
        select(Document.id).where(
            Document.code == code,
            Document.module == module,
            _is(Document.entity_type, entity_type),
            _is(Document.entity_id, entity_id),
        )
    ).first()
    if exists:
        raise ConflictError("A document with that code already exists in this context.", code=code, module=module)

    now = utcnow()
    revision = Revision(
        revision_code=revision_code,
        status="DRAFT",
        created_at=now,
        updated_at=now,
        created_by_id=actor.user_id,
        updated_by_id=actor.user_id,
        versions=[_new_version(1, f, comment=None, user_id=actor.user_id)],
    )
    d = Document(
        code=code,
        title=title,
        description=clean_str(description),
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        document_type_id=document_type_id,
        revision_scheme=scheme,
        created_at=now,
        updated_at=now,
        created_by_id=actor.user_id,
        updated_by_id=actor.user_id,
        revisions=[revision],
    )
    s.add(d)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="document.create",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"code": d.code, "module": d.module, "revision": revision.revision_code, "scheme": scheme},
    )
    return d


@operation(
    "revision.create",
    permission=DOCUMENTS_CREATE,
    messages={
        "unique_constraint": "A revision with that code already exists for this document.",
        "default": "Error creating the revision.",
    },
)
def create_revision(
    s: Session,
    document_id: int,
    *,
    file: FileRef,
    revision_code: str | None = None,
    comment: str | None = None,
    actor: Actor,
) -> Revision:
    """Open the next revision (DRAFT) of a document with its first version."""
    # Row lock on the document serializes the per-document revision sequence.
    d = get_or_raise(s, Document, document_id, lock=True, message="Document not found.")
    if d.terminated_at is not None:
        raise InvalidStateError("Cannot revise a terminated document.")

    active = _active_revision(s, d.id)
    if active is not None:
        raise ConflictError(
            "The document already has a revision in DRAFT or IN_REVIEW. Resolve it before creating a new one.",
            revision_id=active.id,
            revision_code=active.revision_code,
            status=active.status,
        )

    latest = _latest_revision(s, d.id)
    # The sequence continues from the highest code of the current scheme, even across scheme switches.
    existing_codes = s.execute(select(Revision.revision_code).where(Revision.document_id == d.id)).scalars().all()
    highest = highest_code_in_scheme(existing_codes, d.revision_scheme)
    if revision_code and revision_code.strip():
        code = revision_code.strip().upper()
        if not code_matches_scheme(code, d.revision_scheme):
            raise ValidationError(f"Revision code {code!r} does not match the {d.revision_scheme} scheme.")
        if code in existing_codes:
            raise ConflictError("A revision with that code already exists for this document.", revision_code=code)
        if highest is not None and revision_code_key(code) <= revision_code_key(highest):
            raise ValidationError(f"Revision code {code!r} must come after the latest revision {highest!r}.")
    else:
        code = next_revision_code_for_scheme(d.revision_scheme, highest)

    f = file.validated()
    now = utcnow()
    r = Revision(
        document_id=d.id,
        revision_code=code,
        status="DRAFT",
        created_at=now,
        updated_at=now,
        created_by_id=actor.user_id,
        updated_by_id=actor.user_id,
        versions=[_new_version(1, f, comment=comment, user_id=actor.user_id)],
    )
    d.revisions.append(r)
    d.updated_at = now
    d.updated_by_id = actor.user_id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="revision.create",
        entity_type="Revision",
        entity_id=str(r.id),
        metadata={
            "document_id": d.id,
            "code": d.code,
            "from": latest.revision_code if latest else None,
            "to": code,
        },
    )
    return r


@operation(
    "version.register",
    permission=DOCUMENTS_CREATE,
    messages={
        "unique_constraint": "A version with that number already exists for this revision.",
        "default": "Error registering the version.",
    },
)
def register_version(
    s: Session,
    revision_id: int,
    *,
    file: FileRef,
    comment: str | None = None,
    actor: Actor,
) -> Version:
    """Add the next immutable version to a DRAFT revision."""
    r = get_or_raise(s, Revision, revision_id, lock=True, message="Revision not found.")
    if r.status != "DRAFT":
        raise InvalidStateError("Versions can only be added to DRAFT revisions.", status=r.status)

    f = file.validated()
    last_number = s.execute(
        select(func.max(Version.version_number)).where(Version.revision_id == r.id)
    ).scalar()
    v = _new_version((last_number or 0) + 1, f, comment=comment, user_id=actor.user_id)
    r.versions.append(v)
    r.updated_at = utcnow()
    r.updated_by_id = actor.user_id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="version.register",
        entity_type="Version",
        entity_id=str(v.id),
        metadata={
            "revision_id": r.id,
            "revision": r.revision_code,
            "version_number": v.version_number,
            "file_name": v.file_name,
            "checksum": v.checksum,
        },
    )
    return v


@operation("document.switch_scheme", permission=DOCUMENTS_UPDATE)
def switch_revision_scheme(s: Session, document_id: int, scheme: str, *, actor: Actor) -> Document:
    new_scheme = normalize_revision_scheme(scheme)
    d = get_or_raise(s, Document, document_id, lock=True, message="Document not found.")
    if d.revision_scheme == new_scheme:
        raise InvalidStateError(f"The document already uses the {new_scheme} revision scheme.")

    old_scheme = d.revision_scheme
    d.revision_scheme = new_scheme
    d.updated_at = utcnow()
    d.updated_by_id = actor.user_id

    record_event(
        s,
        actor=actor,
        action="document.switch_scheme",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"code": d.code, "from": old_scheme, "to": new_scheme},
    )
    return d


@operation("document.update", permission=DOCUMENTS_UPDATE)
def update_document(
    s: Session,
    document_id: int,
    *,
    title: str | None = None,
    description: str | None = None,
    actor: Actor,
) -> Document:
    """Update descriptive fields. Code and context are immutable."""
    d = get_or_raise(s, Document, document_id, lock=True, message="Document not found.")
    changes = {}

    if title is not None:
        title = title.strip()
        if not title:
            raise ValidationError("title cannot be empty.")
        if title != d.title:
            changes["title"] = {"from": d.title, "to": title}
            d.title = title

    if description is not None and clean_str(description) != d.description:
        changes["description"] = {"from": "...", "to": "..."}  # Don't log full text
        d.description = clean_str(description)

    if changes:
        d.updated_at = utcnow()
        d.updated_by_id = actor.user_id
        record_event(
            s,
            actor=actor,
            action="document.update",
            entity_type="Document",
            entity_id=str(d.id),
            metadata={"code": d.code, "changes": changes},
        )
    return d


@operation("document.terminate", permission=DOCUMENTS_DELETE)
def terminate_document(s: Session, document_id: int, *, actor: Actor) -> Document:
    d = get_or_raise(s, Document, document_id, lock=True, message="Document not found.")
    if d.terminated_at is not None:
        raise InvalidStateError("The document is already terminated.")
    d.terminated_at = utcnow()
    d.updated_at = d.terminated_at
    d.updated_by_id = actor.user_id
    record_event(s, actor=actor, action="document.terminate", entity_type="Document", entity_id=str(d.id))
    return d


@operation("document.activate", permission=DOCUMENTS_UPDATE)
def activate_document(s: Session, document_id: int, *, actor: Actor) -> Document:
    d = get_or_raise(s, Document, document_id, lock=True, message="Document not found.")
    if d.terminated_at is None:
        raise InvalidStateError("The document is already active.")
    d.terminated_at = None
    d.updated_at = utcnow()
    d.updated_by_id = actor.user_id
    record_event(s, actor=actor, action="document.activate", entity_type="Document", entity_id=str(d.id))
    return d


@operation("document.get", permission=DOCUMENTS_READ, messages={"not_found": "Document not found."})
def get_document(s: Session, document_id: int, *, actor: Actor) -> Document:
    return get_or_raise(s, Document, document_id, message="Document not found.")


@operation("revision.get", permission=DOCUMENTS_READ, messages={"not_found": "Revision not found."})
def get_revision(s: Session, revision_id: int, *, actor: Actor) -> Revision:
    return get_or_raise(s, Revision, revision_id, message="Revision not found.")


@operation("document.list", permission=DOCUMENTS_LIST)
def list_documents(
    s: Session,
    filt: DocumentFilter | None = None,
    *,
    pagination: Pagination | None = None,
    order_by: OrderBy | None = None,
    actor: Actor,
) -> Page[Document]:
    filt = filt or DocumentFilter()
    stmt = select(Document)

    clause = terminated_clause(Document.terminated_at, filt.terminated_filter)
    if clause is not None:
        stmt = stmt.where(clause)
    if filt.query:
        q = filt.query.strip()
        stmt = stmt.where(
            or_(Document.code.contains(q), Document.title.contains(q), Document.description.contains(q))
        )
    if filt.module:
        stmt = stmt.where(Document.module == filt.module)
    if filt.document_type_id:
        stmt = stmt.where(Document.document_type_id == filt.document_type_id)
    if filt.status:
        if filt.status not in REVISION_STATUSES:
            raise ValidationError(f"Invalid revision status: {filt.status!r}")
        stmt = stmt.where(Document.revisions.any(Revision.status == filt.status))

    stmt = apply_order_by(stmt, order_by, DOCUMENT_ORDER_FIELDS, [Document.created_at.desc(), Document.id.desc()])
    return paginate(s, stmt, pagination)


@operation("document.list_by_module", permission=DOCUMENTS_LIST)
def documents_by_module(
    s: Session,
    module: str,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    pagination: Pagination | None = None,
    order_by: OrderBy | None = None,
    actor: Actor,
) -> Page[Document]:
    stmt = select(Document).where(Document.module == module, Document.terminated_at.is_(None))
    if entity_type:
        stmt = stmt.where(Document.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(Document.entity_id == entity_id)
    stmt = apply_order_by(stmt, order_by, DOCUMENT_ORDER_FIELDS, [Document.created_at.desc(), Document.id.desc()])
    return paginate(s, stmt, pagination)


@operation("document.select_list", permission=DOCUMENTS_SELECT)
def documents_select_list(s: Session, filt: DocumentFilter | None = None, *, actor: Actor) -> list[dict[str, str]]:
    filt = filt or DocumentFilter()
    stmt = select(Document.id, Document.code, Document.title).where(Document.terminated_at.is_(None))
    if filt.module:
        stmt = stmt.where(Document.module == filt.module)
    if filt.query:
        q = filt.query.strip()
        stmt = stmt.where(or_(Document.code.contains(q), Document.title.contains(q)))
    rows = s.execute(stmt.order_by(Document.code.asc())).all()
    return [{"value": str(row.id), "label": f"{row.code} - {row.title}"} for row in rows]
