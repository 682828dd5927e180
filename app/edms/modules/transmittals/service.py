"""
Transmittals service layer.
Handles code allocation, creation, and the issue/acknowledge/respond/close transitions.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.edms.audit import record_event
from app.edms.codes import TRANSMITTAL_PREFIX, format_transmittal_code, parse_transmittal_number
from app.edms.constants import (
    TRANSMITTAL_SEQUENCE,
    TRANSMITTALS_CREATE,
    TRANSMITTALS_LIST,
    TRANSMITTALS_READ,
    TRANSMITTALS_UPDATE,
)
from app.edms.errors import InvalidStateError, NotFoundError, ValidationError
from app.edms.models import CodeSequence
from app.edms.modules.documents.models import Revision
from app.edms.operations import operation
from app.edms.repository import OrderBy, Page, Pagination, apply_order_by, get_or_raise, paginate
from app.edms.utils import clean_str, utcnow

from .models import Transmittal, TransmittalItem

if TYPE_CHECKING:
    from app.edms.rbac import Actor


# Valid statuses
VALID_STATUSES = {"DRAFT", "ISSUED", "ACKNOWLEDGED", "RESPONDED", "CLOSED"}

# Valid status transitions
STATUS_TRANSITIONS = {
    "DRAFT": {"ISSUED"},
    "ISSUED": {"ACKNOWLEDGED", "RESPONDED", "CLOSED"},
    "ACKNOWLEDGED": {"RESPONDED", "CLOSED"},
    "RESPONDED": {"CLOSED"},
    "CLOSED": set(),
}

# Client review outcomes recorded against items
CLIENT_STATUSES = {
    "APPROVED",
    "APPROVED_WITH_COMMENTS",
    "REVISE_AND_RESUBMIT",
    "REJECTED",
    "FOR_INFORMATION_ONLY",
}

TRANSMITTAL_ORDER_FIELDS = {
    "CODE": Transmittal.code,
    "STATUS": Transmittal.status,
    "CREATED_AT": Transmittal.created_at,
    "ISSUED_AT": Transmittal.issued_at,
}


@dataclass(frozen=True)
class TransmittalItemInput:
    revision_id: int
    purpose_code: str


@dataclass(frozen=True)
class ItemResponse:
    item_id: int
    client_status: str
    client_comments: str | None = None


@dataclass(frozen=True)
class TransmittalFilter:
    query: str | None = None
    status: str | None = None
    project_id: int | None = None


def can_transition_to(t: Transmittal, new_status: str) -> tuple[bool, list[str]]:
    """Check if transmittal can transition to new_status."""
    errors = []

    if t.status not in STATUS_TRANSITIONS:
        errors.append(f"Current status '{t.status}' is invalid")
        return False, errors

    if new_status not in STATUS_TRANSITIONS[t.status]:
        errors.append(f"Cannot transition from '{t.status}' to '{new_status}'")
        return False, errors

    return True, []


def _require_transition(t: Transmittal, new_status: str) -> None:
    ok, errors = can_transition_to(t, new_status)
    if not ok:
        raise InvalidStateError("; ".join(errors), status=t.status)


def _dialect_insert(s: Session):
    if s.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def allocate_transmittal_code(s: Session) -> str:
    """
    Next TR-<nnn> code. Holds the transmittal sequence row lock until the
    caller's transaction ends, so the read and the insert are serialized.
    """
    # Pending changes must reach the database before the locked refresh.
    s.flush()
    # Concurrent first allocations race on the insert; the loser's insert is a no-op.
    insert = _dialect_insert(s)
    s.execute(
        insert(CodeSequence)
        .values(name=TRANSMITTAL_SEQUENCE, last_value=0, updated_at=utcnow())
        .on_conflict_do_nothing(index_elements=["name"])
    )
    seq = s.execute(
        select(CodeSequence)
        .where(CodeSequence.name == TRANSMITTAL_SEQUENCE)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()

    last_code = s.execute(
        select(Transmittal.code)
        .where(Transmittal.code.like(f"{TRANSMITTAL_PREFIX}%"))
        .order_by(func.length(Transmittal.code).desc(), Transmittal.code.desc())
        .limit(1)
    ).scalar_one_or_none()

    n = max(seq.last_value or 0, parse_transmittal_number(last_code) or 0) + 1
    seq.last_value = n
    seq.updated_at = utcnow()
    return format_transmittal_code(n)


def _validate_items(items: Sequence[TransmittalItemInput] | None) -> list[TransmittalItemInput]:
    if not items:
        raise ValidationError("A transmittal needs at least one item.")
    seen: set[int] = set()
    for it in items:
        if it.revision_id in seen:
            raise ValidationError(f"Revision {it.revision_id} is listed twice.", revision_id=it.revision_id)
        seen.add(it.revision_id)
        if not clean_str(it.purpose_code):
            raise ValidationError("Every item needs a purpose code.", revision_id=it.revision_id)
    return list(items)


@operation(
    "transmittal.create",
    permission=TRANSMITTALS_CREATE,
    messages={
        "unique_constraint": "Transmittal code already exists. Try again.",
        "foreign_key_constraint": "A referenced revision does not exist.",
    },
)
def create_transmittal(
    s: Session,
    *,
    items: Sequence[TransmittalItemInput],
    title: str | None = None,
    project_id: int | None = None,
    issued_to: str | None = None,
    actor: Actor,
) -> Transmittal:
    """Create a DRAFT transmittal over a snapshot of revisions."""
    rows = _validate_items(items)

    wanted = [it.revision_id for it in rows]
    found = set(s.execute(select(Revision.id).where(Revision.id.in_(wanted))).scalars().all())
    missing = [rid for rid in wanted if rid not in found]
    if missing:
        raise NotFoundError("Referenced revision not found.", revision_ids=missing)

    code = allocate_transmittal_code(s)
    now = utcnow()
    t = Transmittal(
        code=code,
        title=clean_str(title),
        project_id=project_id,
        issued_to=clean_str(issued_to),
        status="DRAFT",
        created_at=now,
        updated_at=now,
        created_by_id=actor.user_id,
        updated_by_id=actor.user_id,
        items=[TransmittalItem(revision_id=it.revision_id, purpose_code=it.purpose_code.strip()) for it in rows],
    )
    s.add(t)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="transmittal.create",
        entity_type="Transmittal",
        entity_id=str(t.id),
        metadata={"code": code, "project_id": project_id, "revision_ids": wanted},
    )
    return t


@operation("transmittal.issue", permission=TRANSMITTALS_UPDATE)
def issue_transmittal(s: Session, transmittal_id: int, *, actor: Actor) -> Transmittal:
    t = get_or_raise(s, Transmittal, transmittal_id, lock=True, message="Transmittal not found.")
    _require_transition(t, "ISSUED")

    now = utcnow()
    t.status = "ISSUED"
    t.issued_at = now
    t.issued_by_id = actor.user_id
    t.updated_at = now
    t.updated_by_id = actor.user_id

    record_event(
        s,
        actor=actor,
        action="transmittal.issue",
        entity_type="Transmittal",
        entity_id=str(t.id),
        metadata={"code": t.code, "from": "DRAFT", "to": "ISSUED", "issued_to": t.issued_to},
    )
    return t


@operation("transmittal.acknowledge", permission=TRANSMITTALS_UPDATE)
def acknowledge_transmittal(s: Session, transmittal_id: int, *, actor: Actor) -> Transmittal:
    t = get_or_raise(s, Transmittal, transmittal_id, lock=True, message="Transmittal not found.")
    if t.status != "ISSUED":
        raise InvalidStateError("Only ISSUED transmittals can be acknowledged.", status=t.status)

    now = utcnow()
    t.status = "ACKNOWLEDGED"
    t.acknowledged_at = now
    t.updated_at = now
    t.updated_by_id = actor.user_id

    record_event(
        s,
        actor=actor,
        action="transmittal.acknowledge",
        entity_type="Transmittal",
        entity_id=str(t.id),
        metadata={"code": t.code, "from": "ISSUED", "to": "ACKNOWLEDGED"},
    )
    return t


@operation("transmittal.respond", permission=TRANSMITTALS_UPDATE)
def respond_transmittal(
    s: Session,
    transmittal_id: int,
    *,
    responses: Sequence[ItemResponse],
    response_comments: str | None = None,
    actor: Actor,
) -> Transmittal:
    """Record the client's answer per item and move the transmittal to RESPONDED."""
    t = get_or_raise(s, Transmittal, transmittal_id, lock=True, message="Transmittal not found.")
    _require_transition(t, "RESPONDED")

    if not responses:
        raise ValidationError("At least one item response is required.")

    by_id = {item.id: item for item in t.items}
    seen: set[int] = set()
    for r in responses:
        if r.item_id not in by_id:
            raise NotFoundError("Transmittal item not found in this transmittal.", item_id=r.item_id)
        if r.item_id in seen:
            raise ValidationError(f"Item {r.item_id} is answered twice.", item_id=r.item_id)
        seen.add(r.item_id)
        if r.client_status not in CLIENT_STATUSES:
            raise ValidationError(
                f"Invalid client status: {r.client_status!r}. Must be one of: {', '.join(sorted(CLIENT_STATUSES))}"
            )

    for r in responses:
        item = by_id[r.item_id]
        item.client_status = r.client_status
        item.client_comments = clean_str(r.client_comments)

    old_status = t.status
    now = utcnow()
    t.status = "RESPONDED"
    t.response_at = now
    t.response_comments = clean_str(response_comments)
    t.updated_at = now
    t.updated_by_id = actor.user_id

    record_event(
        s,
        actor=actor,
        action="transmittal.respond",
        entity_type="Transmittal",
        entity_id=str(t.id),
        metadata={
            "code": t.code,
            "from": old_status,
            "to": "RESPONDED",
            "items": {str(r.item_id): r.client_status for r in responses},
        },
    )
    return t


@operation("transmittal.close", permission=TRANSMITTALS_UPDATE)
def close_transmittal(s: Session, transmittal_id: int, *, actor: Actor) -> Transmittal:
    t = get_or_raise(s, Transmittal, transmittal_id, lock=True, message="Transmittal not found.")
    _require_transition(t, "CLOSED")

    old_status = t.status
    now = utcnow()
    t.status = "CLOSED"
    t.closed_at = now
    t.updated_at = now
    t.updated_by_id = actor.user_id

    record_event(
        s,
        actor=actor,
        action="transmittal.close",
        entity_type="Transmittal",
        entity_id=str(t.id),
        metadata={"code": t.code, "from": old_status, "to": "CLOSED"},
    )
    return t


@operation("transmittal.get", permission=TRANSMITTALS_READ, messages={"not_found": "Transmittal not found."})
def get_transmittal(s: Session, transmittal_id: int, *, actor: Actor) -> Transmittal:
    return get_or_raise(s, Transmittal, transmittal_id, message="Transmittal not found.")


@operation("transmittal.list", permission=TRANSMITTALS_LIST)
def list_transmittals(
    s: Session,
    filt: TransmittalFilter | None = None,
    *,
    pagination: Pagination | None = None,
    order_by: OrderBy | None = None,
    actor: Actor,
) -> Page[Transmittal]:
    filt = filt or TransmittalFilter()
    stmt = select(Transmittal)
    if filt.status:
        if filt.status not in VALID_STATUSES:
            raise ValidationError(f"Invalid transmittal status: {filt.status!r}")
        stmt = stmt.where(Transmittal.status == filt.status)
    if filt.project_id:
        stmt = stmt.where(Transmittal.project_id == filt.project_id)
    if filt.query:
        q = filt.query.strip()
        stmt = stmt.where(
            or_(Transmittal.code.contains(q), Transmittal.title.contains(q), Transmittal.issued_to.contains(q))
        )
    stmt = apply_order_by(stmt, order_by, TRANSMITTAL_ORDER_FIELDS, [Transmittal.created_at.desc(), Transmittal.id.desc()])
    return paginate(s, stmt, pagination)


@operation("transmittal.list_by_project", permission=TRANSMITTALS_LIST)
def transmittals_by_project(
    s: Session,
    project_id: int,
    *,
    pagination: Pagination | None = None,
    order_by: OrderBy | None = None,
    actor: Actor,
) -> Page[Transmittal]:
    stmt = select(Transmittal).where(Transmittal.project_id == project_id)
    stmt = apply_order_by(stmt, order_by, TRANSMITTAL_ORDER_FIELDS, [Transmittal.created_at.desc(), Transmittal.id.desc()])
    return paginate(s, stmt, pagination)
