"""
Review workflow service layer.
Handles review initiation, in-order step approval, rejection, cancellation and completion.
"""
from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.edms.audit import record_event
from app.edms.constants import WORKFLOWS_CREATE, WORKFLOWS_LIST, WORKFLOWS_UPDATE
from app.edms.errors import ConflictError, InvalidStateError, ValidationError
from app.edms.modules.documents.models import Revision
from app.edms.operations import operation
from app.edms.repository import Page, Pagination, get_or_raise, paginate
from app.edms.utils import iso_timestamp, utcnow

from .models import ReviewStep, ReviewWorkflow

if TYPE_CHECKING:
    from app.edms.rbac import Actor


# Workflow statuses
WORKFLOW_STATUSES = {"PENDING", "IN_PROGRESS", "COMPLETED", "REJECTED"}
LIVE_WORKFLOW_STATUSES = {"PENDING", "IN_PROGRESS"}
TERMINAL_WORKFLOW_STATUSES = {"COMPLETED", "REJECTED"}

# Step statuses; every status but PENDING is terminal
STEP_STATUSES = {"PENDING", "APPROVED", "REJECTED", "SKIPPED"}

# Step types; ACKNOWLEDGE steps are advisory and never block
STEP_TYPES = {"REVIEW", "APPROVAL", "ACKNOWLEDGE"}
ADVISORY_STEP_TYPE = "ACKNOWLEDGE"

# Steps in these statuses let later steps be approved
STEP_CLEARED_STATUSES = {"APPROVED", "SKIPPED"}


@dataclass(frozen=True)
class StepInput:
    step_order: int
    assigned_to_id: int
    step_type: str = "REVIEW"


def signature_hash(step_id: int, user_id: int, at: datetime, action: str) -> str:
    """SHA-256 hex over "{step_id}-{user_id}-{timestamp}-{action}"."""
    payload = f"{step_id}-{user_id}-{iso_timestamp(at)}-{action}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def is_advisory(step: ReviewStep) -> bool:
    return step.step_type == ADVISORY_STEP_TYPE


def _validate_steps(steps: Sequence[StepInput] | None) -> list[StepInput]:
    if not steps:
        raise ValidationError("At least one review step is required.")

    seen: set[int] = set()
    for st in steps:
        if not isinstance(st.step_order, int) or st.step_order < 1:
            raise ValidationError("step_order must be a positive integer.", step_order=st.step_order)
        if st.step_order in seen:
            raise ValidationError(f"Duplicate step_order: {st.step_order}.", step_order=st.step_order)
        seen.add(st.step_order)
        if st.step_type not in STEP_TYPES:
            raise ValidationError(
                f"Invalid step type: {st.step_type!r}. Must be one of: {', '.join(sorted(STEP_TYPES))}"
            )
        if not st.assigned_to_id:
            raise ValidationError("Every step needs an assignee.", step_order=st.step_order)

    if all(st.step_type == ADVISORY_STEP_TYPE for st in steps):
        raise ValidationError("At least one REVIEW or APPROVAL step is required.")
    return sorted(steps, key=lambda st: st.step_order)


def _lock_step(s: Session, step_id: int) -> tuple[ReviewStep, ReviewWorkflow]:
    # Workflow row first, then the step: every step mutation happens under the workflow lock.
    probe = get_or_raise(s, ReviewStep, step_id, message="Review step not found.")
    wf = get_or_raise(s, ReviewWorkflow, probe.workflow_id, lock=True, message="Review workflow not found.")
    step = get_or_raise(s, ReviewStep, step_id, lock=True, message="Review step not found.")
    return step, wf


def _skip_pending(wf: ReviewWorkflow, *, exclude_id: int | None = None) -> list[int]:
    skipped = []
    for other in wf.steps:
        if other.id != exclude_id and other.status == "PENDING":
            other.status = "SKIPPED"
            skipped.append(other.id)
    return skipped


def _revert_revision(s: Session, wf: ReviewWorkflow, *, actor: Actor, now: datetime) -> Revision:
    rev = get_or_raise(s, Revision, wf.revision_id, lock=True, message="Revision not found.")
    rev.status = "DRAFT"
    rev.updated_at = now
    rev.updated_by_id = actor.user_id
    return rev


def _complete_workflow(s: Session, wf: ReviewWorkflow, *, actor: Actor, now: datetime) -> list[int]:
    """Workflow -> COMPLETED, revision -> APPROVED, sibling APPROVED revisions -> SUPERSEDED."""
    wf.status = "COMPLETED"
    wf.completed_at = now

    rev = get_or_raise(s, Revision, wf.revision_id, lock=True, message="Revision not found.")
    rev.status = "APPROVED"
    rev.approved_at = now
    rev.approved_by_id = actor.user_id
    rev.updated_at = now
    rev.updated_by_id = actor.user_id

    siblings = (
        s.execute(
            select(Revision)
            .where(
                Revision.document_id == rev.document_id,
                Revision.id != rev.id,
                Revision.status == "APPROVED",
            )
            .with_for_update()
        )
        .scalars()
        .all()
    )
    for old in siblings:
        old.status = "SUPERSEDED"
        old.updated_at = now
        old.updated_by_id = actor.user_id
    return [old.id for old in siblings]


@operation(
    "workflow.initiate",
    permission=WORKFLOWS_CREATE,
    messages={"unique_constraint": "The review steps conflict with an existing workflow."},
)
def initiate_review(
    s: Session,
    revision_id: int,
    *,
    steps: Sequence[StepInput],
    actor: Actor,
) -> ReviewWorkflow:
    """Start review of a DRAFT revision: workflow IN_PROGRESS, steps PENDING, revision IN_REVIEW."""
    rev = get_or_raise(s, Revision, revision_id, lock=True, message="Revision not found.")
    if rev.status != "DRAFT":
        raise InvalidStateError("Only DRAFT revisions can be sent for review.", status=rev.status)

    latest = rev.workflow
    if latest is not None and latest.status != "REJECTED":
        raise ConflictError(
            "The revision already has a review workflow.",
            workflow_id=latest.id,
            status=latest.status,
        )

    ordered = _validate_steps(steps)
    now = utcnow()
    wf = ReviewWorkflow(
        status="IN_PROGRESS",
        initiated_at=now,
        initiated_by_id=actor.user_id,
        steps=[
            ReviewStep(
                step_order=st.step_order,
                step_type=st.step_type,
                status="PENDING",
                assigned_to_id=st.assigned_to_id,
                created_at=now,
            )
            for st in ordered
        ],
    )
    rev.workflows.append(wf)
    rev.status = "IN_REVIEW"
    rev.updated_at = now
    rev.updated_by_id = actor.user_id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="workflow.initiate",
        entity_type="ReviewWorkflow",
        entity_id=str(wf.id),
        metadata={
            "revision_id": rev.id,
            "revision": rev.revision_code,
            "steps": [{"order": st.step_order, "type": st.step_type, "assigned_to_id": st.assigned_to_id} for st in ordered],
            "restart": latest is not None,
        },
    )
    return wf


@operation("workflow.step.approve", permission=WORKFLOWS_UPDATE)
def approve_step(s: Session, step_id: int, *, comments: str | None = None, actor: Actor) -> ReviewStep:
    """
    Approve a PENDING step once every earlier ordinary step is APPROVED or SKIPPED.
    Approving the last ordinary step completes the workflow and approves the revision.
    """
    step, wf = _lock_step(s, step_id)
    if step.status != "PENDING":
        raise InvalidStateError(f"Step is already {step.status}.", status=step.status)
    if wf.status not in LIVE_WORKFLOW_STATUSES and not is_advisory(step):
        raise InvalidStateError(f"Workflow is {wf.status}.", status=wf.status)

    blocking = [
        other.step_order
        for other in wf.steps
        if other.step_order < step.step_order
        and not is_advisory(other)
        and other.status not in STEP_CLEARED_STATUSES
    ]
    if blocking:
        raise InvalidStateError(
            "Earlier steps must be approved first.",
            step_order=step.step_order,
            blocking_step_orders=blocking,
        )

    now = utcnow()
    step.status = "APPROVED"
    step.comments = (comments or "").strip() or None
    step.completed_at = now
    step.completed_by_id = actor.user_id
    step.signature_hash = signature_hash(step.id, actor.user_id, now, "APPROVED")

    completed = False
    superseded: list[int] = []
    if wf.status in LIVE_WORKFLOW_STATUSES and all(o.status == "APPROVED" for o in wf.steps if not is_advisory(o)):
        superseded = _complete_workflow(s, wf, actor=actor, now=now)
        completed = True

    record_event(
        s,
        actor=actor,
        action="workflow.step.approve",
        entity_type="ReviewStep",
        entity_id=str(step.id),
        metadata={
            "workflow_id": wf.id,
            "step_order": step.step_order,
            "step_type": step.step_type,
            "signature_hash": step.signature_hash,
            "signed_at": iso_timestamp(now),
        },
    )
    if completed:
        record_event(
            s,
            actor=actor,
            action="workflow.complete",
            entity_type="ReviewWorkflow",
            entity_id=str(wf.id),
            metadata={"revision_id": wf.revision_id, "superseded_revision_ids": superseded},
        )
    return step


@operation("workflow.step.reject", permission=WORKFLOWS_UPDATE)
def reject_step(s: Session, step_id: int, *, comments: str, actor: Actor) -> ReviewStep:
    """Reject a PENDING step: remaining steps SKIPPED, workflow REJECTED, revision back to DRAFT."""
    comments = (comments or "").strip()
    if not comments:
        raise ValidationError("Rejection comments are required.")

    step, wf = _lock_step(s, step_id)
    if step.status != "PENDING":
        raise InvalidStateError(f"Step is already {step.status}.", status=step.status)
    if wf.status not in LIVE_WORKFLOW_STATUSES:
        raise InvalidStateError(f"Workflow is {wf.status}.", status=wf.status)

    now = utcnow()
    step.status = "REJECTED"
    step.comments = comments
    step.completed_at = now
    step.completed_by_id = actor.user_id
    step.signature_hash = signature_hash(step.id, actor.user_id, now, "REJECTED")

    skipped = _skip_pending(wf, exclude_id=step.id)
    wf.status = "REJECTED"
    wf.completed_at = now
    rev = _revert_revision(s, wf, actor=actor, now=now)

    record_event(
        s,
        actor=actor,
        action="workflow.step.reject",
        entity_type="ReviewStep",
        entity_id=str(step.id),
        reason=comments[:512],
        metadata={
            "workflow_id": wf.id,
            "revision_id": rev.id,
            "step_order": step.step_order,
            "signature_hash": step.signature_hash,
            "signed_at": iso_timestamp(now),
            "skipped_step_ids": skipped,
        },
    )
    return step


@operation("workflow.cancel", permission=WORKFLOWS_UPDATE)
def cancel_workflow(s: Session, workflow_id: int, *, reason: str, actor: Actor) -> ReviewWorkflow:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required.")

    wf = get_or_raise(s, ReviewWorkflow, workflow_id, lock=True, message="Review workflow not found.")
    if wf.status in TERMINAL_WORKFLOW_STATUSES:
        raise InvalidStateError(f"Workflow is already {wf.status}.", status=wf.status)

    now = utcnow()
    skipped = _skip_pending(wf)
    wf.status = "REJECTED"
    wf.completed_at = now
    wf.cancel_reason = reason
    rev = _revert_revision(s, wf, actor=actor, now=now)

    record_event(
        s,
        actor=actor,
        action="workflow.cancel",
        entity_type="ReviewWorkflow",
        entity_id=str(wf.id),
        reason=reason[:512],
        metadata={"revision_id": rev.id, "skipped_step_ids": skipped},
    )
    return wf


@operation("workflow.pending_steps", permission=WORKFLOWS_LIST)
def pending_review_steps(s: Session, user_id: int | None = None, *, actor: Actor) -> list[ReviewStep]:
    """PENDING steps assigned to `user_id` (default: the caller) that can still be acted on."""
    assignee = user_id or actor.user_id
    stmt = (
        select(ReviewStep)
        .join(ReviewWorkflow, ReviewStep.workflow_id == ReviewWorkflow.id)
        .where(
            ReviewStep.assigned_to_id == assignee,
            ReviewStep.status == "PENDING",
            or_(
                ReviewWorkflow.status.in_(LIVE_WORKFLOW_STATUSES),
                and_(ReviewStep.step_type == ADVISORY_STEP_TYPE, ReviewWorkflow.status == "COMPLETED"),
            ),
        )
        .order_by(ReviewWorkflow.initiated_at.asc(), ReviewStep.workflow_id.asc(), ReviewStep.step_order.asc())
    )
    return list(s.execute(stmt).scalars().all())


@operation("workflow.list_by_status", permission=WORKFLOWS_LIST)
def workflows_by_status(
    s: Session,
    status: str,
    *,
    pagination: Pagination | None = None,
    actor: Actor,
) -> Page[ReviewWorkflow]:
    if status not in WORKFLOW_STATUSES:
        raise ValidationError(f"Invalid workflow status: {status!r}")
    stmt = (
        select(ReviewWorkflow)
        .where(ReviewWorkflow.status == status)
        .order_by(ReviewWorkflow.initiated_at.desc(), ReviewWorkflow.id.desc())
    )
    return paginate(s, stmt, pagination)


@operation("workflow.get", permission=WORKFLOWS_LIST, messages={"not_found": "Review workflow not found."})
def get_workflow(s: Session, workflow_id: int, *, actor: Actor) -> ReviewWorkflow:
    return get_or_raise(s, ReviewWorkflow, workflow_id, message="Review workflow not found.")
