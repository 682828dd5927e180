"""Tests for the review workflow module."""
import hashlib
import json

import pytest

from app.edms import create_app
from app.edms.constants import ALL_PERMISSIONS
from app.edms.db import new_session, session_scope
from app.edms.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.edms.models import AuditEvent, Base
from app.edms.modules.documents.models import Document, Revision
from app.edms.modules.documents.service import FileRef, create_document, create_revision
from app.edms.modules.review_workflow.models import ReviewStep, ReviewWorkflow
from app.edms.modules.review_workflow.service import (
    StepInput,
    approve_step,
    cancel_workflow,
    get_workflow,
    initiate_review,
    pending_review_steps,
    reject_step,
    signature_hash,
    workflows_by_status,
)
from app.edms.rbac import Actor
from app.edms.utils import iso_timestamp

ACTOR = Actor.of(1, ALL_PERMISSIONS)
REVIEWER = Actor.of(2, ALL_PERMISSIONS)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def s(app):
    s = new_session(app)
    yield s
    s.close()


def _file(name="drawing.pdf"):
    return FileRef(file_key=f"documents/{name}", file_name=name, file_size=2048, mime_type="application/pdf")


def _doc(s, code="DWG-100"):
    return create_document(s, code=code, title="General Arrangement", module="ENGINEERING", file=_file(), actor=ACTOR)


def _steps(*types):
    return [StepInput(step_order=i, assigned_to_id=10 + i, step_type=t) for i, t in enumerate(types, start=1)]


def _revision_counts(app, document_id):
    with session_scope(app) as s2:
        revs = s2.query(Revision).filter(Revision.document_id == document_id).all()
        active = sum(1 for r in revs if r.status in ("DRAFT", "IN_REVIEW"))
        approved = sum(1 for r in revs if r.status == "APPROVED")
        return active, approved


def test_review_scenario_from_draft_to_next_revision(app, s):
    d = _doc(s)
    rev_a = d.revisions[0]
    assert rev_a.revision_code == "A"
    assert [v.version_number for v in rev_a.versions] == [1]

    with pytest.raises(ConflictError):
        create_revision(s, d.id, file=_file(), actor=ACTOR)

    wf = initiate_review(s, rev_a.id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)
    assert wf.status == "IN_PROGRESS"
    assert [st.status for st in wf.steps] == ["PENDING", "PENDING"]
    with session_scope(app) as s2:
        assert s2.get(Revision, rev_a.id).status == "IN_REVIEW"

    approve_step(s, wf.steps[0].id, actor=REVIEWER)
    with session_scope(app) as s2:
        assert s2.get(ReviewWorkflow, wf.id).status == "IN_PROGRESS"

    approve_step(s, wf.steps[1].id, comments="Looks good", actor=REVIEWER)
    with session_scope(app) as s2:
        wf2 = s2.get(ReviewWorkflow, wf.id)
        assert wf2.status == "COMPLETED"
        assert wf2.completed_at is not None
        rev = s2.get(Revision, rev_a.id)
        assert rev.status == "APPROVED"
        assert rev.approved_by_id == REVIEWER.user_id
        assert rev.approved_at is not None

    rev_b = create_revision(s, d.id, file=_file("drawing-b.pdf"), actor=ACTOR)
    assert rev_b.revision_code == "B"
    assert rev_b.status == "DRAFT"
    assert _revision_counts(app, d.id) == (1, 1)


def test_steps_must_be_approved_in_order(app, s):
    d = _doc(s)
    wf = initiate_review(s, d.revisions[0].id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)

    with pytest.raises(InvalidStateError) as exc:
        approve_step(s, wf.steps[1].id, actor=REVIEWER)
    assert exc.value.details["blocking_step_orders"] == [1]

    with session_scope(app) as s2:
        assert s2.get(ReviewStep, wf.steps[1].id).status == "PENDING"
        assert s2.get(ReviewStep, wf.steps[1].id).signature_hash is None
        ev = s2.query(AuditEvent).filter(AuditEvent.action == "workflow.step.approve").one()
        assert ev.level == "ERROR"
        assert json.loads(ev.metadata_json)["code"] == "INVALID_STATE"


def test_approval_signature_hash(s):
    d = _doc(s)
    wf = initiate_review(s, d.revisions[0].id, steps=_steps("APPROVAL"), actor=ACTOR)
    step = approve_step(s, wf.steps[0].id, actor=REVIEWER)

    assert step.status == "APPROVED"
    assert step.completed_by_id == REVIEWER.user_id
    payload = f"{step.id}-{REVIEWER.user_id}-{iso_timestamp(step.completed_at)}-APPROVED"
    assert step.signature_hash == hashlib.sha256(payload.encode("utf-8")).hexdigest()
    assert step.signature_hash == signature_hash(step.id, REVIEWER.user_id, step.completed_at, "APPROVED")
    assert len(step.signature_hash) == 64


def test_completion_supersedes_previous_approved_revision(app, s):
    d = _doc(s)
    wf_a = initiate_review(s, d.revisions[0].id, steps=_steps("APPROVAL"), actor=ACTOR)
    approve_step(s, wf_a.steps[0].id, actor=REVIEWER)

    rev_b = create_revision(s, d.id, file=_file(), actor=ACTOR)
    wf_b = initiate_review(s, rev_b.id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)
    approve_step(s, wf_b.steps[0].id, actor=REVIEWER)

    # A stays APPROVED until B's workflow completes.
    assert _revision_counts(app, d.id) == (1, 1)

    approve_step(s, wf_b.steps[1].id, actor=REVIEWER)
    with session_scope(app) as s2:
        statuses = {r.revision_code: r.status for r in s2.get(Document, d.id).revisions}
    assert statuses == {"A": "SUPERSEDED", "B": "APPROVED"}
    assert _revision_counts(app, d.id) == (0, 1)


def test_reject_skips_remaining_steps_and_reverts_revision(app, s):
    d = _doc(s)
    rev = d.revisions[0]
    wf = initiate_review(s, rev.id, steps=_steps("REVIEW", "REVIEW", "APPROVAL"), actor=ACTOR)
    approve_step(s, wf.steps[0].id, actor=REVIEWER)

    step = reject_step(s, wf.steps[1].id, comments="Wrong title block", actor=REVIEWER)
    assert step.status == "REJECTED"
    assert step.signature_hash == signature_hash(step.id, REVIEWER.user_id, step.completed_at, "REJECTED")

    with session_scope(app) as s2:
        wf2 = s2.get(ReviewWorkflow, wf.id)
        assert wf2.status == "REJECTED"
        assert wf2.completed_at is not None
        assert [st.status for st in wf2.steps] == ["APPROVED", "REJECTED", "SKIPPED"]
        assert s2.get(Revision, rev.id).status == "DRAFT"
        ev = s2.query(AuditEvent).filter(AuditEvent.action == "workflow.step.reject").one()
        assert ev.reason == "Wrong title block"


def test_reject_requires_comments_and_pending_step(s):
    d = _doc(s)
    wf = initiate_review(s, d.revisions[0].id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)

    with pytest.raises(ValidationError):
        reject_step(s, wf.steps[0].id, comments="  ", actor=REVIEWER)

    approve_step(s, wf.steps[0].id, actor=REVIEWER)
    with pytest.raises(InvalidStateError):
        reject_step(s, wf.steps[0].id, comments="changed my mind", actor=REVIEWER)
    with pytest.raises(InvalidStateError):
        approve_step(s, wf.steps[0].id, actor=REVIEWER)


def test_review_can_restart_after_rejection(s):
    d = _doc(s)
    rev = d.revisions[0]
    wf1 = initiate_review(s, rev.id, steps=_steps("APPROVAL"), actor=ACTOR)
    reject_step(s, wf1.steps[0].id, comments="Missing dimensions", actor=REVIEWER)

    # Steps of a finished workflow stay terminal.
    with pytest.raises(InvalidStateError):
        approve_step(s, wf1.steps[0].id, actor=REVIEWER)

    wf2 = initiate_review(s, rev.id, steps=_steps("APPROVAL"), actor=ACTOR)
    assert wf2.id != wf1.id
    assert [w.id for w in rev.workflows] == [wf1.id, wf2.id]
    assert rev.workflow.id == wf2.id

    approve_step(s, wf2.steps[0].id, actor=REVIEWER)
    assert rev.status == "APPROVED"


def test_initiate_review_preconditions(s):
    d = _doc(s)
    rev = d.revisions[0]

    with pytest.raises(NotFoundError):
        initiate_review(s, 999, steps=_steps("REVIEW"), actor=ACTOR)
    with pytest.raises(ValidationError):
        initiate_review(s, rev.id, steps=[], actor=ACTOR)
    with pytest.raises(ValidationError):
        initiate_review(
            s,
            rev.id,
            steps=[StepInput(step_order=1, assigned_to_id=5), StepInput(step_order=1, assigned_to_id=6)],
            actor=ACTOR,
        )
    with pytest.raises(ValidationError):
        initiate_review(s, rev.id, steps=_steps("SIGN"), actor=ACTOR)
    with pytest.raises(ValidationError):
        initiate_review(s, rev.id, steps=_steps("ACKNOWLEDGE"), actor=ACTOR)
    assert rev.status == "DRAFT"

    initiate_review(s, rev.id, steps=_steps("REVIEW"), actor=ACTOR)
    with pytest.raises(InvalidStateError):
        initiate_review(s, rev.id, steps=_steps("REVIEW"), actor=ACTOR)


def test_cancel_workflow(app, s):
    d = _doc(s)
    rev = d.revisions[0]
    wf = initiate_review(s, rev.id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)
    approve_step(s, wf.steps[0].id, actor=REVIEWER)

    with pytest.raises(ValidationError):
        cancel_workflow(s, wf.id, reason="", actor=ACTOR)

    wf = cancel_workflow(s, wf.id, reason="Superseded by client request", actor=ACTOR)
    assert wf.status == "REJECTED"
    assert wf.cancel_reason == "Superseded by client request"
    assert [st.status for st in wf.steps] == ["APPROVED", "SKIPPED"]
    assert rev.status == "DRAFT"

    with pytest.raises(InvalidStateError):
        cancel_workflow(s, wf.id, reason="again", actor=ACTOR)

    with session_scope(app) as s2:
        ev = s2.query(AuditEvent).filter(AuditEvent.action == "workflow.cancel", AuditEvent.level == "INFO").one()
        assert ev.reason == "Superseded by client request"


def test_cannot_cancel_completed_workflow(s):
    d = _doc(s)
    wf = initiate_review(s, d.revisions[0].id, steps=_steps("APPROVAL"), actor=ACTOR)
    approve_step(s, wf.steps[0].id, actor=REVIEWER)
    with pytest.raises(InvalidStateError):
        cancel_workflow(s, wf.id, reason="too late", actor=ACTOR)


def test_acknowledge_steps_are_advisory(app, s):
    d = _doc(s)
    rev = d.revisions[0]
    wf = initiate_review(s, rev.id, steps=_steps("REVIEW", "ACKNOWLEDGE", "APPROVAL"), actor=ACTOR)
    review, ack, approval = wf.steps

    approve_step(s, review.id, actor=REVIEWER)
    # A pending ACKNOWLEDGE step does not hold up later steps.
    approve_step(s, approval.id, actor=REVIEWER)

    with session_scope(app) as s2:
        assert s2.get(ReviewWorkflow, wf.id).status == "COMPLETED"
        assert s2.get(Revision, rev.id).status == "APPROVED"
        assert s2.get(ReviewStep, ack.id).status == "PENDING"

    assignee = Actor.of(ack.assigned_to_id, ALL_PERMISSIONS)
    assert [st.id for st in pending_review_steps(s, actor=assignee)] == [ack.id]

    approve_step(s, ack.id, actor=assignee)
    with session_scope(app) as s2:
        assert s2.get(ReviewStep, ack.id).status == "APPROVED"
        assert s2.get(ReviewWorkflow, wf.id).status == "COMPLETED"
        assert s2.query(AuditEvent).filter(AuditEvent.action == "workflow.complete").count() == 1


def test_pending_review_steps_and_workflow_queries(s):
    d1 = _doc(s, code="DWG-1")
    d2 = _doc(s, code="DWG-2")
    wf1 = initiate_review(s, d1.revisions[0].id, steps=_steps("REVIEW", "APPROVAL"), actor=ACTOR)
    wf2 = initiate_review(s, d2.revisions[0].id, steps=_steps("REVIEW"), actor=ACTOR)

    first_reviewer = Actor.of(11, ALL_PERMISSIONS)
    pending = pending_review_steps(s, actor=first_reviewer)
    assert [(st.workflow_id, st.step_order) for st in pending] == [(wf1.id, 1), (wf2.id, 1)]
    assert [st.id for st in pending_review_steps(s, 12, actor=ACTOR)] == [wf1.steps[1].id]

    reject_step(s, wf2.steps[0].id, comments="No", actor=first_reviewer)
    assert [st.workflow_id for st in pending_review_steps(s, actor=first_reviewer)] == [wf1.id]

    page = workflows_by_status(s, "REJECTED", actor=ACTOR)
    assert [w.id for w in page.items] == [wf2.id]
    assert workflows_by_status(s, "IN_PROGRESS", actor=ACTOR).total_items == 1
    with pytest.raises(ValidationError):
        workflows_by_status(s, "DONE", actor=ACTOR)

    assert get_workflow(s, wf1.id, actor=ACTOR).revision_id == d1.revisions[0].id
    with pytest.raises(NotFoundError):
        get_workflow(s, 999, actor=ACTOR)
