"""Tests for the documents module (revision lifecycle)."""
from datetime import datetime
from types import SimpleNamespace

import pytest

from app.edms import create_app
from app.edms.constants import ALL_PERMISSIONS
from app.edms.db import new_session, session_scope
from app.edms.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.edms.models import AuditEvent, Base
from app.edms.modules.documents.models import Document, Revision, Version
from app.edms.modules.documents.service import (
    DocumentFilter,
    FileRef,
    activate_document,
    create_document,
    create_revision,
    current_revision,
    current_version,
    documents_by_module,
    documents_select_list,
    get_document,
    list_documents,
    register_version,
    switch_revision_scheme,
    terminate_document,
    update_document,
)
from app.edms.modules.review_workflow.service import StepInput, approve_step, initiate_review
from app.edms.rbac import Actor
from app.edms.repository import OrderBy, Pagination

ACTOR = Actor.of(1, ALL_PERMISSIONS)


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


def _file(name="manual.pdf", size=1024):
    return FileRef(file_key=f"documents/{name}", file_name=name, file_size=size, mime_type="application/pdf", checksum="sha256:abc")


def _doc(s, code="QMS-001", **kw):
    kw.setdefault("title", "Quality Manual")
    kw.setdefault("module", "QUALITY")
    return create_document(s, code=code, file=kw.pop("file", _file()), actor=ACTOR, **kw)


def _approve(s, revision_id):
    wf = initiate_review(s, revision_id, steps=[StepInput(step_order=1, assigned_to_id=2)], actor=ACTOR)
    approve_step(s, wf.steps[0].id, actor=ACTOR)
    return wf


def _statuses(app, document_id):
    with session_scope(app) as s2:
        d = s2.get(Document, document_id)
        return {r.revision_code: r.status for r in d.revisions}


def test_create_document_creates_first_revision_and_version(app, s):
    d = _doc(s)

    assert d.id is not None
    assert d.revision_scheme == "ALPHABETICAL"
    assert len(d.revisions) == 1
    rev = d.revisions[0]
    assert rev.revision_code == "A"
    assert rev.status == "DRAFT"
    assert [v.version_number for v in rev.versions] == [1]
    assert rev.versions[0].file_name == "manual.pdf"

    with session_scope(app) as s2:
        assert s2.query(Document).count() == 1
        assert s2.query(Revision).count() == 1
        assert s2.query(Version).count() == 1
        ev = s2.query(AuditEvent).filter(AuditEvent.action == "document.create").one()
        assert ev.level == "INFO"
        assert ev.actor_user_id == 1
        assert ev.entity_id == str(d.id)


def test_create_document_numeric_scheme_starts_at_zero(s):
    d = _doc(s, revision_scheme="NUMERIC")
    assert d.revisions[0].revision_code == "0"


def test_create_document_requires_code_and_title(app, s):
    with pytest.raises(ValidationError):
        _doc(s, code="  ")
    with pytest.raises(ValidationError):
        _doc(s, title="")
    with pytest.raises(ValidationError):
        _doc(s, revision_scheme="ROMAN")
    with pytest.raises(ValidationError):
        _doc(s, initial_revision_code="1")

    with session_scope(app) as s2:
        assert s2.query(Document).count() == 0
        assert s2.query(AuditEvent).filter(AuditEvent.level == "ERROR").count() == 4


def test_create_document_code_unique_per_context(s):
    _doc(s)
    with pytest.raises(ConflictError):
        _doc(s)

    # Same code in another module or for another entity is fine.
    _doc(s, module="ENGINEERING")
    _doc(s, entity_type="Project", entity_id=7)
    with pytest.raises(ConflictError):
        _doc(s, entity_type="Project", entity_id=7)


def test_create_revision_conflicts_while_active_revision_exists(app, s):
    d = _doc(s)
    with pytest.raises(ConflictError) as exc:
        create_revision(s, d.id, file=_file(), actor=ACTOR)
    assert exc.value.details["revision_code"] == "A"
    assert _statuses(app, d.id) == {"A": "DRAFT"}


def test_create_revision_missing_document(s):
    with pytest.raises(NotFoundError):
        create_revision(s, 999, file=_file(), actor=ACTOR)


def test_create_revision_after_approval_uses_next_code(app, s):
    d = _doc(s)
    _approve(s, d.revisions[0].id)

    rev_b = create_revision(s, d.id, file=_file("manual-b.pdf"), comment="Update section 4", actor=ACTOR)
    assert rev_b.revision_code == "B"
    assert rev_b.status == "DRAFT"
    assert rev_b.versions[0].version_number == 1
    assert rev_b.versions[0].comment == "Update section 4"
    assert _statuses(app, d.id) == {"A": "APPROVED", "B": "DRAFT"}


def test_caller_supplied_revision_code_is_checked(s):
    d = _doc(s)
    _approve(s, d.revisions[0].id)

    with pytest.raises(ValidationError):
        create_revision(s, d.id, file=_file(), revision_code="7", actor=ACTOR)
    with pytest.raises(ConflictError):
        create_revision(s, d.id, file=_file(), revision_code="A", actor=ACTOR)

    rev = create_revision(s, d.id, file=_file(), revision_code="d", actor=ACTOR)
    assert rev.revision_code == "D"
    _approve(s, rev.id)

    with pytest.raises(ValidationError):
        create_revision(s, d.id, file=_file(), revision_code="C", actor=ACTOR)


def test_switch_revision_scheme(s):
    d = _doc(s)
    with pytest.raises(InvalidStateError):
        switch_revision_scheme(s, d.id, "ALPHABETICAL", actor=ACTOR)
    with pytest.raises(ValidationError):
        switch_revision_scheme(s, d.id, "ROMAN", actor=ACTOR)

    d = switch_revision_scheme(s, d.id, "numeric", actor=ACTOR)
    assert d.revision_scheme == "NUMERIC"

    _approve(s, d.revisions[0].id)
    rev = create_revision(s, d.id, file=_file(), actor=ACTOR)
    assert rev.revision_code == "0"


def test_scheme_round_trip_continues_each_sequence(app, s):
    d = _doc(s)
    _approve(s, d.revisions[0].id)

    switch_revision_scheme(s, d.id, "NUMERIC", actor=ACTOR)
    zero = create_revision(s, d.id, file=_file(), actor=ACTOR)
    assert zero.revision_code == "0"
    _approve(s, zero.id)

    switch_revision_scheme(s, d.id, "ALPHABETICAL", actor=ACTOR)
    b = create_revision(s, d.id, file=_file(), actor=ACTOR)
    assert b.revision_code == "B"
    _approve(s, b.id)

    switch_revision_scheme(s, d.id, "NUMERIC", actor=ACTOR)
    with pytest.raises(ConflictError):
        create_revision(s, d.id, file=_file(), revision_code="0", actor=ACTOR)
    one = create_revision(s, d.id, file=_file(), actor=ACTOR)
    assert one.revision_code == "1"

    assert _statuses(app, d.id) == {"A": "SUPERSEDED", "0": "SUPERSEDED", "B": "APPROVED", "1": "DRAFT"}


def test_register_version_increments_and_requires_draft(s):
    d = _doc(s)
    rev = d.revisions[0]

    v2 = register_version(s, rev.id, file=_file("manual-v2.pdf"), actor=ACTOR)
    v3 = register_version(s, rev.id, file=_file("manual-v3.pdf"), comment="typo", actor=ACTOR)
    assert (v2.version_number, v3.version_number) == (2, 3)
    assert current_version(rev).file_name == "manual-v3.pdf"

    initiate_review(s, rev.id, steps=[StepInput(step_order=1, assigned_to_id=2)], actor=ACTOR)
    with pytest.raises(InvalidStateError):
        register_version(s, rev.id, file=_file(), actor=ACTOR)

    with pytest.raises(NotFoundError):
        register_version(s, 999, file=_file(), actor=ACTOR)


def test_register_version_validates_file(s):
    d = _doc(s)
    with pytest.raises(ValidationError):
        register_version(s, d.revisions[0].id, file=FileRef(file_key="", file_name="x.pdf"), actor=ACTOR)
    with pytest.raises(ValidationError):
        register_version(s, d.revisions[0].id, file=FileRef(file_key="k", file_name="x.pdf", file_size=-1), actor=ACTOR)


def test_current_revision_selection_policy():
    t0 = datetime(2026, 1, 1)
    t1 = datetime(2026, 2, 1)
    t2 = datetime(2026, 3, 1)

    def rev(id, status, created_at):
        return SimpleNamespace(id=id, status=status, created_at=created_at)

    approved = rev(1, "APPROVED", t0)
    draft = rev(2, "DRAFT", t1)
    assert current_revision(SimpleNamespace(revisions=[approved, draft])) is approved

    superseded = rev(1, "SUPERSEDED", t0)
    assert current_revision(SimpleNamespace(revisions=[superseded, draft])) is draft

    old = rev(1, "SUPERSEDED", t0)
    newer = rev(2, "SUPERSEDED", t2)
    assert current_revision(SimpleNamespace(revisions=[newer, old])) is newer

    assert current_revision(SimpleNamespace(revisions=[])) is None


def test_current_version_is_highest_number():
    versions = [SimpleNamespace(version_number=n) for n in (2, 3, 1)]
    assert current_version(SimpleNamespace(versions=versions)).version_number == 3
    assert current_version(SimpleNamespace(versions=[])) is None


def test_terminate_and_activate_document(s):
    d = _doc(s)
    d = terminate_document(s, d.id, actor=ACTOR)
    assert d.terminated_at is not None

    with pytest.raises(InvalidStateError):
        terminate_document(s, d.id, actor=ACTOR)
    with pytest.raises(InvalidStateError):
        create_revision(s, d.id, file=_file(), actor=ACTOR)

    d = activate_document(s, d.id, actor=ACTOR)
    assert d.terminated_at is None
    with pytest.raises(InvalidStateError):
        activate_document(s, d.id, actor=ACTOR)


def test_update_document(app, s):
    d = _doc(s)
    d = update_document(s, d.id, title="Quality Manual v2", description="Company-wide", actor=ACTOR)
    assert d.title == "Quality Manual v2"
    assert d.description == "Company-wide"

    with pytest.raises(ValidationError):
        update_document(s, d.id, title="   ", actor=ACTOR)

    with session_scope(app) as s2:
        assert s2.query(AuditEvent).filter(AuditEvent.action == "document.update", AuditEvent.level == "INFO").count() == 1


def test_list_documents_filters_and_paginates(s):
    for i in range(1, 6):
        _doc(s, code=f"SOP-00{i}", title=f"Procedure {i}")
    _doc(s, code="WI-001", title="Work Instruction", module="PRODUCTION")

    page = list_documents(s, DocumentFilter(query="SOP"), pagination=Pagination(skip=0, take=2), order_by=OrderBy("CODE"), actor=ACTOR)
    assert page.total_items == 5
    assert page.total_pages == 3
    assert page.has_next and not page.has_prev
    assert [d.code for d in page.items] == ["SOP-001", "SOP-002"]

    page = list_documents(s, DocumentFilter(module="PRODUCTION"), actor=ACTOR)
    assert [d.code for d in page.items] == ["WI-001"]

    page = list_documents(s, DocumentFilter(status="DRAFT"), actor=ACTOR)
    assert page.total_items == 6

    with pytest.raises(ValidationError):
        list_documents(s, order_by=OrderBy("FILE_SIZE"), actor=ACTOR)
    with pytest.raises(ValidationError):
        list_documents(s, pagination=Pagination(skip=0, take=0), actor=ACTOR)


def test_documents_by_module_and_select_list(s):
    a = _doc(s, code="SOP-001", title="Cleaning", entity_type="Line", entity_id=3)
    b = _doc(s, code="SOP-002", title="Calibration")
    terminate_document(s, b.id, actor=ACTOR)

    page = documents_by_module(s, "QUALITY", actor=ACTOR)
    assert [d.id for d in page.items] == [a.id]
    page = documents_by_module(s, "QUALITY", entity_type="Line", entity_id=4, actor=ACTOR)
    assert page.items == []

    options = documents_select_list(s, DocumentFilter(module="QUALITY"), actor=ACTOR)
    assert options == [{"value": str(a.id), "label": "SOP-001 - Cleaning"}]


def test_get_document_not_found(s):
    with pytest.raises(NotFoundError):
        get_document(s, 42, actor=ACTOR)
