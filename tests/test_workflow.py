"""
Tests for the approval workflow engine.

Tests content lifecycle transitions, the compliance gate on submit, role-gated
step decisions, workflow history and step templates.
"""

import os
import tempfile
import threading

import pytest

from copyguard.compliance import RuleMatchingEvaluator
from copyguard.database import Database, WorkflowModel
from copyguard.exceptions import (
    AuthorizationError,
    ComplianceBlockedError,
    InvalidInputError,
    NotFoundError,
    RoleMismatchError,
    StateConflictError,
    StepTemplateError,
)
from copyguard.models import (
    ContentStatus,
    Role,
    StepStatus,
    StepTemplate,
    WorkflowEventType,
    WorkflowStatus,
)
from copyguard.rules import PolicyRuleStore
from copyguard.workflow import WorkflowEngine, load_step_template, parse_step_template

BLOCKED_TEXT = "Our phone is 100% waterproof and guaranteed to never fail."
MEDIUM_TEXT = "Shipping is free on every order."
CLEAN_TEXT = "Our new headphones deliver crisp sound and a comfortable fit."


def assert_single_in_progress(workflow):
    """An ACTIVE workflow has exactly one IN_PROGRESS step, the current one."""
    if workflow.status != WorkflowStatus.ACTIVE.value:
        return
    in_progress = [s for s in workflow.steps if s.status == StepStatus.IN_PROGRESS.value]
    assert len(in_progress) == 1
    assert in_progress[0].step_number == workflow.current_step


@pytest.fixture
def db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}")
    db.create_tables()
    yield db

    db.dispose()
    os.unlink(db_path)


@pytest.fixture
def evaluator(db):
    store = PolicyRuleStore(db)
    store.seed_demo_rules()
    return RuleMatchingEvaluator(store)


@pytest.fixture
def engine(db, evaluator):
    return WorkflowEngine(db, evaluator)


@pytest.fixture
def session(db):
    session = db.get_session()
    yield session
    session.close()


@pytest.fixture
def users(engine, session):
    people = {
        "designer": ("Dana Designer", "dana@example.com", Role.DESIGNER),
        "manager": ("Max Manager", "max@example.com", Role.MANAGER),
        "legal": ("Lee Legal", "lee@example.com", Role.LEGAL),
        "executive": ("Eve Executive", "eve@example.com", Role.EXECUTIVE),
        "admin": ("Ada Admin", "ada@example.com", Role.ADMIN),
    }
    return {
        key: engine.create_user(session, name, email, role).id
        for key, (name, email, role) in people.items()
    }


class TestUsers:
    def test_create_user(self, engine, session):
        user = engine.create_user(session, "Morgan Lee", "Morgan@Example.com", "LEGAL")
        assert user.role == "LEGAL"
        assert user.email == "morgan@example.com"
        assert user.avatar == "ML"

    def test_default_role(self, engine, session):
        assert engine.create_user(session, "Sam", "sam@example.com").role == "DESIGNER"

    def test_duplicate_email(self, engine, session):
        engine.create_user(session, "Sam", "sam@example.com")
        with pytest.raises(InvalidInputError) as exc:
            engine.create_user(session, "Sam Two", "SAM@example.com")
        assert exc.value.field == "email"

    def test_unknown_role(self, engine, session):
        with pytest.raises(InvalidInputError):
            engine.create_user(session, "Sam", "sam@example.com", "OWNER")

    def test_get_missing_user(self, engine, session):
        with pytest.raises(NotFoundError):
            engine.get_user(session, "missing")


class TestCreateContent:
    def test_stores_compliance_snapshot(self, engine, session, users):
        content = engine.create_content(session, "Launch", BLOCKED_TEXT, users["designer"])

        assert content.status == ContentStatus.DRAFT.value
        assert content.version == 1
        assert content.compliance_version == 1
        assert content.compliance_result["is_compliant"] is False
        assert len(content.compliance_result["issues"]) == 3
        assert content.workflow is None

    def test_unknown_creator(self, engine, session):
        with pytest.raises(NotFoundError):
            engine.create_content(session, "Launch", CLEAN_TEXT, "missing")

    def test_missing_title(self, engine, session, users):
        with pytest.raises(InvalidInputError) as exc:
            engine.create_content(session, "", CLEAN_TEXT, users["designer"])
        assert exc.value.field == "title"

    def test_empty_text(self, engine, session, users):
        with pytest.raises(InvalidInputError) as exc:
            engine.create_content(session, "Launch", "   ", users["designer"])
        assert exc.value.field == "text"

    def test_list_content_filters(self, engine, session, users):
        first = engine.create_content(session, "One", CLEAN_TEXT, users["designer"])
        engine.create_content(session, "Two", CLEAN_TEXT, users["manager"])
        engine.submit(session, first.id)

        pending = engine.list_content(session, status="PENDING_REVIEW")
        assert [c.id for c in pending] == [first.id]
        assert len(engine.list_content(session, creator_id=users["manager"])) == 1
        assert len(engine.list_content(session)) == 2
        with pytest.raises(InvalidInputError):
            engine.list_content(session, status="ARCHIVED")


class TestSubmit:
    def test_blocked_by_high_severity(self, engine, session, users):
        content = engine.create_content(session, "Launch", BLOCKED_TEXT, users["designer"])

        with pytest.raises(ComplianceBlockedError) as exc:
            engine.submit(session, content.id)

        issues = exc.value.to_dict()["issues"]
        assert {i["matched_text"] for i in issues} == {"100% waterproof", "never fail"}
        assert all(i["severity"] == "high" for i in issues)
        content = engine.get_content(session, content.id)
        assert content.status == ContentStatus.DRAFT.value
        assert engine.workflow_history(session, content.id) == []

    def test_medium_issues_do_not_block(self, engine, session, users):
        content = engine.create_content(session, "Promo", MEDIUM_TEXT, users["designer"])
        workflow = engine.submit(session, content.id)
        assert workflow.status == WorkflowStatus.ACTIVE.value

    def test_creates_workflow_from_template(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])

        workflow = engine.submit(session, content.id)

        assert workflow.current_step == 1
        assert workflow.is_current is True
        assert [(s.step_number, s.step_name, s.required_role, s.status) for s in workflow.steps] == [
            (1, "Manager Review", "MANAGER", "IN_PROGRESS"),
            (2, "Legal Review", "LEGAL", "PENDING"),
            (3, "Executive Approval", "EXECUTIVE", "PENDING"),
        ]
        assert engine.get_content(session, content.id).status == ContentStatus.PENDING_REVIEW.value
        assert_single_in_progress(workflow)

    def test_unknown_content(self, engine, session):
        with pytest.raises(NotFoundError):
            engine.submit(session, "missing")

    def test_only_creator_may_submit(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        with pytest.raises(AuthorizationError):
            engine.submit(session, content.id, acting_user_id=users["manager"])
        engine.submit(session, content.id, acting_user_id=users["designer"])

    def test_stale_snapshot_is_refused(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        content.compliance_version = None
        session.commit()

        with pytest.raises(StateConflictError):
            engine.submit(session, content.id)

    def test_resubmit_while_in_review_resets(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        first = engine.submit(session, content.id)
        old_step_id = first.steps[0].id
        first_id = first.id

        second = engine.submit(session, content.id)

        assert second.id != first_id
        old = session.get(WorkflowModel, first_id)
        assert old.is_current is False
        assert old.status == WorkflowStatus.CANCELLED.value
        assert all(s.status == StepStatus.SKIPPED.value for s in old.steps)
        with pytest.raises(StateConflictError):
            engine.approve(session, old_step_id, users["manager"])

    def test_approved_content_cannot_resubmit(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        workflow = engine.submit(session, content.id)
        for step, role in zip(list(workflow.steps), ["manager", "legal", "executive"]):
            engine.approve(session, step.id, users[role])

        with pytest.raises(StateConflictError):
            engine.submit(session, content.id)


class TestApprovalChain:
    def test_full_chain(self, engine, session, users):
        events = []
        engine.subscribe(events.append)
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        workflow = engine.submit(session, content.id)
        step_ids = [s.id for s in workflow.steps]

        step = engine.approve(session, step_ids[0], users["manager"])
        assert step.status == StepStatus.APPROVED.value
        assert step.assignee_id == users["manager"]
        assert step.decided_at is not None
        workflow = step.workflow
        assert workflow.content.status == ContentStatus.IN_REVIEW.value
        assert workflow.current_step == 2
        assert workflow.steps[1].status == StepStatus.IN_PROGRESS.value
        assert_single_in_progress(workflow)

        step = engine.approve(session, step_ids[1], users["legal"])
        workflow = step.workflow
        assert workflow.current_step == 3
        assert workflow.steps[2].status == StepStatus.IN_PROGRESS.value
        assert_single_in_progress(workflow)

        step = engine.approve(session, step_ids[2], users["executive"])
        workflow = step.workflow
        assert workflow.status == WorkflowStatus.COMPLETED.value
        assert workflow.current_step == 3
        assert workflow.content.status == ContentStatus.APPROVED.value
        assert all(s.status == StepStatus.APPROVED.value for s in workflow.steps)

        assert [e.event_type for e in events] == [
            WorkflowEventType.CONTENT_CREATED,
            WorkflowEventType.CONTENT_SUBMITTED,
            WorkflowEventType.STEP_APPROVED,
            WorkflowEventType.STEP_APPROVED,
            WorkflowEventType.STEP_APPROVED,
            WorkflowEventType.WORKFLOW_COMPLETED,
        ]

    def test_publish(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        with pytest.raises(StateConflictError):
            engine.publish(session, content.id)

        workflow = engine.submit(session, content.id)
        for step, role in zip(list(workflow.steps), ["manager", "legal", "executive"]):
            engine.approve(session, step.id, users[role])

        published = engine.publish(session, content.id)
        assert published.status == ContentStatus.PUBLISHED.value
        with pytest.raises(StateConflictError):
            engine.publish(session, content.id)

    def test_role_mismatch(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        with pytest.raises(RoleMismatchError) as exc:
            engine.approve(session, step_id, users["legal"])

        assert exc.value.required_role == "MANAGER"
        assert exc.value.user_role == "LEGAL"
        assert engine.db.get_step(session, step_id).status == StepStatus.IN_PROGRESS.value

    def test_admin_is_not_a_manager(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id
        with pytest.raises(RoleMismatchError):
            engine.approve(session, step_id, users["admin"])

    def test_anonymous_approval_allowed_by_default(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        step = engine.approve(session, step_id)

        assert step.status == StepStatus.APPROVED.value
        assert step.assignee_id is None

    def test_identity_required(self, db, evaluator, session, users):
        engine = WorkflowEngine(db, evaluator, require_identity=True)
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        with pytest.raises(AuthorizationError):
            engine.approve(session, step_id)
        with pytest.raises(AuthorizationError):
            engine.reject(session, step_id, "fix claim X")
        engine.approve(session, step_id, users["manager"])

    def test_approve_decided_step(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id
        engine.approve(session, step_id, users["manager"])

        with pytest.raises(StateConflictError) as exc:
            engine.approve(session, step_id, users["manager"])
        assert exc.value.current_status == StepStatus.APPROVED.value
        workflow = engine.db.get_current_workflow(session, content.id)
        assert workflow.current_step == 2

    def test_approve_pending_step(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[1].id
        with pytest.raises(StateConflictError):
            engine.approve(session, step_id, users["legal"])

    def test_unknown_step_and_user(self, engine, session, users):
        with pytest.raises(NotFoundError):
            engine.approve(session, "missing", users["manager"])

        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id
        with pytest.raises(NotFoundError):
            engine.approve(session, step_id, "missing")

    def test_listener_failure_does_not_undo_transition(self, engine, session, users):
        def broken(event):
            raise RuntimeError("dashboard offline")

        engine.subscribe(broken)
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step = engine.approve(session, engine.submit(session, content.id).steps[0].id)
        assert step.status == StepStatus.APPROVED.value


class TestConcurrentApproval:
    def test_racing_approvals_advance_once(self, db, engine, users):
        session = db.get_session()
        try:
            content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
            workflow = engine.submit(session, content.id)
            step_id = workflow.steps[0].id
            content_id = content.id
        finally:
            session.close()

        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def approve():
            s = db.get_session()
            try:
                barrier.wait()
                engine.approve(s, step_id, users["manager"])
                result = "ok"
            except StateConflictError:
                result = "conflict"
            finally:
                s.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=approve) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(outcomes) == ["conflict", "ok"]

        session = db.get_session()
        try:
            workflow = db.get_current_workflow(session, content_id)
            assert workflow.current_step == 2
            assert [s.status for s in workflow.steps] == [
                StepStatus.APPROVED.value,
                StepStatus.IN_PROGRESS.value,
                StepStatus.PENDING.value,
            ]
            assert_single_in_progress(workflow)
        finally:
            session.close()

    def test_content_locks_are_released(self, engine, session, users):
        for n in range(5):
            content = engine.create_content(session, f"Launch {n}", CLEAN_TEXT, users["designer"])
            engine.edit_content(session, content.id, title=f"Spring launch {n}")
            workflow = engine.submit(session, content.id)
            engine.approve(session, workflow.steps[0].id, users["manager"])
            with pytest.raises(StateConflictError):
                engine.edit_content(session, content.id, title="Too late")

        assert engine._locks == {}


class TestRejectAndResubmit:
    def test_reject_requires_feedback(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        for feedback in (None, "", "   "):
            with pytest.raises(InvalidInputError):
                engine.reject(session, step_id, feedback, users["manager"])

        assert engine.db.get_step(session, step_id).status == StepStatus.IN_PROGRESS.value

    def test_reject_role_mismatch(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id
        with pytest.raises(RoleMismatchError):
            engine.reject(session, step_id, "fix claim X", users["executive"])

    def test_reject_edit_resubmit(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        first = engine.submit(session, content.id)
        first_id = first.id
        step_id = first.steps[0].id

        step = engine.reject(session, step_id, "fix claim X", users["manager"])

        assert step.status == StepStatus.REJECTED.value
        assert step.feedback == "fix claim X"
        assert step.workflow.status == WorkflowStatus.CANCELLED.value
        assert step.workflow.content.status == ContentStatus.CHANGES_REQUESTED.value
        comments = engine.db.get_comments(session, step_id)
        assert [(c.author_id, c.text) for c in comments] == [(users["manager"], "fix claim X")]
        with pytest.raises(StateConflictError):
            engine.approve(session, step_id, users["manager"])

        edited = engine.edit_content(
            session, content.id, text=CLEAN_TEXT + " Now in blue.", acting_user_id=users["designer"]
        )
        assert edited.version == 2
        assert edited.compliance_version == 2

        second = engine.submit(session, content.id)

        assert second.id != first_id
        assert second.current_step == 1
        assert second.steps[0].status == StepStatus.IN_PROGRESS.value
        assert_single_in_progress(second)

        history = engine.workflow_history(session, content.id)
        assert [wf.id for wf in history] == [second.id, first_id]
        old = history[1]
        assert old.is_current is False
        assert old.steps[0].status == StepStatus.REJECTED.value
        assert old.steps[0].feedback == "fix claim X"

    def test_history_not_retained(self, db, evaluator, session, users):
        engine = WorkflowEngine(db, evaluator, retain_history=False)
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        first = engine.submit(session, content.id)
        first_id = first.id
        engine.reject(session, first.steps[0].id, "fix claim X", users["manager"])

        second = engine.submit(session, content.id)

        assert [wf.id for wf in engine.workflow_history(session, content.id)] == [second.id]
        assert session.get(WorkflowModel, first_id) is None

    def test_anonymous_reject_skips_comment(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        step = engine.reject(session, step_id, "fix claim X")

        assert step.status == StepStatus.REJECTED.value
        assert engine.db.get_comments(session, step_id) == []


class TestEditContent:
    def test_changed_text_is_reevaluated(self, engine, session, users):
        content = engine.create_content(session, "Launch", BLOCKED_TEXT, users["designer"])
        with pytest.raises(ComplianceBlockedError):
            engine.submit(session, content.id)

        edited = engine.edit_content(session, content.id, text=CLEAN_TEXT)

        assert edited.version == 2
        assert edited.compliance_version == 2
        assert edited.compliance_result["is_compliant"] is True
        engine.submit(session, content.id)

    def test_unchanged_text_keeps_snapshot(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        checked_at = content.compliance_result["checked_at"]

        edited = engine.edit_content(session, content.id, text=CLEAN_TEXT)

        assert edited.version == 2
        assert edited.compliance_version == 2
        assert edited.compliance_result["checked_at"] == checked_at

    def test_title_only_edit_keeps_version(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        edited = engine.edit_content(session, content.id, title="Spring launch")
        assert edited.title == "Spring launch"
        assert edited.version == 1

    def test_not_editable_in_review(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        engine.submit(session, content.id)
        with pytest.raises(StateConflictError) as exc:
            engine.edit_content(session, content.id, text=MEDIUM_TEXT)
        assert exc.value.current_status == ContentStatus.PENDING_REVIEW.value

    def test_only_creator_may_edit(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        with pytest.raises(AuthorizationError):
            engine.edit_content(
                session, content.id, text=MEDIUM_TEXT, acting_user_id=users["legal"]
            )

    def test_recheck_picks_up_rule_changes(self, db, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        store = engine.evaluator.rule_source
        store.create_rule("crisp sound", "Audio claims need data", "clear audio", severity="high")

        rechecked = engine.recheck_content(session, content.id)

        assert rechecked.compliance_result["is_compliant"] is False
        with pytest.raises(ComplianceBlockedError):
            engine.submit(session, content.id)


class TestQueriesAndComments:
    def test_pending_steps_by_role(self, engine, session, users):
        first = engine.create_content(session, "One", CLEAN_TEXT, users["designer"])
        second = engine.create_content(session, "Two", CLEAN_TEXT, users["designer"])
        engine.submit(session, first.id)
        workflow = engine.submit(session, second.id)
        engine.approve(session, workflow.steps[0].id, users["manager"])

        manager_queue = engine.pending_steps(session, "manager")
        legal_queue = engine.pending_steps(session, "LEGAL")

        assert [s.workflow.content_id for s in manager_queue] == [first.id]
        assert [s.workflow.content_id for s in legal_queue] == [second.id]
        assert len(engine.pending_steps(session)) == 2
        with pytest.raises(InvalidInputError):
            engine.pending_steps(session, "intern")

    def test_add_comment(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        comment = engine.add_comment(session, step_id, users["manager"], "Looks close.")

        assert comment.text == "Looks close."
        assert [c.id for c in engine.db.get_comments(session, step_id)] == [comment.id]

    def test_add_comment_validation(self, engine, session, users):
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        step_id = engine.submit(session, content.id).steps[0].id

        with pytest.raises(InvalidInputError):
            engine.add_comment(session, step_id, users["manager"], " ")
        with pytest.raises(NotFoundError):
            engine.add_comment(session, step_id, "missing", "hi")
        with pytest.raises(NotFoundError):
            engine.add_comment(session, "missing", users["manager"], "hi")

    def test_history_for_unknown_content(self, engine, session):
        with pytest.raises(NotFoundError):
            engine.workflow_history(session, "missing")


class TestStepTemplates:
    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "steps.yaml"
        path.write_text(
            "steps:\n"
            "  - name: Brand Review\n"
            "    role: manager\n"
            "  - name: Legal Review\n"
            "    role: LEGAL\n"
        )

        template = load_step_template(path)

        assert template == (
            StepTemplate(1, "Brand Review", Role.MANAGER),
            StepTemplate(2, "Legal Review", Role.LEGAL),
        )

    def test_missing_file(self, tmp_path):
        with pytest.raises(StepTemplateError):
            load_step_template(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "steps.yaml"
        path.write_text("steps: [unclosed\n")
        with pytest.raises(StepTemplateError) as exc:
            load_step_template(path)
        assert "Hint:" in str(exc.value)

    def test_missing_steps(self):
        with pytest.raises(StepTemplateError) as exc:
            parse_step_template({"stages": []})
        assert "steps" in str(exc.value)

    def test_unknown_role(self):
        with pytest.raises(StepTemplateError) as exc:
            parse_step_template({"steps": [{"name": "Review", "role": "intern"}]})
        assert "EXECUTIVE" in str(exc.value)

    def test_missing_name(self):
        with pytest.raises(StepTemplateError):
            parse_step_template({"steps": [{"role": "LEGAL"}]})

    def test_empty_template_rejected(self, db, evaluator):
        with pytest.raises(StepTemplateError):
            WorkflowEngine(db, evaluator, step_template=())

    def test_custom_two_step_chain(self, db, evaluator, session, users):
        template = parse_step_template(
            {"steps": [{"name": "Legal Review", "role": "LEGAL"}, {"name": "Sign-off", "role": "ADMIN"}]}
        )
        engine = WorkflowEngine(db, evaluator, step_template=template)
        content = engine.create_content(session, "Launch", CLEAN_TEXT, users["designer"])
        workflow = engine.submit(session, content.id)
        step_ids = [s.id for s in workflow.steps]

        engine.approve(session, step_ids[0], users["legal"])
        step = engine.approve(session, step_ids[1], users["admin"])

        assert step.workflow.status == WorkflowStatus.COMPLETED.value
        assert step.workflow.content.status == ContentStatus.APPROVED.value
