"""
CopyGuard - Approval workflow engine.

Content moves through a fixed, ordered chain of role-gated approval steps:

    DRAFT -> PENDING_REVIEW -> IN_REVIEW -> APPROVED -> PUBLISHED
                    \\             |
                     +----> CHANGES_REQUESTED -> (edit) -> PENDING_REVIEW

Every transition on one content item runs under that item's lock and inside
a single database transaction. Step decisions additionally claim the step
with a conditional UPDATE, so of two racing approvals only one can win.

The step chain comes from a step template, by default
Manager Review -> Legal Review -> Executive Approval. A deployment can load
its own from YAML:

    steps:
      - name: Manager Review
        role: MANAGER
      - name: Legal Review
        role: LEGAL
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence

import yaml
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .authorization import RoleAuthorizer
from .compliance import ComplianceEvaluator
from .database import (
    ApprovalStepModel,
    CommentModel,
    ContentModel,
    Database,
    UserModel,
    WorkflowModel,
)
from .exceptions import (
    AuthorizationError,
    ComplianceBlockedError,
    InvalidInputError,
    NotFoundError,
    StateConflictError,
    StepTemplateError,
)
from .gate import can_submit
from .models import (
    DEFAULT_STEP_TEMPLATE,
    EDITABLE_STATUSES,
    SUBMITTABLE_STATUSES,
    ComplianceResult,
    ContentStatus,
    Role,
    StepStatus,
    StepTemplate,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowStatus,
    utcnow,
)
from .validation import (
    validate_choice,
    validate_content_create,
    validate_feedback,
    validate_required,
    validate_string_length,
    validate_text,
    validate_user_create,
)

logger = logging.getLogger("copyguard.workflow")

WorkflowListener = Callable[[WorkflowEvent], None]


# ==================== Step templates ====================


def parse_step_template(data: Any, source: str = "<string>") -> tuple[StepTemplate, ...]:
    """Build a step template from parsed YAML data."""
    if not isinstance(data, dict):
        raise StepTemplateError(
            "Step template must be a YAML object",
            path=source,
            suggestion="Start the file with a 'steps:' list",
        )

    steps = data.get("steps")
    if not steps or not isinstance(steps, list):
        raise StepTemplateError(
            "Missing or empty 'steps' list",
            path=f"{source}:steps",
            suggestion="steps:\n    - name: Manager Review\n      role: MANAGER",
        )

    template = []
    roles = ", ".join(r.value for r in Role)
    for number, entry in enumerate(steps, start=1):
        path = f"{source}:steps[{number - 1}]"
        if not isinstance(entry, dict):
            raise StepTemplateError("Each step must be an object", path=path)

        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise StepTemplateError(
                "Step is missing a name",
                path=f"{path}.name",
                suggestion="Add 'name: \"Legal Review\"' to the step",
            )

        role = entry.get("role")
        try:
            required_role = Role(str(role).upper())
        except ValueError:
            raise StepTemplateError(
                f"Unknown role '{role}'",
                path=f"{path}.role",
                suggestion=f"Use one of: {roles}",
            )

        template.append(StepTemplate(number, name.strip(), required_role))

    return tuple(template)


def load_step_template(path: str | Path) -> tuple[StepTemplate, ...]:
    """Load and validate a step template from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise StepTemplateError(f"Step template file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise StepTemplateError(
            f"Invalid YAML syntax: {e}",
            path=str(path),
            suggestion="Check your YAML indentation and syntax",
        )

    template = parse_step_template(data, str(path))
    logger.info(
        f"Loaded step template from {path}: "
        + " -> ".join(f"{s.step_name} ({s.required_role.value})" for s in template)
    )
    return template


def stored_result(content: ContentModel) -> Optional[ComplianceResult]:
    """The compliance snapshot stored on a content item, if any."""
    if not content.compliance_result:
        return None
    return ComplianceResult.from_dict(content.compliance_result)


def _initials(name: str) -> str:
    return "".join(part[0] for part in name.split() if part)[:2].upper()


# ==================== Engine ====================


class WorkflowEngine:
    """
    Owns every content lifecycle transition.

    Methods take the caller's ``Session`` and return ORM rows bound to it, so
    the caller can render related rows before closing the session. Each
    transition either commits in full or is rolled back; change listeners are
    notified only after a commit.

    Args:
        db: Storage handle.
        evaluator: Compliance evaluator run on create, edit and re-check.
        authorizer: Role check for step decisions.
        step_template: Ordered steps instantiated by ``submit``.
        require_identity: Reject anonymous approve/reject calls.
        retain_history: Keep superseded workflows (flagged not current)
            instead of deleting them on resubmission.
    """

    def __init__(
        self,
        db: Database,
        evaluator: ComplianceEvaluator,
        authorizer: Optional[RoleAuthorizer] = None,
        step_template: Sequence[StepTemplate] = DEFAULT_STEP_TEMPLATE,
        require_identity: bool = False,
        retain_history: bool = True,
    ):
        if not step_template:
            raise StepTemplateError("Step template must contain at least one step")
        self.db = db
        self.evaluator = evaluator
        self.authorizer = authorizer or RoleAuthorizer()
        self.step_template = tuple(step_template)
        self.require_identity = require_identity
        self.retain_history = retain_history
        self._listeners: List[WorkflowListener] = []
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    # ----- plumbing -----

    def subscribe(self, listener: WorkflowListener) -> None:
        """Register a callable that receives each committed ``WorkflowEvent``."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: WorkflowListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: WorkflowEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Workflow listener failed on {event.event_type.value}: {e}")

    @contextmanager
    def _locked(self, content_id: str) -> Iterator[None]:
        # [lock, holders]; dropped when the last holder or waiter leaves
        with self._locks_guard:
            entry = self._locks.get(content_id)
            if entry is None:
                entry = self._locks[content_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[content_id]

    def _require_content(self, session: Session, content_id: str) -> ContentModel:
        content = self.db.get_content(session, content_id)
        if not content:
            raise NotFoundError("Content not found")
        return content

    def _require_user(self, session: Session, user_id: str) -> UserModel:
        user = self.db.get_user(session, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _require_step(self, session: Session, step_id: str) -> ApprovalStepModel:
        step = self.db.get_step(session, step_id)
        if not step:
            raise NotFoundError("Step not found")
        return step

    def _resolve_actor(self, session: Session, user_id: Optional[str]) -> Optional[UserModel]:
        if not user_id:
            if self.require_identity:
                raise AuthorizationError("An acting user is required for this operation")
            return None
        return self._require_user(session, user_id)

    def _check_creator(
        self, session: Session, content: ContentModel, user_id: Optional[str], action: str
    ) -> None:
        if not user_id:
            return
        user = self._require_user(session, user_id)
        if user.id != content.creator_id:
            raise AuthorizationError(f"Only the creator can {action} this content")

    def _store_result(self, content: ContentModel, result: ComplianceResult) -> None:
        content.compliance_result = result.to_dict()
        content.compliance_version = content.version

    # ----- users -----

    def create_user(
        self, session: Session, name: str, email: str, role: Any = Role.DESIGNER
    ) -> UserModel:
        validate_user_create(name, email)
        role = validate_choice(role or Role.DESIGNER, Role, "role")
        email = email.strip().lower()
        if self.db.get_user_by_email(session, email):
            raise InvalidInputError("A user with this email already exists", field="email")
        try:
            user = self.db.create_user(
                session,
                name=name.strip(),
                email=email,
                role=role.value,
                avatar=_initials(name),
            )
        except IntegrityError:
            session.rollback()
            raise InvalidInputError("A user with this email already exists", field="email")
        logger.info(f"User created: {user.email} ({user.role})")
        return user

    def get_user(self, session: Session, user_id: str) -> UserModel:
        return self._require_user(session, user_id)

    def list_users(self, session: Session) -> List[UserModel]:
        return self.db.list_users(session)

    # ----- content -----

    def create_content(
        self,
        session: Session,
        title: str,
        text: str,
        creator_id: str,
        description: Optional[str] = None,
    ) -> ContentModel:
        """Create a DRAFT content item with a fresh compliance snapshot."""
        validate_content_create(title, text, creator_id)
        self._require_user(session, creator_id)

        result = self.evaluator.evaluate(text)
        try:
            content = ContentModel(
                title=title.strip(),
                text=text,
                description=description,
                status=ContentStatus.DRAFT.value,
                version=1,
                creator_id=creator_id,
            )
            self._store_result(content, result)
            session.add(content)
            session.commit()
            session.refresh(content)
        except Exception:
            session.rollback()
            raise

        logger.info(f"Content created: {content.id} (compliant={result.is_compliant})")
        self._emit(
            WorkflowEvent(
                WorkflowEventType.CONTENT_CREATED,
                content_id=content.id,
                status=content.status,
                actor=creator_id,
            )
        )
        return content

    def get_content(self, session: Session, content_id: str) -> ContentModel:
        return self._require_content(session, content_id)

    def list_content(
        self,
        session: Session,
        status: Optional[str] = None,
        creator_id: Optional[str] = None,
    ) -> List[ContentModel]:
        if status:
            status = validate_choice(status, ContentStatus, "status").value
        return self.db.list_content(session, status=status, creator_id=creator_id)

    def edit_content(
        self,
        session: Session,
        content_id: str,
        title: Optional[str] = None,
        text: Optional[str] = None,
        description: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> ContentModel:
        """
        Edit an item in DRAFT or CHANGES_REQUESTED.

        Supplying ``text`` bumps the version. Changed text is re-evaluated and
        the new snapshot stored; unchanged text keeps its existing snapshot,
        which then also covers the new version.
        """
        if title is not None:
            validate_required(title, "title")
            validate_string_length(title, "title", max_length=255)
        if text is not None:
            validate_text(text)

        with self._locked(content_id):
            session.expire_all()
            content = self._require_content(session, content_id)
            self._check_creator(session, content, acting_user_id, "edit")
            if ContentStatus(content.status) not in EDITABLE_STATUSES:
                raise StateConflictError(
                    f"Content cannot be edited while {content.status}",
                    current_status=content.status,
                )

            result = None
            if text is not None and text != content.text:
                result = self.evaluator.evaluate(text)

            try:
                if title is not None:
                    content.title = title.strip()
                if description is not None:
                    content.description = description
                if text is not None:
                    snapshot_current = (content.compliance_version or 0) >= content.version
                    content.text = text
                    content.version += 1
                    if result is not None:
                        self._store_result(content, result)
                    elif snapshot_current:
                        content.compliance_version = content.version
                content.updated_at = utcnow()
                session.commit()
                session.refresh(content)
            except Exception:
                session.rollback()
                raise

        logger.info(f"Content {content_id} edited (version {content.version})")
        self._emit(
            WorkflowEvent(
                WorkflowEventType.CONTENT_UPDATED,
                content_id=content.id,
                status=content.status,
                actor=acting_user_id,
                payload={"version": content.version},
            )
        )
        return content

    def recheck_content(self, session: Session, content_id: str) -> ContentModel:
        """Re-run compliance on an editable item's current text."""
        with self._locked(content_id):
            session.expire_all()
            content = self._require_content(session, content_id)
            if ContentStatus(content.status) not in EDITABLE_STATUSES:
                raise StateConflictError(
                    f"Content cannot be re-checked while {content.status}",
                    current_status=content.status,
                )
            result = self.evaluator.evaluate(content.text)
            try:
                self._store_result(content, result)
                content.updated_at = utcnow()
                session.commit()
                session.refresh(content)
            except Exception:
                session.rollback()
                raise
        return content

    # ----- transitions -----

    def submit(
        self, session: Session, content_id: str, acting_user_id: Optional[str] = None
    ) -> WorkflowModel:
        """
        Send content into a fresh workflow.

        The gate runs on the stored snapshot, which must cover the current
        text version. Any existing workflow is superseded: kept as history
        (not current, unfinished steps skipped) or deleted, per
        ``retain_history``.

        Raises:
            NotFoundError: Unknown content or acting user.
            StateConflictError: Approved/published content, or a stale snapshot.
            ComplianceBlockedError: The snapshot has HIGH severity issues.
        """
        with self._locked(content_id):
            session.expire_all()
            content = self._require_content(session, content_id)
            self._check_creator(session, content, acting_user_id, "submit")

            if ContentStatus(content.status) not in SUBMITTABLE_STATUSES:
                raise StateConflictError(
                    f"Content cannot be submitted while {content.status}",
                    current_status=content.status,
                )

            result = stored_result(content)
            if result is None or (content.compliance_version or 0) < content.version:
                raise StateConflictError(
                    "Compliance check is missing or out of date; re-check before submitting",
                    current_status=content.status,
                )

            decision = can_submit(result)
            if not decision.allowed:
                logger.info(
                    f"Submission of {content_id} blocked: "
                    f"{len(decision.blocking_issues)} high severity issue(s)"
                )
                raise ComplianceBlockedError(list(decision.blocking_issues))

            try:
                previous = self.db.get_current_workflow(session, content_id)
                if previous is not None:
                    self._supersede(session, previous)
                    session.flush()

                workflow = WorkflowModel(
                    content_id=content_id,
                    current_step=self.step_template[0].step_number,
                    status=WorkflowStatus.ACTIVE.value,
                    is_current=True,
                )
                for i, template in enumerate(self.step_template):
                    workflow.steps.append(
                        ApprovalStepModel(
                            step_number=template.step_number,
                            step_name=template.step_name,
                            required_role=template.required_role.value,
                            status=(
                                StepStatus.IN_PROGRESS.value
                                if i == 0
                                else StepStatus.PENDING.value
                            ),
                        )
                    )
                session.add(workflow)
                content.status = ContentStatus.PENDING_REVIEW.value
                content.updated_at = utcnow()
                session.commit()
                session.refresh(workflow)
            except Exception:
                session.rollback()
                raise

        logger.info(f"Content {content_id} submitted: workflow {workflow.id}")
        self._emit(
            WorkflowEvent(
                WorkflowEventType.CONTENT_SUBMITTED,
                content_id=content_id,
                status=ContentStatus.PENDING_REVIEW.value,
                workflow_id=workflow.id,
                step_id=workflow.steps[0].id,
                actor=acting_user_id,
            )
        )
        return workflow

    def _supersede(self, session: Session, workflow: WorkflowModel) -> None:
        if not self.retain_history:
            session.delete(workflow)
            return
        workflow.is_current = False
        if workflow.status == WorkflowStatus.ACTIVE.value:
            workflow.status = WorkflowStatus.CANCELLED.value
            for step in workflow.steps:
                if step.status in (StepStatus.PENDING.value, StepStatus.IN_PROGRESS.value):
                    step.status = StepStatus.SKIPPED.value

    def _decide(
        self,
        session: Session,
        step_id: str,
        acting_user_id: Optional[str],
        decision: StepStatus,
        feedback: Optional[str] = None,
    ) -> tuple[ApprovalStepModel, Optional[UserModel]]:
        """Move an IN_PROGRESS step to ``decision`` and advance the workflow.

        Must run under the content lock. The step is claimed with a
        conditional UPDATE, so a step already decided by a concurrent caller
        yields ``StateConflictError`` and nothing else changes.
        """
        step = self._require_step(session, step_id)
        user = self._resolve_actor(session, acting_user_id)
        workflow = step.workflow

        if step.status != StepStatus.IN_PROGRESS.value:
            raise StateConflictError(
                f"Step is not in progress (status {step.status})",
                current_status=step.status,
            )
        if workflow.status != WorkflowStatus.ACTIVE.value or not workflow.is_current:
            raise StateConflictError(
                "Workflow is no longer active", current_status=workflow.status
            )
        if user is not None:
            self.authorizer.authorize(user, step.required_role)

        try:
            now = utcnow()
            claimed = (
                session.query(ApprovalStepModel)
                .filter(
                    ApprovalStepModel.id == step_id,
                    ApprovalStepModel.status == StepStatus.IN_PROGRESS.value,
                )
                .update(
                    {
                        ApprovalStepModel.status: decision.value,
                        ApprovalStepModel.decided_at: now,
                        ApprovalStepModel.assignee_id: user.id if user else None,
                        ApprovalStepModel.feedback: feedback,
                        ApprovalStepModel.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                session.rollback()
                raise StateConflictError("Step was already decided")
            session.refresh(step)

            content = workflow.content
            if decision == StepStatus.REJECTED:
                workflow.status = WorkflowStatus.CANCELLED.value
                content.status = ContentStatus.CHANGES_REQUESTED.value
            else:
                next_step = next(
                    (s for s in workflow.steps if s.step_number > step.step_number),
                    None,
                )
                if next_step is not None:
                    next_step.status = StepStatus.IN_PROGRESS.value
                    workflow.current_step = next_step.step_number
                    content.status = ContentStatus.IN_REVIEW.value
                else:
                    workflow.status = WorkflowStatus.COMPLETED.value
                    content.status = ContentStatus.APPROVED.value
            content.updated_at = now
            session.commit()
            session.refresh(step)
        except StateConflictError:
            raise
        except Exception:
            session.rollback()
            raise
        return step, user

    def _content_id_of(self, session: Session, step_id: str) -> str:
        return self._require_step(session, step_id).workflow.content_id

    def approve(
        self, session: Session, step_id: str, acting_user_id: Optional[str] = None
    ) -> ApprovalStepModel:
        """
        Approve the IN_PROGRESS step ``step_id``.

        The next step becomes IN_PROGRESS and the content moves to IN_REVIEW;
        after the last step the workflow completes and the content is APPROVED.

        Raises:
            NotFoundError: Unknown step or acting user.
            StateConflictError: The step is not IN_PROGRESS (including a lost race).
            RoleMismatchError: The acting user's role is not the step's role.
            AuthorizationError: No acting user while identity is required.
        """
        content_id = self._content_id_of(session, step_id)
        with self._locked(content_id):
            session.expire_all()
            step, user = self._decide(session, step_id, acting_user_id, StepStatus.APPROVED)
            workflow = step.workflow
            content_status = workflow.content.status

        actor = user.id if user else None
        logger.info(
            f"Step {step.step_number} ({step.step_name}) approved on content "
            f"{content_id}; content now {content_status}"
        )
        self._emit(
            WorkflowEvent(
                WorkflowEventType.STEP_APPROVED,
                content_id=content_id,
                status=content_status,
                workflow_id=workflow.id,
                step_id=step.id,
                actor=actor,
                payload={"step_number": step.step_number},
            )
        )
        if workflow.status == WorkflowStatus.COMPLETED.value:
            self._emit(
                WorkflowEvent(
                    WorkflowEventType.WORKFLOW_COMPLETED,
                    content_id=content_id,
                    status=content_status,
                    workflow_id=workflow.id,
                    actor=actor,
                )
            )
        return step

    def reject(
        self,
        session: Session,
        step_id: str,
        feedback: Optional[str],
        acting_user_id: Optional[str] = None,
    ) -> ApprovalStepModel:
        """
        Reject the IN_PROGRESS step ``step_id`` with actionable feedback.

        The content moves to CHANGES_REQUESTED and the workflow is cancelled;
        its rows stay as the audit record until the next submission. The
        feedback is also appended as a comment by the rejecting user; failure
        to write that comment is logged and does not undo the rejection.
        """
        validate_feedback(feedback)
        content_id = self._content_id_of(session, step_id)
        with self._locked(content_id):
            session.expire_all()
            step, user = self._decide(
                session, step_id, acting_user_id, StepStatus.REJECTED, feedback.strip()
            )
            workflow_id = step.workflow_id

        if user is not None:
            try:
                self.db.create_comment(
                    session, step_id=step.id, author_id=user.id, text=feedback.strip()
                )
            except Exception as e:
                session.rollback()
                logger.warning(f"Could not record rejection feedback comment on step {step.id}: {e}")

        logger.info(f"Step {step.step_number} ({step.step_name}) rejected on content {content_id}")
        self._emit(
            WorkflowEvent(
                WorkflowEventType.STEP_REJECTED,
                content_id=content_id,
                status=ContentStatus.CHANGES_REQUESTED.value,
                workflow_id=workflow_id,
                step_id=step.id,
                actor=user.id if user else None,
                payload={"feedback": feedback.strip()},
            )
        )
        return step

    def publish(self, session: Session, content_id: str) -> ContentModel:
        """Publish APPROVED content. Terminal."""
        with self._locked(content_id):
            session.expire_all()
            content = self._require_content(session, content_id)
            if content.status != ContentStatus.APPROVED.value:
                raise StateConflictError(
                    "Content must be approved before publishing",
                    current_status=content.status,
                )
            try:
                content.status = ContentStatus.PUBLISHED.value
                content.updated_at = utcnow()
                session.commit()
                session.refresh(content)
            except Exception:
                session.rollback()
                raise

        logger.info(f"Content {content_id} published")
        self._emit(
            WorkflowEvent(
                WorkflowEventType.CONTENT_PUBLISHED,
                content_id=content_id,
                status=content.status,
            )
        )
        return content

    # ----- queries and comments -----

    def add_comment(
        self, session: Session, step_id: str, author_id: str, text: str
    ) -> CommentModel:
        validate_required(author_id, "author_id")
        validate_text(text)
        self._require_step(session, step_id)
        self._require_user(session, author_id)
        return self.db.create_comment(
            session, step_id=step_id, author_id=author_id, text=text.strip()
        )

    def pending_steps(
        self, session: Session, role: Optional[str] = None
    ) -> List[ApprovalStepModel]:
        """IN_PROGRESS steps of active workflows, optionally for one role."""
        if role:
            role = validate_choice(str(role).upper(), Role, "role").value
        return self.db.get_pending_steps(session, role)

    def workflow_history(self, session: Session, content_id: str) -> List[WorkflowModel]:
        """Current and retained workflows for a content item, newest first."""
        self._require_content(session, content_id)
        return self.db.get_workflows(session, content_id)
