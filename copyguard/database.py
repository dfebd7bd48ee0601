"""
Database layer for CopyGuard using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.
"""

from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    desc,
    event,
    func,
    text,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import ContentStatus, Role, StepStatus, WorkflowStatus, utcnow

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default=Role.DESIGNER.value)
    avatar = Column(String(4), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ContentModel(Base):
    __tablename__ = "content"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False)
    text = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(30), nullable=False, default=ContentStatus.DRAFT.value)
    version = Column(Integer, nullable=False, default=1)
    compliance_result = Column(JSON, nullable=True)
    compliance_version = Column(Integer, nullable=True)
    creator_id = Column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    creator = relationship("UserModel")
    workflows = relationship(
        "WorkflowModel",
        back_populates="content",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowModel.created_at.desc()",
    )

    @property
    def workflow(self) -> Optional["WorkflowModel"]:
        """The workflow currently attached to this content, if any."""
        for wf in self.workflows:
            if wf.is_current:
                return wf
        return None

    __table_args__ = (
        Index("idx_content_status", "status"),
        Index("idx_content_creator_id", "creator_id"),
    )


class WorkflowModel(Base):
    __tablename__ = "workflows"

    id = Column(String(36), primary_key=True, default=_new_id)
    content_id = Column(
        String(36), ForeignKey("content.id", ondelete="CASCADE"), nullable=False
    )
    current_step = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=WorkflowStatus.ACTIVE.value)
    is_current = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    content = relationship("ContentModel", back_populates="workflows")
    steps = relationship(
        "ApprovalStepModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalStepModel.step_number",
    )

    # One current workflow per content; superseded ones stay as history.
    __table_args__ = (
        Index(
            "uq_workflows_current_content",
            "content_id",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
    )


class ApprovalStepModel(Base):
    __tablename__ = "approval_steps"

    id = Column(String(36), primary_key=True, default=_new_id)
    workflow_id = Column(
        String(36), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False
    )
    step_number = Column(Integer, nullable=False)
    step_name = Column(String(255), nullable=False)
    required_role = Column(String(20), nullable=False)
    assignee_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status = Column(String(20), nullable=False, default=StepStatus.PENDING.value)
    feedback = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    workflow = relationship("WorkflowModel", back_populates="steps")
    assignee = relationship("UserModel")
    comments = relationship(
        "CommentModel",
        back_populates="step",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CommentModel.created_at",
    )

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="uq_step_number"),
        Index("idx_approval_steps_status_role", "status", "required_role"),
    )


class CommentModel(Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_new_id)
    step_id = Column(
        String(36), ForeignKey("approval_steps.id", ondelete="CASCADE"), nullable=False
    )
    author_id = Column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    step = relationship("ApprovalStepModel", back_populates="comments")
    author = relationship("UserModel")


class PolicyRuleModel(Base):
    __tablename__ = "policy_rules"

    id = Column(String(36), primary_key=True, default=_new_id)
    pattern = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    suggestion = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, default="general")
    severity = Column(String(10), nullable=False, default="medium")
    is_active = Column(Boolean, nullable=False, default=True)
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ComplianceCheckModel(Base):
    __tablename__ = "compliance_checks"

    id = Column(String(36), primary_key=True, default=_new_id)
    input_text = Column(Text, nullable=False)
    is_compliant = Column(Boolean, nullable=False)
    issue_count = Column(Integer, nullable=False)
    suggested_rewrite = Column(Text, nullable=True)
    evaluator = Column(String(20), nullable=False, default="rules")
    created_at = Column(DateTime, default=utcnow)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database interface for CopyGuard.

    Constructed once by the process bootstrap and passed to the components
    that need it.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args = {}
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False

        in_memory = is_sqlite and (
            database_url in ("sqlite://", "sqlite:///:memory:")
        )
        engine_kwargs = {"connect_args": connect_args}
        if in_memory:
            engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def dispose(self):
        self.engine.dispose()

    # ==================== Users ====================

    def create_user(self, session: Session, **kwargs) -> UserModel:
        user = UserModel(**kwargs)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    def get_user(self, session: Session, user_id: str) -> Optional[UserModel]:
        return session.query(UserModel).filter(UserModel.id == user_id).first()

    def get_user_by_email(self, session: Session, email: str) -> Optional[UserModel]:
        return session.query(UserModel).filter(UserModel.email == email).first()

    def list_users(self, session: Session) -> List[UserModel]:
        return session.query(UserModel).order_by(UserModel.name).all()

    # ==================== Content ====================

    def get_content(self, session: Session, content_id: str) -> Optional[ContentModel]:
        return session.query(ContentModel).filter(ContentModel.id == content_id).first()

    def list_content(
        self,
        session: Session,
        status: Optional[str] = None,
        creator_id: Optional[str] = None,
    ) -> List[ContentModel]:
        query = session.query(ContentModel)
        if status:
            query = query.filter(ContentModel.status == status)
        if creator_id:
            query = query.filter(ContentModel.creator_id == creator_id)
        return query.order_by(desc(ContentModel.updated_at)).all()

    # ==================== Workflows ====================

    def get_current_workflow(
        self, session: Session, content_id: str
    ) -> Optional[WorkflowModel]:
        return (
            session.query(WorkflowModel)
            .filter(
                WorkflowModel.content_id == content_id,
                WorkflowModel.is_current.is_(True),
            )
            .first()
        )

    def get_workflows(self, session: Session, content_id: str) -> List[WorkflowModel]:
        """All workflows for a content item, newest first."""
        return (
            session.query(WorkflowModel)
            .filter(WorkflowModel.content_id == content_id)
            .order_by(desc(WorkflowModel.is_current), desc(WorkflowModel.created_at))
            .all()
        )

    def get_step(self, session: Session, step_id: str) -> Optional[ApprovalStepModel]:
        return (
            session.query(ApprovalStepModel)
            .filter(ApprovalStepModel.id == step_id)
            .first()
        )

    def get_pending_steps(
        self, session: Session, role: Optional[str] = None
    ) -> List[ApprovalStepModel]:
        query = (
            session.query(ApprovalStepModel)
            .join(WorkflowModel, ApprovalStepModel.workflow_id == WorkflowModel.id)
            .filter(
                ApprovalStepModel.status == StepStatus.IN_PROGRESS.value,
                WorkflowModel.status == WorkflowStatus.ACTIVE.value,
                WorkflowModel.is_current.is_(True),
            )
        )
        if role:
            query = query.filter(ApprovalStepModel.required_role == role)
        return query.order_by(ApprovalStepModel.created_at).all()

    # ==================== Comments ====================

    def create_comment(self, session: Session, **kwargs) -> CommentModel:
        comment = CommentModel(**kwargs)
        session.add(comment)
        session.commit()
        session.refresh(comment)
        return comment

    def get_comments(self, session: Session, step_id: str) -> List[CommentModel]:
        return (
            session.query(CommentModel)
            .filter(CommentModel.step_id == step_id)
            .order_by(CommentModel.created_at)
            .all()
        )

    # ==================== Policy rules ====================

    def create_rule(self, session: Session, **kwargs) -> PolicyRuleModel:
        if "sequence" not in kwargs:
            current = session.query(func.max(PolicyRuleModel.sequence)).scalar()
            kwargs["sequence"] = (current or 0) + 1
        rule = PolicyRuleModel(**kwargs)
        session.add(rule)
        session.commit()
        session.refresh(rule)
        return rule

    def get_rule(self, session: Session, rule_id: str) -> Optional[PolicyRuleModel]:
        return session.query(PolicyRuleModel).filter(PolicyRuleModel.id == rule_id).first()

    def list_rules(
        self, session: Session, active_only: bool = False
    ) -> List[PolicyRuleModel]:
        query = session.query(PolicyRuleModel)
        if active_only:
            query = query.filter(PolicyRuleModel.is_active.is_(True))
        return query.order_by(PolicyRuleModel.sequence).all()

    def update_rule(
        self, session: Session, rule_id: str, **changes
    ) -> Optional[PolicyRuleModel]:
        rule = self.get_rule(session, rule_id)
        if not rule:
            return None
        for key, value in changes.items():
            setattr(rule, key, value)
        rule.updated_at = utcnow()
        session.commit()
        session.refresh(rule)
        return rule

    def delete_rule(self, session: Session, rule_id: str) -> bool:
        rule = self.get_rule(session, rule_id)
        if not rule:
            return False
        session.delete(rule)
        session.commit()
        return True

    def count_rules(self, session: Session) -> int:
        return session.query(PolicyRuleModel).count()

    # ==================== Compliance audit log ====================

    def record_compliance_check(self, session: Session, **kwargs) -> ComplianceCheckModel:
        check = ComplianceCheckModel(**kwargs)
        session.add(check)
        session.commit()
        return check

    def compliance_counts(self, session: Session) -> tuple:
        """Return (total, compliant) counts from the audit log."""
        total = session.query(ComplianceCheckModel).count()
        compliant = (
            session.query(ComplianceCheckModel)
            .filter(ComplianceCheckModel.is_compliant.is_(True))
            .count()
        )
        return total, compliant
