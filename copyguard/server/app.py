"""
FastAPI application for the CopyGuard server.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..compliance import (
    ComplianceEvaluator,
    DatabaseAuditSink,
    GenerativeEvaluator,
    compliance_stats,
)
from ..database import Database
from ..events import EventBroadcaster
from ..exceptions import CopyGuardError
from ..llm import LLMComplianceBackend, LLMConfig
from ..models import DEFAULT_STEP_TEMPLATE, Severity
from ..retrieval import PolicyIndex, create_policy_index
from ..rules import PolicyRuleStore
from ..validation import validate_choice, validate_required, validate_text
from ..workflow import WorkflowEngine, load_step_template
from .config import ServerConfig

logger = logging.getLogger("copyguard.server")


class ComplianceCheckRequest(BaseModel):
    text: Optional[str] = None
    context: Optional[str] = None


class IssueResponse(BaseModel):
    matched_text: str
    reason: str
    suggestion: str
    severity: str
    category: str
    rule_id: Optional[str] = None


class ComplianceResultResponse(BaseModel):
    is_compliant: bool
    issues: List[IssueResponse] = Field(default_factory=list)
    suggested_rewrite: str
    checked_at: datetime
    evaluator: str


class RuleCreate(BaseModel):
    pattern: Optional[str] = None
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    category: str = "general"
    severity: str = "medium"


class RuleUpdate(BaseModel):
    pattern: Optional[str] = None
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    active: Optional[bool] = Field(None, alias="is_active")

    class Config:
        populate_by_name = True


class RuleResponse(BaseModel):
    id: str
    pattern: str
    reason: str
    suggestion: str
    category: str
    severity: str
    active: bool
    sequence: int


class UserCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "DESIGNER"


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    avatar: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CommentCreate(BaseModel):
    author_id: Optional[str] = None
    text: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    step_id: str
    author_id: str
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


class StepResponse(BaseModel):
    id: str
    workflow_id: str
    step_number: int
    step_name: str
    required_role: str
    assignee_id: Optional[str] = None
    status: str
    feedback: Optional[str] = None
    decided_at: Optional[datetime] = None
    comments: List[CommentResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class WorkflowResponse(BaseModel):
    id: str
    content_id: str
    current_step: int
    status: str
    is_current: bool
    created_at: datetime
    steps: List[StepResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ContentCreate(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    creator_id: Optional[str] = None
    description: Optional[str] = None


class ContentUpdate(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    description: Optional[str] = None
    acting_user_id: Optional[str] = None


class ContentResponse(BaseModel):
    id: str
    title: str
    text: str
    description: Optional[str] = None
    status: str
    version: int
    compliance_result: Optional[Dict[str, Any]] = None
    compliance_version: Optional[int] = None
    creator_id: str
    created_at: datetime
    updated_at: datetime
    workflow: Optional[WorkflowResponse] = None

    class Config:
        from_attributes = True


class ActorRequest(BaseModel):
    acting_user_id: Optional[str] = None


class RejectRequest(BaseModel):
    feedback: Optional[str] = None
    acting_user_id: Optional[str] = None


class StepDecisionResponse(BaseModel):
    step: StepResponse
    workflow: WorkflowResponse
    content: ContentResponse


class PendingStepResponse(BaseModel):
    step: StepResponse
    content: ContentResponse


class DocumentCreate(BaseModel):
    doc_id: Optional[str] = None
    text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _decision_response(step) -> StepDecisionResponse:
    workflow = step.workflow
    return StepDecisionResponse(
        step=StepResponse.model_validate(step),
        workflow=WorkflowResponse.model_validate(workflow),
        content=ContentResponse.model_validate(workflow.content),
    )


def create_app(
    config: Optional[ServerConfig] = None,
    *,
    evaluator: Optional[ComplianceEvaluator] = None,
    policy_index: Optional[PolicyIndex] = None,
    llm_backend: Any = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``evaluator``, ``policy_index`` and ``llm_backend`` replace the pieces
    that would otherwise be built from ``config``.
    """
    if config is None:
        config = ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(config.database_url)
        db.create_tables()

        rule_store = PolicyRuleStore(db)
        if config.seed_demo_rules:
            rule_store.seed_demo_rules()

        index = policy_index or create_policy_index(config.retrieval_backend)
        backend = llm_backend
        if backend is None and config.llm_model:
            backend = LLMComplianceBackend(
                LLMConfig(
                    model=config.llm_model,
                    api_key=config.llm_api_key,
                    timeout_seconds=config.evaluator_timeout_seconds,
                )
            )
        active_evaluator = evaluator or GenerativeEvaluator(
            rule_store,
            backend=backend,
            policy_index=index,
            audit_sink=DatabaseAuditSink(db),
            top_k=config.retrieval_top_k,
            timeout_seconds=config.evaluator_timeout_seconds,
            fallback_severity=validate_choice(
                config.fallback_severity.lower(), Severity, "fallback_severity"
            ),
        )

        step_template = DEFAULT_STEP_TEMPLATE
        if config.step_template_path:
            step_template = load_step_template(config.step_template_path)

        engine = WorkflowEngine(
            db,
            active_evaluator,
            step_template=step_template,
            require_identity=config.require_identity,
            retain_history=config.retain_workflow_history,
        )
        broadcaster = EventBroadcaster()
        engine.subscribe(broadcaster)

        app.state.config = config
        app.state.db = db
        app.state.rule_store = rule_store
        app.state.policy_index = index
        app.state.evaluator = active_evaluator
        app.state.engine = engine
        app.state.broadcaster = broadcaster
        logger.info(
            f"CopyGuard ready (retrieval={index.name}, "
            f"generative={'on' if backend is not None else 'off'}, "
            f"steps={len(step_template)})"
        )
        yield
        active_evaluator.close()
        db.dispose()

    app = FastAPI(
        title="CopyGuard Server",
        description="Compliance gate and approval workflow for marketing copy",
        version="0.1.0",
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CopyGuardError)
    async def copyguard_error_handler(request: Request, exc: CopyGuardError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_type} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    def get_db() -> Database:
        return app.state.db

    def get_engine() -> WorkflowEngine:
        return app.state.engine

    def get_rule_store() -> PolicyRuleStore:
        return app.state.rule_store

    def get_policy_index() -> PolicyIndex:
        return app.state.policy_index

    def validate_api_key(x_api_key: str = Header(None)) -> str:
        if x_api_key is None or x_api_key not in app.state.config.api_keys:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")
        return x_api_key

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "copyguard"}

    # ==================== Compliance ====================

    @app.post("/api/v1/compliance/check", response_model=ComplianceResultResponse)
    def check_compliance(
        body: ComplianceCheckRequest,
        api_key: str = Depends(validate_api_key),
    ):
        result = app.state.evaluator.evaluate(body.text, body.context)
        return result.to_dict()

    @app.get("/api/v1/compliance/stats")
    async def get_compliance_stats(
        db: Database = Depends(get_db),
        api_key: str = Depends(validate_api_key),
    ):
        return compliance_stats(db)

    # ==================== Rules ====================

    @app.get("/api/v1/rules", response_model=List[RuleResponse])
    async def list_rules(
        store: PolicyRuleStore = Depends(get_rule_store),
        api_key: str = Depends(validate_api_key),
    ):
        return [rule.to_dict() for rule in store.list_rules()]

    @app.post("/api/v1/rules", response_model=RuleResponse, status_code=201)
    async def create_rule(
        body: RuleCreate,
        store: PolicyRuleStore = Depends(get_rule_store),
        api_key: str = Depends(validate_api_key),
    ):
        rule = store.create_rule(
            pattern=body.pattern,
            reason=body.reason,
            suggestion=body.suggestion,
            category=body.category,
            severity=body.severity.lower(),
        )
        return rule.to_dict()

    @app.put("/api/v1/rules/{rule_id}", response_model=RuleResponse)
    async def update_rule(
        rule_id: str,
        body: RuleUpdate,
        store: PolicyRuleStore = Depends(get_rule_store),
        api_key: str = Depends(validate_api_key),
    ):
        rule = store.update_rule(
            rule_id,
            pattern=body.pattern,
            reason=body.reason,
            suggestion=body.suggestion,
            category=body.category,
            severity=body.severity.lower() if body.severity else None,
            active=body.active,
        )
        return rule.to_dict()

    @app.post("/api/v1/rules/{rule_id}/deactivate", response_model=RuleResponse)
    async def deactivate_rule(
        rule_id: str,
        store: PolicyRuleStore = Depends(get_rule_store),
        api_key: str = Depends(validate_api_key),
    ):
        return store.deactivate_rule(rule_id).to_dict()

    @app.delete("/api/v1/rules/{rule_id}", status_code=204)
    async def delete_rule(
        rule_id: str,
        store: PolicyRuleStore = Depends(get_rule_store),
        api_key: str = Depends(validate_api_key),
    ):
        store.delete_rule(rule_id)

    # ==================== Users ====================

    @app.get("/api/v1/users", response_model=List[UserResponse])
    async def list_users(
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return [UserResponse.model_validate(u) for u in engine.list_users(session)]
        finally:
            session.close()

    @app.post("/api/v1/users", response_model=UserResponse, status_code=201)
    async def create_user(
        body: UserCreate,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            user = engine.create_user(
                session, name=body.name, email=body.email, role=body.role.upper()
            )
            return UserResponse.model_validate(user)
        finally:
            session.close()

    @app.get("/api/v1/users/{user_id}", response_model=UserResponse)
    async def get_user(
        user_id: str,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return UserResponse.model_validate(engine.get_user(session, user_id))
        finally:
            session.close()

    # ==================== Content ====================

    @app.get("/api/v1/content", response_model=List[ContentResponse])
    async def list_content(
        status: Optional[str] = Query(None),
        creator_id: Optional[str] = Query(None),
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            items = engine.list_content(
                session,
                status=status.upper() if status else None,
                creator_id=creator_id,
            )
            return [ContentResponse.model_validate(c) for c in items]
        finally:
            session.close()

    @app.post("/api/v1/content", response_model=ContentResponse, status_code=201)
    def create_content(
        body: ContentCreate,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            content = engine.create_content(
                session,
                title=body.title,
                text=body.text,
                creator_id=body.creator_id,
                description=body.description,
            )
            return ContentResponse.model_validate(content)
        finally:
            session.close()

    @app.get("/api/v1/content/{content_id}", response_model=ContentResponse)
    async def get_content(
        content_id: str,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return ContentResponse.model_validate(engine.get_content(session, content_id))
        finally:
            session.close()

    @app.put("/api/v1/content/{content_id}", response_model=ContentResponse)
    def update_content(
        content_id: str,
        body: ContentUpdate,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            content = engine.edit_content(
                session,
                content_id,
                title=body.title,
                text=body.text,
                description=body.description,
                acting_user_id=body.acting_user_id,
            )
            return ContentResponse.model_validate(content)
        finally:
            session.close()

    @app.post("/api/v1/content/{content_id}/submit", response_model=WorkflowResponse)
    def submit_content(
        content_id: str,
        body: Optional[ActorRequest] = None,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            workflow = engine.submit(
                session, content_id, acting_user_id=body.acting_user_id if body else None
            )
            return WorkflowResponse.model_validate(workflow)
        finally:
            session.close()

    @app.post("/api/v1/content/{content_id}/publish", response_model=ContentResponse)
    def publish_content(
        content_id: str,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return ContentResponse.model_validate(engine.publish(session, content_id))
        finally:
            session.close()

    @app.post("/api/v1/content/{content_id}/recheck", response_model=ContentResponse)
    def recheck_content(
        content_id: str,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return ContentResponse.model_validate(engine.recheck_content(session, content_id))
        finally:
            session.close()

    @app.get("/api/v1/content/{content_id}/workflows", response_model=List[WorkflowResponse])
    async def get_workflow_history(
        content_id: str,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return [
                WorkflowResponse.model_validate(wf)
                for wf in engine.workflow_history(session, content_id)
            ]
        finally:
            session.close()

    # ==================== Approval steps ====================

    @app.get("/api/v1/steps/pending", response_model=List[PendingStepResponse])
    async def list_pending_steps(
        role: Optional[str] = Query(None),
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            return [
                PendingStepResponse(
                    step=StepResponse.model_validate(step),
                    content=ContentResponse.model_validate(step.workflow.content),
                )
                for step in engine.pending_steps(session, role)
            ]
        finally:
            session.close()

    @app.post("/api/v1/steps/{step_id}/approve", response_model=StepDecisionResponse)
    def approve_step(
        step_id: str,
        body: Optional[ActorRequest] = None,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            step = engine.approve(
                session, step_id, acting_user_id=body.acting_user_id if body else None
            )
            return _decision_response(step)
        finally:
            session.close()

    @app.post("/api/v1/steps/{step_id}/reject", response_model=StepDecisionResponse)
    def reject_step(
        step_id: str,
        body: RejectRequest,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            step = engine.reject(
                session, step_id, body.feedback, acting_user_id=body.acting_user_id
            )
            return _decision_response(step)
        finally:
            session.close()

    @app.post(
        "/api/v1/steps/{step_id}/comments",
        response_model=CommentResponse,
        status_code=201,
    )
    async def add_comment(
        step_id: str,
        body: CommentCreate,
        db: Database = Depends(get_db),
        engine: WorkflowEngine = Depends(get_engine),
        api_key: str = Depends(validate_api_key),
    ):
        session = db.get_session()
        try:
            comment = engine.add_comment(
                session, step_id, author_id=body.author_id, text=body.text
            )
            return CommentResponse.model_validate(comment)
        finally:
            session.close()

    # ==================== Policy documents ====================

    @app.get("/api/v1/documents")
    async def document_stats(
        index: PolicyIndex = Depends(get_policy_index),
        api_key: str = Depends(validate_api_key),
    ):
        return index.stats()

    @app.post("/api/v1/documents", status_code=201)
    def index_document(
        body: DocumentCreate,
        index: PolicyIndex = Depends(get_policy_index),
        api_key: str = Depends(validate_api_key),
    ):
        validate_text(body.text)
        doc_id = body.doc_id or str(uuid4())
        chunks = index.index(doc_id, body.text, body.metadata)
        return {"doc_id": doc_id, "chunks": chunks, "provider": index.name}

    @app.get("/api/v1/documents/search")
    def search_documents(
        q: Optional[str] = Query(None),
        top_k: int = Query(5, ge=1, le=50),
        index: PolicyIndex = Depends(get_policy_index),
        api_key: str = Depends(validate_api_key),
    ):
        validate_required(q, "q")
        return {"query": q, "results": [c.to_dict() for c in index.search(q, top_k)]}

    @app.delete("/api/v1/documents/{doc_id}")
    def delete_document(
        doc_id: str,
        index: PolicyIndex = Depends(get_policy_index),
        api_key: str = Depends(validate_api_key),
    ):
        return {"doc_id": doc_id, "deleted": index.delete(doc_id)}

    # ==================== Events ====================

    @app.get("/api/v1/events")
    async def subscribe_events(
        request: Request,
        content_id: Optional[str] = Query(None),
        api_key: str = Depends(validate_api_key),
    ):
        """SSE stream of workflow transitions."""
        broadcaster: EventBroadcaster = app.state.broadcaster
        queue = broadcaster.subscribe(content_id)

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=30.0)
                        yield {"event": event["type"], "data": json.dumps(event)}
                    except asyncio.TimeoutError:
                        yield {"event": "ping", "data": ""}
            finally:
                broadcaster.unsubscribe(queue)

        return EventSourceResponse(event_generator())

    return app


class CopyGuardServer:
    """High-level server class for running CopyGuard."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        api_keys: Optional[set] = None,
        **kwargs,
    ):
        self.config = ServerConfig(
            host=host,
            port=port,
            database_url=database_url,
            api_keys=api_keys or ServerConfig().api_keys,
            **kwargs,
        )
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()
