"""
CopyGuard - Compliance gate and sequential approval workflow for marketing copy.

Checks copy against policy rules (or an LLM with retrieved policy context),
blocks submission on high-severity issues, and routes approved submissions
through a role-gated chain of approval steps.
"""

from .authorization import RoleAuthorizer
from .compliance import (
    ComplianceEvaluator,
    DatabaseAuditSink,
    GenerativeEvaluator,
    RuleMatchingEvaluator,
    fallback_result,
    match_rules,
)
from .database import Database
from .events import EventBroadcaster
from .exceptions import (
    AuditLogError,
    AuthorizationError,
    ComplianceBlockedError,
    CopyGuardError,
    EvaluatorUnavailableError,
    InvalidInputError,
    NotFoundError,
    RoleMismatchError,
    StateConflictError,
    StepTemplateError,
)
from .gate import GateDecision, can_submit, enforce
from .models import (
    DEFAULT_STEP_TEMPLATE,
    ComplianceIssue,
    ComplianceResult,
    ContentStatus,
    PolicyRule,
    RetrievedChunk,
    Role,
    Severity,
    StepStatus,
    StepTemplate,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowStatus,
)
from .retrieval import NullPolicyIndex, PolicyIndex, TfidfPolicyIndex, create_policy_index
from .rules import DEMO_RULES, PolicyRuleStore
from .workflow import WorkflowEngine, load_step_template, parse_step_template

__version__ = "0.1.0"

__all__ = [
    # Compliance
    "ComplianceEvaluator",
    "RuleMatchingEvaluator",
    "GenerativeEvaluator",
    "DatabaseAuditSink",
    "match_rules",
    "fallback_result",
    "GateDecision",
    "can_submit",
    "enforce",
    # Rules and retrieval
    "PolicyRuleStore",
    "DEMO_RULES",
    "PolicyIndex",
    "NullPolicyIndex",
    "TfidfPolicyIndex",
    "create_policy_index",
    # Workflow
    "WorkflowEngine",
    "RoleAuthorizer",
    "EventBroadcaster",
    "load_step_template",
    "parse_step_template",
    "Database",
    # Models
    "Severity",
    "Role",
    "ContentStatus",
    "WorkflowStatus",
    "StepStatus",
    "PolicyRule",
    "ComplianceIssue",
    "ComplianceResult",
    "StepTemplate",
    "DEFAULT_STEP_TEMPLATE",
    "RetrievedChunk",
    "WorkflowEvent",
    "WorkflowEventType",
    # Exceptions
    "CopyGuardError",
    "InvalidInputError",
    "NotFoundError",
    "StateConflictError",
    "AuthorizationError",
    "RoleMismatchError",
    "ComplianceBlockedError",
    "EvaluatorUnavailableError",
    "AuditLogError",
    "StepTemplateError",
]
