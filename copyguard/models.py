"""
CopyGuard - Data models for compliance verdicts and the approval workflow.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """Severity of a policy issue. Only HIGH blocks submission."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Sort key: HIGH first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


class Role(str, Enum):
    """A user's single role. Matched exactly against a step's required role."""

    DESIGNER = "DESIGNER"
    MANAGER = "MANAGER"
    LEGAL = "LEGAL"
    EXECUTIVE = "EXECUTIVE"
    ADMIN = "ADMIN"


class ContentStatus(str, Enum):
    """Lifecycle of a content item."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    IN_REVIEW = "IN_REVIEW"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"


EDITABLE_STATUSES = frozenset({ContentStatus.DRAFT, ContentStatus.CHANGES_REQUESTED})

SUBMITTABLE_STATUSES = frozenset(
    {
        ContentStatus.DRAFT,
        ContentStatus.CHANGES_REQUESTED,
        ContentStatus.PENDING_REVIEW,
        ContentStatus.IN_REVIEW,
    }
)


class WorkflowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    """Status of an approval step. APPROVED and REJECTED are terminal."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class WorkflowEventType(str, Enum):
    """Transitions announced to change listeners."""

    CONTENT_CREATED = "content_created"
    CONTENT_UPDATED = "content_updated"
    CONTENT_SUBMITTED = "content_submitted"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    WORKFLOW_COMPLETED = "workflow_completed"
    CONTENT_PUBLISHED = "content_published"


@dataclass(frozen=True)
class PolicyRule:
    """A pattern/severity/suggestion tuple used to flag disallowed phrasing."""

    id: str
    pattern: str
    reason: str
    suggestion: str
    category: str = "general"
    severity: Severity = Severity.MEDIUM
    active: bool = True
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "category": self.category,
            "severity": self.severity.value,
            "active": self.active,
            "sequence": self.sequence,
        }


@dataclass(frozen=True)
class ComplianceIssue:
    """A single policy finding inside a compliance verdict."""

    matched_text: str
    reason: str
    suggestion: str
    severity: Severity
    category: str = "general"
    rule_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched_text": self.matched_text,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "severity": self.severity.value,
            "category": self.category,
            "rule_id": self.rule_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComplianceIssue":
        return cls(
            matched_text=data.get("matched_text", ""),
            reason=data.get("reason", ""),
            suggestion=data.get("suggestion", ""),
            severity=Severity(data.get("severity", "medium")),
            category=data.get("category", "general"),
            rule_id=data.get("rule_id"),
        )


@dataclass(frozen=True)
class ComplianceResult:
    """
    Output of one evaluation call. Never mutated; content items keep the
    snapshot that gated their submission.

    ``evaluator`` tags which strategy produced the verdict: ``rules``,
    ``generative`` or ``fallback``.
    """

    is_compliant: bool
    issues: tuple[ComplianceIssue, ...] = ()
    suggested_rewrite: str = ""
    checked_at: datetime = field(default_factory=utcnow)
    evaluator: str = "rules"

    @property
    def high_severity_issues(self) -> list[ComplianceIssue]:
        return [i for i in self.issues if i.severity == Severity.HIGH]

    @property
    def highest_severity(self) -> Optional[Severity]:
        if not self.issues:
            return None
        return min((i.severity for i in self.issues), key=lambda s: s.rank)

    def same_verdict(self, other: "ComplianceResult") -> bool:
        """Compare everything except the timestamp."""
        return (
            self.is_compliant == other.is_compliant
            and self.issues == other.issues
            and self.suggested_rewrite == other.suggested_rewrite
            and self.evaluator == other.evaluator
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_compliant": self.is_compliant,
            "issues": [i.to_dict() for i in self.issues],
            "suggested_rewrite": self.suggested_rewrite,
            "checked_at": self.checked_at.isoformat(),
            "evaluator": self.evaluator,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComplianceResult":
        checked_at = data.get("checked_at")
        return cls(
            is_compliant=bool(data.get("is_compliant", False)),
            issues=tuple(ComplianceIssue.from_dict(i) for i in data.get("issues", [])),
            suggested_rewrite=data.get("suggested_rewrite", ""),
            checked_at=datetime.fromisoformat(checked_at) if checked_at else utcnow(),
            evaluator=data.get("evaluator", "rules"),
        )


@dataclass(frozen=True)
class StepTemplate:
    """One entry of the ordered step template a workflow is built from."""

    step_number: int
    step_name: str
    required_role: Role


DEFAULT_STEP_TEMPLATE: tuple[StepTemplate, ...] = (
    StepTemplate(1, "Manager Review", Role.MANAGER),
    StepTemplate(2, "Legal Review", Role.LEGAL),
    StepTemplate(3, "Executive Approval", Role.EXECUTIVE),
)


@dataclass(frozen=True)
class RetrievedChunk:
    """A policy text fragment returned by a policy index search."""

    text: str
    score: float
    doc_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "score": self.score, "doc_id": self.doc_id}


@dataclass
class WorkflowEvent:
    """A committed workflow transition, delivered to change listeners."""

    event_type: WorkflowEventType
    content_id: str
    status: str
    workflow_id: Optional[str] = None
    step_id: Optional[str] = None
    actor: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type.value,
            "content_id": self.content_id,
            "status": self.status,
            "workflow_id": self.workflow_id,
            "step_id": self.step_id,
            "actor": self.actor,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }
