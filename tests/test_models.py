"""
Tests for CopyGuard value types.
"""

from datetime import datetime, timezone

from copyguard.models import (
    DEFAULT_STEP_TEMPLATE,
    ComplianceIssue,
    ComplianceResult,
    ContentStatus,
    Role,
    Severity,
    WorkflowEvent,
    WorkflowEventType,
)


def _issue(severity, text="claim"):
    return ComplianceIssue(
        matched_text=text,
        reason="Needs substantiation",
        suggestion="softer claim",
        severity=severity,
    )


class TestSeverity:
    def test_rank_orders_high_first(self):
        ordered = sorted([Severity.LOW, Severity.HIGH, Severity.MEDIUM], key=lambda s: s.rank)
        assert ordered == [Severity.HIGH, Severity.MEDIUM, Severity.LOW]

    def test_values(self):
        assert Severity("high") is Severity.HIGH
        assert Severity.MEDIUM.value == "medium"


class TestComplianceResult:
    def test_high_severity_issues(self):
        result = ComplianceResult(
            is_compliant=False,
            issues=(_issue(Severity.HIGH, "a"), _issue(Severity.LOW, "b")),
        )
        assert [i.matched_text for i in result.high_severity_issues] == ["a"]
        assert result.highest_severity == Severity.HIGH

    def test_highest_severity_none_without_issues(self):
        result = ComplianceResult(is_compliant=True)
        assert result.highest_severity is None
        assert result.high_severity_issues == []

    def test_dict_round_trip_preserves_verdict(self):
        checked_at = datetime(2026, 1, 17, 3, 10, tzinfo=timezone.utc)
        result = ComplianceResult(
            is_compliant=False,
            issues=(_issue(Severity.MEDIUM),),
            suggested_rewrite="softer claim",
            checked_at=checked_at,
            evaluator="rules",
        )

        data = result.to_dict()
        assert data["issues"][0]["severity"] == "medium"
        assert data["checked_at"] == checked_at.isoformat()

        restored = ComplianceResult.from_dict(data)
        assert restored == result

    def test_same_verdict_ignores_timestamp(self):
        first = ComplianceResult(
            is_compliant=True,
            suggested_rewrite="x",
            checked_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        second = ComplianceResult(is_compliant=True, suggested_rewrite="x")
        assert first != second
        assert first.same_verdict(second)

    def test_same_verdict_detects_different_issues(self):
        first = ComplianceResult(is_compliant=False, issues=(_issue(Severity.HIGH),))
        second = ComplianceResult(is_compliant=False, issues=(_issue(Severity.LOW),))
        assert not first.same_verdict(second)


class TestStepTemplate:
    def test_default_chain(self):
        assert [s.required_role for s in DEFAULT_STEP_TEMPLATE] == [
            Role.MANAGER,
            Role.LEGAL,
            Role.EXECUTIVE,
        ]
        assert [s.step_number for s in DEFAULT_STEP_TEMPLATE] == [1, 2, 3]


class TestWorkflowEvent:
    def test_to_dict(self):
        event = WorkflowEvent(
            WorkflowEventType.STEP_APPROVED,
            content_id="content-1",
            status=ContentStatus.IN_REVIEW.value,
            step_id="step-1",
            payload={"step_number": 1},
        )
        data = event.to_dict()
        assert data["type"] == "step_approved"
        assert data["content_id"] == "content-1"
        assert data["status"] == "IN_REVIEW"
        assert data["payload"] == {"step_number": 1}
        assert "occurred_at" in data
