"""
CopyGuard - Compliance gate.

A pure decision over a stored ``ComplianceResult``: submission is blocked if
and only if the verdict carries at least one HIGH severity issue.
"""

from dataclasses import dataclass, field

from .exceptions import ComplianceBlockedError
from .models import ComplianceIssue, ComplianceResult


@dataclass(frozen=True)
class GateDecision:
    """Outcome of :func:`can_submit`. ``blocking_issues`` is empty when allowed."""

    allowed: bool
    blocking_issues: tuple[ComplianceIssue, ...] = field(default_factory=tuple)

    def raise_if_blocked(self) -> None:
        if not self.allowed:
            raise ComplianceBlockedError(list(self.blocking_issues))


def can_submit(result: ComplianceResult) -> GateDecision:
    high = tuple(result.high_severity_issues)
    if high:
        return GateDecision(allowed=False, blocking_issues=high)
    return GateDecision(allowed=True)


def enforce(result: ComplianceResult) -> None:
    """Raise ``ComplianceBlockedError`` when ``result`` may not be submitted."""
    can_submit(result).raise_if_blocked()
