"""
CopyGuard - Compliance evaluation.

Two interchangeable strategies sit behind ``ComplianceEvaluator.evaluate``:

- ``RuleMatchingEvaluator``: deterministic, case-insensitive matching of the
  active policy rules with a generated rewrite.
- ``GenerativeEvaluator``: when policy context is available (passed in, or
  retrieved from a ``PolicyIndex``) the verdict comes from an LLM backend.
  Backend or retrieval failure yields a conservative non-compliant verdict,
  never a pass.

Every evaluation is recorded to an optional audit sink. Audit failures are
logged and never change the returned verdict.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Optional, Protocol, Sequence

from .database import Database
from .exceptions import AuditLogError, EvaluatorUnavailableError
from .models import ComplianceIssue, ComplianceResult, PolicyRule, Severity
from .retrieval import PolicyIndex, format_context
from .validation import validate_text

logger = logging.getLogger("copyguard.compliance")

FALLBACK_REASON = "Could not verify automatically; manual review required."
FALLBACK_SUGGESTION = "Request a manual compliance review before publishing."


class RuleSource(Protocol):
    def active_rules(self) -> Sequence[PolicyRule]: ...


class AuditSink(Protocol):
    def record(self, text: str, result: ComplianceResult) -> None: ...


class DatabaseAuditSink:
    """Appends one ``compliance_checks`` row per evaluation."""

    def __init__(self, db: Database):
        self._db = db

    def record(self, text: str, result: ComplianceResult) -> None:
        session = self._db.get_session()
        try:
            self._db.record_compliance_check(
                session,
                input_text=text,
                is_compliant=result.is_compliant,
                issue_count=len(result.issues),
                suggested_rewrite=result.suggested_rewrite,
                evaluator=result.evaluator,
            )
        except Exception as e:
            session.rollback()
            raise AuditLogError(f"Could not log compliance check: {e}")
        finally:
            session.close()


def compliance_stats(db: Database) -> dict[str, Any]:
    """Totals over the compliance audit log."""
    session = db.get_session()
    try:
        total, compliant = db.compliance_counts(session)
    finally:
        session.close()
    return {
        "total_checks": total,
        "compliant_count": compliant,
        "non_compliant_count": total - compliant,
        "compliance_rate": f"{compliant / total * 100:.1f}%" if total else "N/A",
    }


def fallback_result(text: str, severity: Severity = Severity.HIGH) -> ComplianceResult:
    """The verdict used when automatic evaluation is unavailable."""
    return ComplianceResult(
        is_compliant=False,
        issues=(
            ComplianceIssue(
                matched_text="",
                reason=FALLBACK_REASON,
                suggestion=FALLBACK_SUGGESTION,
                severity=severity,
                category="system",
            ),
        ),
        suggested_rewrite=text,
        evaluator="fallback",
    )


# A replacement can rebuild its own pattern from the text around it; the
# rewrite is repeated for rebuilt patterns at most this many times.
MAX_REWRITE_ROUNDS = 16


def _scanner(patterns) -> "re.Pattern[str]":
    return re.compile(
        "|".join(re.escape(p) for p in sorted(patterns, key=len, reverse=True)),
        re.IGNORECASE,
    )


def _occurrences(pattern: str, text: str) -> list[tuple[int, int]]:
    """Spans of every occurrence of ``pattern`` in ``text``, overlapping ones included."""
    finder = re.compile(f"(?=({re.escape(pattern)}))", re.IGNORECASE)
    return [(m.start(1), m.end(1)) for m in finder.finditer(text)]


def match_rules(text: str, rules: Sequence[PolicyRule]) -> ComplianceResult:
    """
    Match ``rules`` against ``text``.

    Each pattern is searched for on its own, case-insensitively. A rule is
    reported unless every occurrence of its pattern lies inside an occurrence
    of a longer pattern that is also present (``waterproof`` inside
    ``100% waterproof``), so a partial overlap never hides a rule.

    The rewrite combines all patterns into one alternation ordered longest
    first and replaces matches in a single left-to-right pass, so an inserted
    suggestion is not rewritten by another rule. If a replacement rebuilds a
    reported pattern from the surrounding text (``xy`` -> ``x`` turns
    ``xxyy`` into ``xxy``), those patterns are rewritten again.

    Issues are ordered by severity (high first), ties by rule order.
    """
    by_pattern: dict[str, list[tuple[int, PolicyRule]]] = {}
    for order, rule in enumerate(rules):
        pattern = rule.pattern.strip()
        if pattern:
            by_pattern.setdefault(pattern.lower(), []).append((order, rule))

    if not by_pattern:
        return ComplianceResult(is_compliant=True, issues=(), suggested_rewrite=text)

    found: dict[str, list[tuple[int, int]]] = {}
    for pattern in by_pattern:
        spans = _occurrences(pattern, text)
        if spans:
            found[pattern] = spans

    reported: dict[str, str] = {}
    for pattern, spans in found.items():
        longer = [
            span for other, other_spans in found.items()
            if len(other) > len(pattern) for span in other_spans
        ]
        uncovered = any(
            not any(a <= start and end <= b for a, b in longer)
            for start, end in spans
        )
        if uncovered:
            start, end = spans[0]
            reported[pattern] = text[start:end]

    matched: list[tuple[int, PolicyRule, str]] = []
    for pattern, matched_text in reported.items():
        for order, rule in by_pattern[pattern]:
            matched.append((order, rule, matched_text))
    matched.sort(key=lambda item: (item[1].severity.rank, item[0]))

    issues = tuple(
        ComplianceIssue(
            matched_text=matched_text,
            reason=rule.reason,
            suggestion=rule.suggestion,
            severity=rule.severity,
            category=rule.category,
            rule_id=rule.id,
        )
        for _, rule, matched_text in matched
    )

    # First rule (in rule order) owns the replacement for a shared pattern
    replacements = {p: entries[0][1].suggestion for p, entries in by_pattern.items()}

    def replace(m: "re.Match[str]") -> str:
        return replacements.get(m.group(0).lower(), m.group(0))

    rewrite = _scanner(by_pattern).sub(replace, text)
    for _ in range(MAX_REWRITE_ROUNDS):
        rebuilt = [p for p in reported if _occurrences(p, rewrite)]
        if not rebuilt:
            break
        rewrite = _scanner(rebuilt).sub(replace, rewrite)
    else:
        if any(_occurrences(p, rewrite) for p in reported):
            logger.warning("Rewrite still contains a flagged pattern after repeated passes")

    return ComplianceResult(
        is_compliant=not issues,
        issues=issues,
        suggested_rewrite=rewrite,
    )


class ComplianceEvaluator:
    """Base class: validates input, evaluates, records to the audit sink."""

    name = "base"

    def __init__(self, audit_sink: Optional[AuditSink] = None):
        self.audit_sink = audit_sink

    def evaluate(self, text: str, context: Optional[str] = None) -> ComplianceResult:
        validate_text(text)
        result = self._evaluate(text, context)
        logger.info(
            f"Compliance check ({result.evaluator}): "
            f"{'compliant' if result.is_compliant else 'non-compliant'}, "
            f"{len(result.issues)} issue(s)"
        )
        self._record(text, result)
        return result

    def _evaluate(self, text: str, context: Optional[str]) -> ComplianceResult:
        raise NotImplementedError

    def _record(self, text: str, result: ComplianceResult) -> None:
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.record(text, result)
        except Exception as e:
            logger.warning(f"Compliance audit log failed: {e}")

    def close(self) -> None:
        pass


class RuleMatchingEvaluator(ComplianceEvaluator):
    """Deterministic evaluation against the active policy rules."""

    name = "rules"

    def __init__(self, rule_source: RuleSource, audit_sink: Optional[AuditSink] = None):
        super().__init__(audit_sink)
        self.rule_source = rule_source

    def _evaluate(self, text: str, context: Optional[str]) -> ComplianceResult:
        return match_rules(text, self.rule_source.active_rules())


class GenerativeEvaluator(ComplianceEvaluator):
    """Context-augmented evaluation through an LLM backend.

    ``context`` passed to :meth:`evaluate` is used as-is; otherwise the top
    ``top_k`` chunks from ``policy_index`` are retrieved for the text. With no
    context, or no backend, the rule-matching strategy decides.

    Retrieval and the backend call each run on a worker thread bounded by
    ``timeout_seconds``. Failure or timeout of either produces
    :func:`fallback_result`.

    Cancellation after a timeout is best-effort: a call that is already
    running keeps its worker until the provider returns, and the timeout
    also covers time spent queued for a worker. Size ``max_workers`` for the
    number of concurrent evaluations plus the hung calls to tolerate.
    """

    name = "generative"

    def __init__(
        self,
        rule_source: RuleSource,
        backend: Any = None,
        policy_index: Optional[PolicyIndex] = None,
        audit_sink: Optional[AuditSink] = None,
        top_k: int = 5,
        timeout_seconds: float = 15.0,
        fallback_severity: Severity = Severity.HIGH,
        max_workers: int = 4,
    ):
        super().__init__(audit_sink)
        self.rule_source = rule_source
        self.backend = backend
        self.policy_index = policy_index
        self.top_k = top_k
        self.timeout_seconds = timeout_seconds
        self.fallback_severity = fallback_severity
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="copyguard-eval"
        )

    def _run_bounded(self, fn, *args):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            # No effect once the call has started
            future.cancel()
            raise EvaluatorUnavailableError(
                f"Timed out after {self.timeout_seconds}s"
            )

    def _retrieve_context(self, text: str) -> str:
        if self.policy_index is None:
            return ""
        chunks = self._run_bounded(self.policy_index.search, text, self.top_k)
        return format_context(chunks)

    def _evaluate(self, text: str, context: Optional[str]) -> ComplianceResult:
        rules = self.rule_source.active_rules()
        try:
            if context is None and self.backend is not None:
                context = self._retrieve_context(text)
            if not context or not context.strip() or self.backend is None:
                return match_rules(text, rules)
            return self._run_bounded(self.backend.analyze, text, context, rules)
        except EvaluatorUnavailableError as e:
            logger.warning(f"Compliance backend unavailable, using fallback verdict: {e}")
        except Exception as e:
            logger.warning(
                f"Compliance evaluation failed, using fallback verdict: "
                f"{type(e).__name__}: {e}"
            )
        return fallback_result(text, self.fallback_severity)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
