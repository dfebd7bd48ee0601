"""
CopyGuard - Policy rule store.

Holds the policy rules the rule-matching evaluator checks text against.
Active rules are served from an in-process cache; every mutation commits and
then invalidates the cache before returning, so the next evaluation sees it.
"""

import logging
import threading
from typing import Any, Optional

from .database import Database, PolicyRuleModel
from .exceptions import NotFoundError
from .models import PolicyRule, Severity
from .validation import validate_choice, validate_required, validate_rule

logger = logging.getLogger("copyguard.rules")


DEMO_RULES: list[dict[str, Any]] = [
    {
        "pattern": "100% waterproof",
        "reason": "Product is only water-resistant (IP67), not fully waterproof. "
        "This claim could result in legal liability.",
        "suggestion": "water-resistant (IP67 rated)",
        "category": "legal",
        "severity": "high",
    },
    {
        "pattern": "waterproof",
        "reason": "Avoid unqualified 'waterproof' claims; always specify the rating "
        "to prevent misleading customers.",
        "suggestion": "water-resistant",
        "category": "legal",
        "severity": "medium",
    },
    {
        "pattern": "guaranteed",
        "reason": "'Guaranteed' implies a legal warranty. Verify with Legal team before using.",
        "suggestion": "designed to",
        "category": "legal",
        "severity": "medium",
    },
    {
        "pattern": "best in class",
        "reason": "Superlative claims require substantiation with data. "
        "Could be challenged by competitors.",
        "suggestion": "industry-leading",
        "category": "brand",
        "severity": "low",
    },
    {
        "pattern": "never fail",
        "reason": "Absolute reliability claims are legally risky and impossible to guarantee.",
        "suggestion": "highly reliable",
        "category": "legal",
        "severity": "high",
    },
    {
        "pattern": "cures",
        "reason": "Medical cure claims require FDA approval. "
        "Unapproved claims can result in regulatory action.",
        "suggestion": "may help with",
        "category": "legal",
        "severity": "high",
    },
    {
        "pattern": "safe for all ages",
        "reason": "Age safety claims need product-specific verification and testing documentation.",
        "suggestion": "suitable for most users",
        "category": "safety",
        "severity": "medium",
    },
    {
        "pattern": "unlimited",
        "reason": "'Unlimited' often has hidden restrictions. Be specific about actual limits.",
        "suggestion": "extensive",
        "category": "legal",
        "severity": "medium",
    },
    {
        "pattern": "free",
        "reason": "'Free' offers must comply with FTC guidelines. Ensure no hidden costs.",
        "suggestion": "included at no extra cost",
        "category": "legal",
        "severity": "medium",
    },
    {
        "pattern": "scientifically proven",
        "reason": "Requires peer-reviewed studies to substantiate. Could be challenged.",
        "suggestion": "backed by research",
        "category": "legal",
        "severity": "high",
    },
]


def rule_from_model(model: PolicyRuleModel) -> PolicyRule:
    return PolicyRule(
        id=model.id,
        pattern=model.pattern,
        reason=model.reason,
        suggestion=model.suggestion,
        category=model.category,
        severity=Severity(model.severity),
        active=bool(model.is_active),
        sequence=model.sequence,
    )


class PolicyRuleStore:
    """Policy rules backed by the ``policy_rules`` table."""

    def __init__(self, db: Database):
        self._db = db
        self._lock = threading.Lock()
        self._cache: Optional[tuple[PolicyRule, ...]] = None
        self._generation = 0

    def active_rules(self) -> tuple[PolicyRule, ...]:
        """Active rules in insertion order."""
        with self._lock:
            if self._cache is not None:
                return self._cache
            generation = self._generation

        session = self._db.get_session()
        try:
            rules = tuple(
                rule_from_model(m) for m in self._db.list_rules(session, active_only=True)
            )
        finally:
            session.close()

        with self._lock:
            # A mutation landed while loading; don't cache what may be stale.
            if generation == self._generation:
                self._cache = rules
        return rules

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._generation += 1
        logger.debug("Policy rule cache invalidated")

    def list_rules(self) -> list[PolicyRule]:
        """All rules, including inactive ones."""
        session = self._db.get_session()
        try:
            return [rule_from_model(m) for m in self._db.list_rules(session)]
        finally:
            session.close()

    def get_rule(self, rule_id: str) -> PolicyRule:
        session = self._db.get_session()
        try:
            model = self._db.get_rule(session, rule_id)
            if not model:
                raise NotFoundError("Rule not found")
            return rule_from_model(model)
        finally:
            session.close()

    def create_rule(
        self,
        pattern: str,
        reason: str,
        suggestion: str,
        category: str = "general",
        severity: Any = Severity.MEDIUM,
    ) -> PolicyRule:
        validate_rule(pattern, reason, suggestion)
        severity = validate_choice(severity, Severity, "severity")

        session = self._db.get_session()
        try:
            model = self._db.create_rule(
                session,
                pattern=pattern.strip(),
                reason=reason,
                suggestion=suggestion,
                category=category or "general",
                severity=severity.value,
            )
            rule = rule_from_model(model)
        finally:
            session.close()

        self.invalidate()
        logger.info(f"Policy rule created: {rule.pattern!r} ({rule.severity.value})")
        return rule

    def update_rule(self, rule_id: str, **changes: Any) -> PolicyRule:
        """Apply a partial update. ``None`` values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if "severity" in changes:
            changes["severity"] = validate_choice(
                changes["severity"], Severity, "severity"
            ).value
        if "active" in changes:
            changes["is_active"] = bool(changes.pop("active"))
        for field_name in ("pattern", "reason", "suggestion"):
            if field_name in changes:
                validate_required(changes[field_name], field_name)

        session = self._db.get_session()
        try:
            current = self._db.get_rule(session, rule_id)
            if not current:
                raise NotFoundError("Rule not found")
            validate_rule(
                changes.get("pattern", current.pattern),
                changes.get("reason", current.reason),
                changes.get("suggestion", current.suggestion),
            )
            model = self._db.update_rule(session, rule_id, **changes)
            rule = rule_from_model(model)
        finally:
            session.close()

        self.invalidate()
        return rule

    def deactivate_rule(self, rule_id: str) -> PolicyRule:
        return self.update_rule(rule_id, active=False)

    def delete_rule(self, rule_id: str) -> None:
        session = self._db.get_session()
        try:
            if not self._db.delete_rule(session, rule_id):
                raise NotFoundError("Rule not found")
        finally:
            session.close()
        self.invalidate()

    def seed_demo_rules(self, replace: bool = False) -> int:
        """
        Insert the demo rule set. Without ``replace`` this only seeds an empty
        table. Returns the number of rules inserted.
        """
        session = self._db.get_session()
        try:
            if replace:
                for model in self._db.list_rules(session):
                    session.delete(model)
                session.commit()
            elif self._db.count_rules(session) > 0:
                return 0

            for rule in DEMO_RULES:
                self._db.create_rule(session, **rule)
        finally:
            session.close()

        self.invalidate()
        logger.info(f"Seeded {len(DEMO_RULES)} demo compliance rules")
        return len(DEMO_RULES)
