"""
CopyGuard - LLM compliance backend.

Turns a piece of marketing copy plus retrieved policy text into a
``ComplianceResult`` by asking a chat model for a JSON verdict. Used by
``GenerativeEvaluator``; anything that goes wrong here surfaces as
``EvaluatorUnavailableError`` so the evaluator can fall back to a
conservative verdict.

Usage:
    ```python
    from copyguard.llm import LLMComplianceBackend, LLMConfig

    backend = LLMComplianceBackend(LLMConfig(model="gpt-4o-mini", api_key="..."))
    result = backend.analyze(text, context=policy_text, rules=store.active_rules())
    ```
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import EvaluatorUnavailableError
from .models import ComplianceIssue, ComplianceResult, PolicyRule, Severity

logger = logging.getLogger("copyguard.llm")

OPENAI_STYLE_PROVIDERS = {"openai", "azure_openai", "deepseek", "grok", "openrouter"}
ANTHROPIC_STYLE_PROVIDERS = {"anthropic"}

SYSTEM_PROMPT = """You are a marketing compliance reviewer.
Check the marketing copy against the company policy excerpts and the listed
policy rules. Flag every claim that violates policy.

Respond with a single JSON object and nothing else:
{
  "is_compliant": true | false,
  "issues": [
    {
      "matched_text": "<exact phrase from the copy>",
      "reason": "<why it violates policy>",
      "suggestion": "<compliant replacement phrase>",
      "severity": "high" | "medium" | "low",
      "category": "<legal | brand | safety | general>"
    }
  ],
  "suggested_rewrite": "<the full copy rewritten to be compliant>"
}
Use "high" only for claims that must not be published."""


@dataclass
class LLMConfig:
    """Configuration for the LLM compliance backend."""

    model: str = ""
    provider: str = ""
    api_key: Optional[str] = None
    temperature: float = 0.0
    max_tokens: int = 2048
    timeout_seconds: float = 15.0


def _resolve_provider(model: str) -> str:
    """Infer provider from model name if not explicitly set."""
    m = model.lower()
    if m.startswith("claude"):
        return "anthropic"
    if m.startswith("grok"):
        return "grok"
    if m.startswith("deepseek"):
        return "deepseek"
    if "/" in m:
        return "openrouter"
    return "openai"


class _IssuePayload(BaseModel):
    matched_text: str = Field("", alias="matchedText")
    reason: str
    suggestion: str = ""
    severity: Severity = Severity.MEDIUM
    category: str = "general"

    class Config:
        populate_by_name = True

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class _VerdictPayload(BaseModel):
    is_compliant: bool = Field(False, alias="isCompliant")
    issues: List[_IssuePayload] = Field(default_factory=list)
    suggested_rewrite: str = Field("", alias="suggestedRewrite")

    class Config:
        populate_by_name = True


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_verdict(raw: str, text: str) -> ComplianceResult:
    """Parse a model response into a ``ComplianceResult``.

    Accepts bare JSON or JSON inside a code fence. Older prompts used
    ``violations`` for the issue list; it is folded into ``issues`` here.
    """
    cleaned = _FENCE.sub("", raw.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise EvaluatorUnavailableError(f"Backend returned invalid JSON: {e}")
    if not isinstance(data, dict):
        raise EvaluatorUnavailableError("Backend verdict is not a JSON object")
    if "issues" not in data and "violations" in data:
        data["issues"] = data.pop("violations")

    try:
        payload = _VerdictPayload.model_validate(data)
    except ValidationError as e:
        raise EvaluatorUnavailableError(f"Backend verdict failed validation: {e}")

    issues = tuple(
        ComplianceIssue(
            matched_text=i.matched_text,
            reason=i.reason,
            suggestion=i.suggestion,
            severity=i.severity,
            category=i.category,
        )
        for i in sorted(payload.issues, key=lambda i: i.severity.rank)
    )
    return ComplianceResult(
        # A verdict that lists issues is never compliant.
        is_compliant=payload.is_compliant and not issues,
        issues=issues,
        suggested_rewrite=payload.suggested_rewrite or text,
        evaluator="generative",
    )


def build_user_prompt(text: str, context: str, rules: Sequence[PolicyRule]) -> str:
    lines = ["## Policy excerpts", context.strip() or "(none)", "", "## Policy rules"]
    if rules:
        for rule in rules:
            lines.append(
                f"- \"{rule.pattern}\" ({rule.severity.value}, {rule.category}): "
                f"{rule.reason} Suggested: \"{rule.suggestion}\""
            )
    else:
        lines.append("(none)")
    lines.extend(["", "## Marketing copy", text])
    return "\n".join(lines)


class LLMComplianceBackend:
    """Chat-model backed compliance analysis.

    ``client`` may be a pre-built OpenAI or Anthropic client; otherwise one is
    created on first use from ``config``.
    """

    def __init__(self, config: LLMConfig, client: Any = None):
        self._config = config
        self._provider = config.provider or _resolve_provider(config.model)
        self._client = client

    @property
    def provider(self) -> str:
        return self._provider

    def analyze(
        self, text: str, context: str, rules: Sequence[PolicyRule] = ()
    ) -> ComplianceResult:
        prompt = build_user_prompt(text, context, rules)
        try:
            raw = self._call_provider(SYSTEM_PROMPT, prompt)
        except EvaluatorUnavailableError:
            raise
        except Exception as e:
            raise EvaluatorUnavailableError(f"LLM request failed: {e}")
        logger.debug(f"LLM verdict received from {self._provider}/{self._config.model}")
        return parse_verdict(raw, text)

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        if self._provider in OPENAI_STYLE_PROVIDERS:
            try:
                import openai
            except ImportError:
                raise ImportError(
                    "openai package required. Install with: pip install openai"
                )
            self._client = openai.OpenAI(
                api_key=self._config.api_key, timeout=self._config.timeout_seconds
            )
        elif self._provider in ANTHROPIC_STYLE_PROVIDERS:
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "anthropic package required. Install with: pip install anthropic"
                )
            self._client = anthropic.Anthropic(
                api_key=self._config.api_key, timeout=self._config.timeout_seconds
            )
        else:
            raise ValueError(f"Unsupported provider: {self._provider}")
        return self._client

    def _call_provider(self, system: str, prompt: str) -> str:
        client = self._get_client()
        if self._provider in ANTHROPIC_STYLE_PROVIDERS:
            response = client.messages.create(
                model=self._config.model,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
            return "".join(
                getattr(block, "text", "") for block in response.content
            )

        response = client.chat.completions.create(
            model=self._config.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        return response.choices[0].message.content or ""
