"""
CopyGuard - Input validation helpers.

Validation runs before anything touches the database or an evaluator, so
callers get an ``InvalidInputError`` naming the offending field.
"""

import re
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from .exceptions import InvalidInputError

E = TypeVar("E", bound=Enum)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_required(value: Any, field_name: str) -> None:
    """Validate that a required field is not None or empty."""
    if value is None:
        raise InvalidInputError(f"{field_name} is required", field=field_name)
    if isinstance(value, str) and not value.strip():
        raise InvalidInputError(f"{field_name} cannot be empty", field=field_name, value=value)


def validate_string_length(
    value: Optional[str],
    field_name: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> None:
    """Validate string length constraints."""
    if value is None:
        return

    if min_length is not None and len(value) < min_length:
        raise InvalidInputError(
            f"{field_name} must be at least {min_length} characters",
            field=field_name,
            value=value,
        )

    if max_length is not None and len(value) > max_length:
        raise InvalidInputError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value,
        )


def validate_choice(value: Any, enum_cls: Type[E], field_name: str) -> E:
    """Coerce a value into an enum member or fail with the allowed values."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        raise InvalidInputError(
            f"{field_name} must be one of: {allowed}",
            field=field_name,
            value=value,
        )


def validate_email(value: str, field_name: str = "email") -> None:
    validate_required(value, field_name)
    if not _EMAIL_PATTERN.match(value):
        raise InvalidInputError(
            f"{field_name} must be a valid email address",
            field=field_name,
            value=value,
        )


def validate_text(text: Any, field_name: str = "text") -> None:
    """Text submitted for evaluation must be a non-blank string."""
    if text is not None and not isinstance(text, str):
        raise InvalidInputError(f"{field_name} must be a string", field=field_name, value=text)
    validate_required(text, field_name)


def validate_user_create(name: str, email: str) -> None:
    validate_required(name, "name")
    validate_string_length(name, "name", max_length=255)
    validate_email(email)


def validate_content_create(title: str, text: str, creator_id: str) -> None:
    validate_required(title, "title")
    validate_string_length(title, "title", max_length=255)
    validate_text(text)
    validate_required(creator_id, "creator_id")


def validate_rule(pattern: str, reason: str, suggestion: str) -> None:
    """
    A rule needs a pattern, a reason and a suggestion, and the suggestion
    must not contain the pattern: a rewrite must never re-trigger its own rule.
    """
    validate_required(pattern, "pattern")
    validate_required(reason, "reason")
    validate_required(suggestion, "suggestion")
    if pattern.lower() in suggestion.lower():
        raise InvalidInputError(
            "suggestion must not contain the pattern it replaces",
            field="suggestion",
            value=suggestion,
        )


def validate_feedback(feedback: Optional[str]) -> None:
    if feedback is None or not feedback.strip():
        raise InvalidInputError("Feedback is required when rejecting", field="feedback")
