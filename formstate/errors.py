"""Structured error types for formstate.

This module defines the per-field error record (FieldError) produced by
structural and semantic validation, and the exception hierarchy used at the
public API boundary.

Only SchemaShapeError is allowed to abort engine construction. The other
kinds are contained by the component that detects them: field failures are
surfaced through the engine's errors map, semantic backend failures are
recovered to a passing result, and submission callback failures are routed
to the error hook.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        path: Field path (the field's submission name)
        code: Specific validation error code (a FieldErrorCode value)
        message: Human-readable error description
        expected: Optional - what was expected (type, bound, pattern, ...)
        received: Optional - what was actually received

    Examples:
        >>> from formstate.types import FieldErrorCode
        >>> err = FieldError(
        ...     path="email",
        ...     code=FieldErrorCode.INVALID_FORMAT,
        ...     message="Invalid email format",
        ...     expected="email",
        ...     received="not-an-email"
        ... )
        >>> err.path
        'email'
    """
    path: str
    code: Any
    message: str
    expected: Optional[Any] = None
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "path": self.path,
            "code": getattr(self.code, "value", self.code),
            "message": self.message,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result


class FormStateError(Exception):
    """Base class for all formstate errors."""


class SchemaShapeError(FormStateError):
    """Raised when a schema document is malformed or incomplete.

    Attributes:
        path: Location of the offending node ("" for the top level,
            "fields[2]", "steps[0].fields[1]", ...)
        missing_property: Name of the first missing required property, if
            the failure is a missing property
    """

    def __init__(self, message: str, path: str = "", missing_property: Optional[str] = None):
        self.path = path
        self.missing_property = missing_property
        super().__init__(message)


class SerializationError(FormStateError):
    """Raised when serialized schema text cannot be decoded.

    Attributes:
        format: The format that was being decoded ("json", "yaml")
    """

    def __init__(self, message: str, format: Optional[str] = None):
        self.format = format
        super().__init__(message)


class FieldValidationError(FormStateError):
    """Raised on request when structural validation fails.

    Attributes:
        errors: Per-field failures, one per failing field
    """

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        paths = ", ".join(e.path for e in self.errors)
        super().__init__(f"Validation failed for: {paths}")


class SemanticValidationError(FormStateError):
    """Raised by semantic backends when the text-analysis service fails.

    Never escapes SemanticValidator, which recovers it to a passing result.
    """


class SubmissionError(FormStateError):
    """Wraps an exception raised by the external submit callback.

    Attributes:
        original: The exception raised by the callback
    """

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)


__all__ = [
    "FieldError",
    "FormStateError",
    "SchemaShapeError",
    "SerializationError",
    "FieldValidationError",
    "SemanticValidationError",
    "SubmissionError",
]
