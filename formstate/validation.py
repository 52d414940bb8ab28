"""Structural validation engine for formstate.

This module compiles field definitions into a constraint tree and validates
submitted values against it, producing structured, per-field results.

Each field kind maps to a closed set of base types (BaseType). Declared
validation rules are compiled once into Constraint records composed onto
that base type, so repeated validation passes reuse the same tree:

    FieldKind -> BaseType (+ StringFormat) -> [Constraint, ...]

Checks run in a fixed order and stop at the first failure for a field:
presence/requiredness, base type, string format, then declared rules in
declaration order. Custom predicates may be synchronous or return an
awaitable, so validation itself is a coroutine.
"""

import datetime
import inspect
import io
import logging
import math
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Collection, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import urlparse

from dateutil import parser as date_parser

from formstate.errors import FieldError, FieldValidationError, SchemaShapeError
from formstate.types import FieldDefinition, FieldErrorCode, FieldKind, ValidationRule, ValidationRuleType

logger = logging.getLogger(__name__)


class BaseType(str, Enum):
    """Structural base types a field value is checked against."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING_ARRAY = "array"
    FILE = "file"
    DATE = "date"
    ANY = "any"


class StringFormat(str, Enum):
    EMAIL = "email"
    URL = "url"


KIND_BASE_TYPES: Dict[FieldKind, Tuple[BaseType, Optional[StringFormat]]] = {
    FieldKind.TEXT: (BaseType.STRING, None),
    FieldKind.EMAIL: (BaseType.STRING, StringFormat.EMAIL),
    FieldKind.PASSWORD: (BaseType.STRING, None),
    FieldKind.TEL: (BaseType.STRING, None),
    FieldKind.URL: (BaseType.STRING, StringFormat.URL),
    FieldKind.TEXTAREA: (BaseType.STRING, None),
    FieldKind.RICH_TEXT: (BaseType.STRING, None),
    FieldKind.COLOR: (BaseType.STRING, None),
    FieldKind.SIGNATURE: (BaseType.STRING, None),
    FieldKind.AUTOCOMPLETE: (BaseType.STRING, None),
    FieldKind.SELECT: (BaseType.STRING, None),
    FieldKind.RADIO: (BaseType.STRING, None),
    FieldKind.NUMBER: (BaseType.NUMBER, None),
    FieldKind.RANGE: (BaseType.NUMBER, None),
    FieldKind.RATING: (BaseType.NUMBER, None),
    FieldKind.CHECKBOX: (BaseType.BOOLEAN, None),
    FieldKind.SWITCH: (BaseType.BOOLEAN, None),
    FieldKind.CHECKBOX_GROUP: (BaseType.STRING_ARRAY, None),
    FieldKind.MULTI_SELECT: (BaseType.STRING_ARRAY, None),
    FieldKind.FILE: (BaseType.FILE, None),
    FieldKind.DATE: (BaseType.DATE, None),
    FieldKind.DATETIME: (BaseType.DATE, None),
    FieldKind.TIME: (BaseType.DATE, None),
    FieldKind.CUSTOM: (BaseType.ANY, None),
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@.]+(\.[^\s@.]+)*\.[A-Za-z]{2,}$")

# Fixed anchor so time-only values and bounds compare on the same day
_DATE_ANCHOR = datetime.datetime(2000, 1, 1)


class ConstraintKind(str, Enum):
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    MIN_VALUE = "min_value"
    MAX_VALUE = "max_value"
    MIN_COUNT = "min_count"
    MAX_COUNT = "max_count"
    MIN_DATE = "min_date"
    MAX_DATE = "max_date"
    PATTERN = "pattern"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Constraint:
    """One compiled constraint in a field's constraint tree.

    Attributes:
        kind: Constraint variant
        argument: Bound, regex source or None for predicates
        message: Message reported when the constraint fails
        code: Error code reported when the constraint fails
        regex: Compiled pattern for PATTERN constraints
        predicate: User predicate for CUSTOM constraints
    """
    kind: ConstraintKind
    argument: Any
    message: str
    code: FieldErrorCode
    regex: Optional[Pattern] = None
    predicate: Optional[Callable[[Any], Any]] = field(default=None, compare=False)


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "nan" if isinstance(value, float) and math.isnan(value) else "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple, set)):
        return "array"
    if isinstance(value, (datetime.date, datetime.time)):
        return "date"
    return type(value).__name__


def _is_file_handle(value: Any) -> bool:
    if isinstance(value, (bytes, bytearray, io.IOBase, os.PathLike)):
        return True
    return callable(getattr(value, "read", None))


def _matches_base_type(base_type: BaseType, value: Any) -> bool:
    if base_type == BaseType.STRING:
        return isinstance(value, str)
    if base_type == BaseType.NUMBER:
        return (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and not (isinstance(value, float) and math.isnan(value))
        )
    if base_type == BaseType.BOOLEAN:
        return isinstance(value, bool)
    if base_type == BaseType.STRING_ARRAY:
        return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)
    if base_type == BaseType.FILE:
        if isinstance(value, (list, tuple)):
            return all(_is_file_handle(v) for v in value)
        return _is_file_handle(value)
    if base_type == BaseType.DATE:
        return isinstance(value, (str, datetime.date, datetime.time))
    return True


def _matches_format(fmt: StringFormat, value: str) -> bool:
    if fmt == StringFormat.EMAIL:
        return bool(_EMAIL_RE.match(value))
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc)


def _to_datetime(value: Any) -> datetime.datetime:
    """Normalize a date/time value or string to a naive datetime.

    Raises:
        ValueError: If a string cannot be parsed as a date or time
    """
    if isinstance(value, datetime.datetime):
        result = value
    elif isinstance(value, datetime.date):
        result = datetime.datetime(value.year, value.month, value.day)
    elif isinstance(value, datetime.time):
        result = datetime.datetime.combine(_DATE_ANCHOR.date(), value)
    else:
        try:
            result = date_parser.parse(str(value), default=_DATE_ANCHOR)
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"Unparseable date: {value!r}") from exc
    return result.replace(tzinfo=None)


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _numeric_bound(rule: ValidationRule, field_def: FieldDefinition) -> float:
    try:
        return float(rule.value)
    except (TypeError, ValueError):
        raise SchemaShapeError(
            f"Validation rule '{rule.type.value}' on field '{field_def.id}' needs a numeric value, "
            f"got {rule.value!r}",
            path=field_def.id,
        ) from None


def _compile_rule(
    rule: ValidationRule,
    field_def: FieldDefinition,
    base_type: BaseType,
) -> Optional[Constraint]:
    """Compile one declared rule into a constraint for the field's base type.

    Returns None when the rule does not apply to the base type, matching the
    behavior of the exported schemas, where e.g. a ``pattern`` on a number
    field is inert.
    """
    label = field_def.display_name
    rule_type = rule.type

    if rule_type in (ValidationRuleType.MIN, ValidationRuleType.MAX):
        is_min = rule_type == ValidationRuleType.MIN
        word = "least" if is_min else "most"
        if base_type == BaseType.STRING:
            return Constraint(
                kind=ConstraintKind.MIN_LENGTH if is_min else ConstraintKind.MAX_LENGTH,
                argument=_numeric_bound(rule, field_def),
                message=rule.message or f"{label} must be at {word} {rule.value} characters",
                code=FieldErrorCode.TOO_SHORT if is_min else FieldErrorCode.TOO_LONG,
            )
        if base_type == BaseType.NUMBER:
            return Constraint(
                kind=ConstraintKind.MIN_VALUE if is_min else ConstraintKind.MAX_VALUE,
                argument=_numeric_bound(rule, field_def),
                message=rule.message or f"{label} must be at {word} {rule.value}",
                code=FieldErrorCode.TOO_SMALL if is_min else FieldErrorCode.TOO_LARGE,
            )
        if base_type == BaseType.STRING_ARRAY:
            return Constraint(
                kind=ConstraintKind.MIN_COUNT if is_min else ConstraintKind.MAX_COUNT,
                argument=_numeric_bound(rule, field_def),
                message=rule.message or f"Select at {word} {rule.value} options",
                code=FieldErrorCode.TOO_SHORT if is_min else FieldErrorCode.TOO_LONG,
            )
        if base_type == BaseType.DATE:
            try:
                bound = _to_datetime(rule.value)
            except ValueError:
                raise SchemaShapeError(
                    f"Validation rule '{rule_type.value}' on field '{field_def.id}' needs a date, "
                    f"got {rule.value!r}",
                    path=field_def.id,
                ) from None
            return Constraint(
                kind=ConstraintKind.MIN_DATE if is_min else ConstraintKind.MAX_DATE,
                argument=bound,
                message=rule.message
                or f"{label} must be {'on or after' if is_min else 'on or before'} {rule.value}",
                code=FieldErrorCode.TOO_SMALL if is_min else FieldErrorCode.TOO_LARGE,
            )
        return None

    if rule_type == ValidationRuleType.PATTERN:
        if base_type != BaseType.STRING or not isinstance(rule.value, str):
            return None
        return Constraint(
            kind=ConstraintKind.PATTERN,
            argument=rule.value,
            message=rule.message or f"{label} format is invalid",
            code=FieldErrorCode.INVALID_FORMAT,
            regex=re.compile(rule.value),
        )

    if rule_type == ValidationRuleType.CUSTOM:
        if rule.validator is None:
            return None
        return Constraint(
            kind=ConstraintKind.CUSTOM,
            argument=None,
            message=rule.message or "Validation failed",
            code=FieldErrorCode.CUSTOM,
            predicate=rule.validator,
        )

    return None


async def _satisfies(constraint: Constraint, value: Any) -> bool:
    kind = constraint.kind
    if kind == ConstraintKind.MIN_LENGTH or kind == ConstraintKind.MIN_COUNT:
        return len(value) >= constraint.argument
    if kind == ConstraintKind.MAX_LENGTH or kind == ConstraintKind.MAX_COUNT:
        return len(value) <= constraint.argument
    if kind == ConstraintKind.MIN_VALUE:
        return value >= constraint.argument
    if kind == ConstraintKind.MAX_VALUE:
        return value <= constraint.argument
    if kind == ConstraintKind.MIN_DATE:
        return _to_datetime(value) >= constraint.argument
    if kind == ConstraintKind.MAX_DATE:
        return _to_datetime(value) <= constraint.argument
    if kind == ConstraintKind.PATTERN:
        return constraint.regex.search(value) is not None
    if kind == ConstraintKind.CUSTOM:
        try:
            result = constraint.predicate(value)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.warning("Custom validator raised; treating as a failed check", exc_info=True)
            return False
        return bool(result)
    return True


@dataclass(frozen=True)
class FieldSchema:
    """Compiled structural schema for a single field.

    Attributes:
        field_id: Id of the field definition this schema was built from
        name: Submission key the schema validates
        label: Label used in messages
        base_type: Structural base type
        string_format: Optional format constraint for string fields
        required: Whether a value must be present and non-empty
        required_message: Message reported when a required value is missing
        constraints: Compiled constraints, in declaration order
    """
    field_id: str
    name: str
    label: str
    base_type: BaseType
    string_format: Optional[StringFormat] = None
    required: bool = False
    required_message: str = ""
    constraints: Tuple[Constraint, ...] = ()

    def _error(self, code: FieldErrorCode, message: str, expected: Any = None, received: Any = None) -> FieldError:
        return FieldError(path=self.name, code=code, message=message, expected=expected, received=received)

    async def check(self, value: Any, force_required: bool = False) -> Optional[FieldError]:
        """Validate one value; return the first failure or None.

        Args:
            value: The raw value (None when absent)
            force_required: Treat the field as required even if its
                definition is not (conditional ``require`` rules)
        """
        required = self.required or force_required

        if required and (value is None or _is_blank(value)):
            return self._error(
                FieldErrorCode.REQUIRED,
                self.required_message,
                expected="required field",
            )
        # only an absent value passes an optional field trivially
        if value is None:
            return None

        if not _matches_base_type(self.base_type, value):
            received = _describe(value)
            return self._error(
                FieldErrorCode.INVALID_TYPE,
                f"Expected {self.base_type.value}, received {received}",
                expected=self.base_type.value,
                received=received,
            )

        if self.string_format is not None and not _matches_format(self.string_format, value):
            label = "URL" if self.string_format == StringFormat.URL else self.string_format.value
            return self._error(
                FieldErrorCode.INVALID_FORMAT,
                f"Invalid {label} format",
                expected=self.string_format.value,
                received=value,
            )

        for constraint in self.constraints:
            try:
                ok = await _satisfies(constraint, value)
            except ValueError:
                return self._error(
                    FieldErrorCode.INVALID_FORMAT,
                    f"{self.label} is not a valid date",
                    expected="date",
                    received=value,
                )
            if not ok:
                return self._error(
                    constraint.code,
                    constraint.message,
                    expected=constraint.argument if constraint.kind != ConstraintKind.CUSTOM else None,
                    received=value,
                )
        return None


def build_field_schema(field_def: FieldDefinition) -> FieldSchema:
    """Compile a single field definition into its FieldSchema.

    Raises:
        SchemaShapeError: If a rule argument cannot be compiled
    """
    base_type, string_format = KIND_BASE_TYPES.get(field_def.kind, (BaseType.ANY, None))
    label = field_def.display_name

    required = field_def.required
    required_message = f"{label} is required"
    constraints: List[Constraint] = []
    for rule in field_def.validation:
        if rule.type == ValidationRuleType.REQUIRED:
            required = True
            if rule.message:
                required_message = rule.message
            continue
        constraint = _compile_rule(rule, field_def, base_type)
        if constraint is not None:
            constraints.append(constraint)

    return FieldSchema(
        field_id=field_def.id,
        name=field_def.name,
        label=label,
        base_type=base_type,
        string_format=string_format,
        required=required,
        required_message=required_message,
        constraints=tuple(constraints),
    )


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating a value map against a TypedSchema.

    Attributes:
        success: Whether every checked field passed
        errors: One FieldError per failing field
        data: The validated values for the checked fields that were present
        missing_fields: Names of required fields with no value
        invalid_fields: Names of fields that failed any other check

    Examples:
        >>> outcome = ValidationOutcome(success=True, errors=[], data={"name": "Ada"})
        >>> outcome.field_errors
        {}
    """
    success: bool
    errors: List[FieldError]
    data: Dict[str, Any] = field(default_factory=dict)
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[str] = field(default_factory=list)

    @property
    def field_errors(self) -> Dict[str, str]:
        """Mapping of field path to message."""
        return {e.path: e.message for e in self.errors}

    def raise_for_errors(self) -> None:
        """Raise FieldValidationError if validation failed."""
        if not self.success:
            raise FieldValidationError(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "success": self.success,
            "fieldErrors": self.field_errors,
            "errors": [e.to_dict() for e in self.errors],
            "data": self.data,
            "missingFields": self.missing_fields,
            "invalidFields": self.invalid_fields,
        }


@dataclass(frozen=True)
class TypedSchema:
    """Structural schema for a list of fields, keyed by submission name.

    Attributes:
        fields: FieldSchema per submission name
        duplicate_names: Names declared by more than one field; the last
            declaration is the one in ``fields``
    """
    fields: Dict[str, FieldSchema]
    duplicate_names: Tuple[str, ...] = ()

    async def validate(
        self,
        values: Mapping[str, Any],
        only: Optional[Iterable[str]] = None,
        required: Collection[str] = (),
    ) -> ValidationOutcome:
        """Validate values against the schema.

        Args:
            values: Submitted values keyed by field name
            only: Restrict validation to these names (default: all)
            required: Names that must be present even if not statically required

        Returns:
            ValidationOutcome with at most one error per field
        """
        names = list(self.fields) if only is None else [n for n in only if n in self.fields]

        errors: List[FieldError] = []
        missing: List[str] = []
        invalid: List[str] = []
        data: Dict[str, Any] = {}

        for name in names:
            value = values.get(name)
            error = await self.fields[name].check(value, force_required=name in required)
            if error is None:
                if name in values:
                    data[name] = value
                continue
            errors.append(error)
            if error.code == FieldErrorCode.REQUIRED:
                missing.append(name)
            else:
                invalid.append(name)

        if errors:
            logger.debug("Structural validation failed for %s", [e.path for e in errors])

        return ValidationOutcome(
            success=not errors,
            errors=errors,
            data=data,
            missing_fields=missing,
            invalid_fields=invalid,
        )


def build_schema(fields: Iterable[FieldDefinition], warn_duplicates: bool = True) -> TypedSchema:
    """Compile field definitions into a TypedSchema.

    When the same name is declared by more than one field, the last
    declaration wins and a warning is logged.

    Examples:
        >>> from formstate.types import FieldDefinition, FieldKind
        >>> schema = build_schema([FieldDefinition(id="age", name="age", kind=FieldKind.NUMBER)])
        >>> schema.fields["age"].base_type
        <BaseType.NUMBER: 'number'>
    """
    compiled: Dict[str, FieldSchema] = {}
    duplicates: List[str] = []
    for field_def in fields:
        previous = compiled.get(field_def.name)
        if previous is not None:
            if field_def.name not in duplicates:
                duplicates.append(field_def.name)
            if warn_duplicates:
                logger.warning(
                    "Field name '%s' is declared by fields '%s' and '%s'; the last declaration wins",
                    field_def.name, previous.field_id, field_def.id,
                )
        compiled[field_def.name] = build_field_schema(field_def)
    return TypedSchema(fields=compiled, duplicate_names=tuple(duplicates))


async def validate(values: Mapping[str, Any], schema: TypedSchema) -> ValidationOutcome:
    """Validate values against a TypedSchema built by ``build_schema``."""
    return await schema.validate(values)


__all__ = [
    "BaseType",
    "StringFormat",
    "KIND_BASE_TYPES",
    "ConstraintKind",
    "Constraint",
    "FieldSchema",
    "TypedSchema",
    "ValidationOutcome",
    "build_field_schema",
    "build_schema",
    "validate",
]
