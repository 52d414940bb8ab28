"""Core type definitions for the formstate engine.

This module defines the fundamental types used throughout formstate:
- FieldKind: Enumerated field types a schema may declare
- ConditionalOperator / RuleAction: Vocabulary of conditional rules
- ValidationRuleType: Declarative validation rule types
- FieldErrorCode: Validation error codes for individual fields
- EventType: Notification event types emitted by the engine
- ConditionalRule, ValidationRule, SemanticValidationConfig,
  FieldDefinition, FormStep, FormSchema: the immutable schema model

Schema documents use the camelCase keys of the portable export format
("type", "fieldId", "conditionalRules", ...). Keys the model does not
interpret are kept in ``extra`` so presentation settings survive a
round trip through the model.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from formstate.errors import SchemaShapeError

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    """Field kinds a schema may declare."""
    TEXT = "text"
    EMAIL = "email"
    PASSWORD = "password"
    NUMBER = "number"
    TEL = "tel"
    URL = "url"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    CHECKBOX_GROUP = "checkboxGroup"
    SWITCH = "switch"
    FILE = "file"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    RANGE = "range"
    COLOR = "color"
    RATING = "rating"
    SIGNATURE = "signature"
    RICH_TEXT = "rich-text"
    AUTOCOMPLETE = "autocomplete"
    MULTI_SELECT = "multi-select"
    CUSTOM = "custom"


class ConditionalOperator(str, Enum):
    """Comparison operators available to conditional rules."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"


class RuleAction(str, Enum):
    """Effect a conditional rule has on its field."""
    SHOW = "show"
    HIDE = "hide"
    ENABLE = "enable"
    DISABLE = "disable"
    REQUIRE = "require"


class ValidationRuleType(str, Enum):
    """Declarative validation rule types.

    ``ai`` rules are carried for compatibility with exported schemas but are
    ignored by structural validation; semantic checks are configured through
    ``aiValidation`` instead.
    """
    REQUIRED = "required"
    MIN = "min"
    MAX = "max"
    PATTERN = "pattern"
    CUSTOM = "custom"
    AI = "ai"


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    INVALID_TYPE = "invalid_type"
    INVALID_FORMAT = "invalid_format"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    CUSTOM = "custom"
    SEMANTIC = "semantic"


class EventType(str, Enum):
    """Notification events emitted by the form state engine."""
    FIELD_CHANGED = "field.changed"
    FIELD_TOUCHED = "field.touched"
    FIELD_FOCUSED = "field.focused"
    FIELD_BLURRED = "field.blurred"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    STEP_CHANGED = "step.changed"
    SUBMISSION_STARTED = "submission.started"
    SUBMISSION_SUCCEEDED = "submission.succeeded"
    SUBMISSION_FAILED = "submission.failed"
    FORM_RESET = "form.reset"


def _parse_enum(enum_cls, value: Any, what: str, path: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise SchemaShapeError(
            f"Unknown {what} '{value}' at {path}",
            path=path,
        ) from None


def _parse_lenient(enum_cls, value: Any, what: str, path: str):
    """Parse an enum value, keeping unknown values raw instead of failing."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning("Unknown %s %r at %s; the rule will have no effect", what, value, path)
        return value


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _split_extra(data: Dict[str, Any], known: Tuple[str, ...]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


@dataclass(frozen=True)
class ConditionalRule:
    """A predicate over another field's value that toggles this field's state.

    Attributes:
        subject_field_id: Id of the field whose value is inspected
        operator: Comparison operator. Unrecognized operators are kept as
            their raw value and never match
        value: Comparison value (unused by isEmpty/isNotEmpty)
        action: Effect on the owning field when evaluated. Unrecognized
            actions are kept as their raw value and have no effect

    Examples:
        >>> rule = ConditionalRule.from_dict(
        ...     {"fieldId": "customerType", "operator": "equals", "value": "new", "action": "show"}
        ... )
        >>> rule.action
        <RuleAction.SHOW: 'show'>
    """
    subject_field_id: str
    operator: Union[ConditionalOperator, str]
    value: Any = None
    action: Union[RuleAction, str] = RuleAction.SHOW

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "fieldId": self.subject_field_id,
            "operator": _enum_value(self.operator),
            "value": self.value,
            "action": _enum_value(self.action),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "conditionalRules") -> "ConditionalRule":
        """Create ConditionalRule from dict."""
        subject = data.get("fieldId", data.get("subjectFieldId"))
        if not subject:
            raise SchemaShapeError(
                f"Conditional rule at {path} is missing required property 'fieldId'",
                path=path,
                missing_property="fieldId",
            )
        return cls(
            subject_field_id=subject,
            operator=_parse_lenient(ConditionalOperator, data.get("operator"), "operator", path),
            value=data.get("value", data.get("comparisonValue")),
            action=_parse_lenient(RuleAction, data.get("action", RuleAction.SHOW), "action", path),
        )


@dataclass(frozen=True)
class ValidationRule:
    """A declarative constraint composed onto a field's base type.

    Attributes:
        type: Rule type (min, max, pattern, custom, ...)
        value: Rule argument (bound, regex source, ...)
        message: Optional message reported when the rule fails
        validator: For ``custom`` rules, a sync or async predicate over the raw value
    """
    type: ValidationRuleType
    value: Any = None
    message: Optional[str] = None
    validator: Optional[Callable[[Any], Any]] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization.

        Predicates are code, not data, and are not exported.
        """
        result: Dict[str, Any] = {"type": self.type.value}
        if self.value is not None:
            result["value"] = self.value
        if self.message is not None:
            result["message"] = self.message
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "validation") -> "ValidationRule":
        """Create ValidationRule from dict."""
        rule_type = _parse_enum(ValidationRuleType, data.get("type"), "validation rule type", path)
        if rule_type == ValidationRuleType.PATTERN and isinstance(data.get("value"), str):
            try:
                re.compile(data["value"])
            except re.error as exc:
                raise SchemaShapeError(
                    f"Invalid pattern at {path}: {exc}",
                    path=path,
                ) from exc
        return cls(
            type=rule_type,
            value=data.get("value"),
            message=data.get("message"),
            validator=data.get("validator"),
        )


@dataclass(frozen=True)
class SemanticValidationConfig:
    """Opt-in configuration for semantic (content-meaning) checks on a field.

    Attributes:
        enabled: Whether semantic checks run for this field
        prompt: Optional prompt template; ``{value}`` is replaced by the text
        check_professionalism: Ask whether the text is professional
        check_appropriate: Ask whether the text is free of inappropriate content
        custom_checks: Additional free-text questions
    """
    enabled: bool = False
    prompt: Optional[str] = None
    check_professionalism: bool = False
    check_appropriate: bool = False
    custom_checks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"enabled": self.enabled}
        if self.prompt is not None:
            result["prompt"] = self.prompt
        if self.check_professionalism:
            result["checkProfessionalism"] = True
        if self.check_appropriate:
            result["checkAppropriate"] = True
        if self.custom_checks:
            result["customChecks"] = list(self.custom_checks)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticValidationConfig":
        """Create SemanticValidationConfig from dict."""
        return cls(
            enabled=bool(data.get("enabled", False)),
            prompt=data.get("prompt"),
            check_professionalism=bool(data.get("checkProfessionalism", False)),
            check_appropriate=bool(data.get("checkAppropriate", False)),
            custom_checks=tuple(data.get("customChecks") or ()),
        )


_FIELD_KEYS = (
    "id", "name", "type", "kind", "label", "required", "defaultValue",
    "validation", "aiValidation", "conditionalRules",
)


@dataclass(frozen=True)
class FieldDefinition:
    """Immutable descriptor of one input unit in a schema.

    Attributes:
        id: Unique id within the containing field list
        name: Submission key; may repeat across steps
        kind: Field kind, selects the structural base type
        label: Human-readable label used in messages
        required: Static required flag
        default_value: Initial value used when the engine starts or resets
        validation: Declared validation rules, applied in order
        semantic: Optional semantic validation opt-in
        conditional_rules: Rules toggling visibility/enablement/requiredness
        extra: Uninterpreted document keys (placeholder, options, ...)

    Examples:
        >>> f = FieldDefinition.from_dict({"id": "email", "name": "email", "type": "email"})
        >>> f.kind
        <FieldKind.EMAIL: 'email'>
        >>> f.label
        'email'
    """
    id: str
    name: str
    kind: FieldKind
    label: str = ""
    required: bool = False
    default_value: Any = None
    validation: Tuple[ValidationRule, ...] = ()
    semantic: Optional[SemanticValidationConfig] = None
    conditional_rules: Tuple[ConditionalRule, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def display_name(self) -> str:
        return self.label or self.name

    @property
    def semantic_enabled(self) -> bool:
        return self.semantic is not None and self.semantic.enabled

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "label": self.label,
        }
        if self.required:
            result["required"] = True
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        if self.validation:
            result["validation"] = [r.to_dict() for r in self.validation]
        if self.semantic is not None:
            result["aiValidation"] = self.semantic.to_dict()
        if self.conditional_rules:
            result["conditionalRules"] = [r.to_dict() for r in self.conditional_rules]
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "fields") -> "FieldDefinition":
        """Create FieldDefinition from dict.

        Raises:
            SchemaShapeError: If a required property is missing or an
                enumerated value is unknown
        """
        for key in ("id", "name"):
            if not data.get(key):
                raise SchemaShapeError(
                    f"Field at {path} is missing required property '{key}'",
                    path=path,
                    missing_property=key,
                )
        kind = data.get("type", data.get("kind"))
        if not kind:
            raise SchemaShapeError(
                f"Field at {path} is missing required property 'kind'",
                path=path,
                missing_property="kind",
            )
        semantic = None
        if isinstance(data.get("aiValidation"), dict):
            semantic = SemanticValidationConfig.from_dict(data["aiValidation"])
        return cls(
            id=data["id"],
            name=data["name"],
            kind=_parse_enum(FieldKind, kind, "field type", path),
            label=data.get("label") or "",
            required=bool(data.get("required", False)),
            default_value=data.get("defaultValue"),
            validation=tuple(
                ValidationRule.from_dict(r, f"{path}.validation[{i}]")
                for i, r in enumerate(data.get("validation") or [])
            ),
            semantic=semantic,
            conditional_rules=tuple(
                ConditionalRule.from_dict(r, f"{path}.conditionalRules[{i}]")
                for i, r in enumerate(data.get("conditionalRules") or [])
            ),
            extra=_split_extra(data, _FIELD_KEYS),
        )


def _fields_from_list(items: List[Dict[str, Any]], path: str) -> Tuple[FieldDefinition, ...]:
    fields = tuple(
        FieldDefinition.from_dict(item, f"{path}[{i}]") for i, item in enumerate(items)
    )
    seen = set()
    for f in fields:
        if f.id in seen:
            raise SchemaShapeError(
                f"Duplicate field id '{f.id}' in {path}",
                path=path,
            )
        seen.add(f.id)
    return fields


_STEP_KEYS = ("id", "title", "description", "fields", "onNext", "onPrevious")


@dataclass(frozen=True)
class FormStep:
    """A named, ordered group of fields presented together.

    Attributes:
        id: Step identifier
        title: Step title
        fields: Fields owned by this step
        description: Optional description
        on_next: Optional guard ``(values) -> bool | awaitable[bool]`` that can
            veto advancing past this step. ``values`` is keyed by field name
            (the submission key), the same mapping ``on_submit`` receives,
            not by field id
        on_previous: Optional notification called when leaving backwards
        extra: Uninterpreted document keys
    """
    id: str
    title: str
    fields: Tuple[FieldDefinition, ...] = ()
    description: Optional[str] = None
    on_next: Optional[Callable[[Dict[str, Any]], Any]] = field(default=None, compare=False)
    on_previous: Optional[Callable[[], Any]] = field(default=None, compare=False)
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
        }
        if self.description is not None:
            result["description"] = self.description
        result["fields"] = [f.to_dict() for f in self.fields]
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "steps") -> "FormStep":
        """Create FormStep from dict."""
        for key in ("id", "title"):
            if not data.get(key):
                raise SchemaShapeError(
                    f"Step at {path} is missing required property '{key}'",
                    path=path,
                    missing_property=key,
                )
        if not isinstance(data.get("fields"), list):
            raise SchemaShapeError(
                f"Step at {path} is missing required property 'fields'",
                path=path,
                missing_property="fields",
            )
        return cls(
            id=data["id"],
            title=data["title"],
            fields=_fields_from_list(data["fields"], f"{path}.fields"),
            description=data.get("description"),
            on_next=data.get("onNext"),
            on_previous=data.get("onPrevious"),
            extra=_split_extra(data, _STEP_KEYS),
        )


_SCHEMA_KEYS = ("id", "title", "description", "version", "fields", "steps")


@dataclass(frozen=True)
class FormSchema:
    """A complete form: either a flat field list or an ordered list of steps.

    When ``steps`` is non-empty the flat ``fields`` list is ignored.

    Examples:
        >>> schema = FormSchema.from_dict({
        ...     "id": "contact", "title": "Contact",
        ...     "fields": [{"id": "name", "name": "name", "type": "text", "required": True}],
        ... })
        >>> schema.is_stepped
        False
        >>> [f.id for f in schema.all_fields()]
        ['name']
    """
    id: str
    title: str
    fields: Tuple[FieldDefinition, ...] = ()
    steps: Tuple[FormStep, ...] = ()
    description: Optional[str] = None
    version: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_stepped(self) -> bool:
        return len(self.steps) > 0

    def fields_for_step(self, index: int) -> Tuple[FieldDefinition, ...]:
        """Fields in effect at a step index (the flat list for flat schemas)."""
        if not self.is_stepped:
            return self.fields
        if 0 <= index < len(self.steps):
            return self.steps[index].fields
        return ()

    def all_fields(self) -> List[FieldDefinition]:
        """Every field in the schema, in declaration order."""
        if self.is_stepped:
            return [f for step in self.steps for f in step.fields]
        return list(self.fields)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
        }
        if self.description is not None:
            result["description"] = self.description
        if self.version is not None:
            result["version"] = self.version
        if self.steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        else:
            result["fields"] = [f.to_dict() for f in self.fields]
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormSchema":
        """Create FormSchema from a schema document.

        Raises:
            SchemaShapeError: If the document is malformed
        """
        for key in ("id", "title"):
            if not data.get(key):
                raise SchemaShapeError(
                    f"Schema is missing required property '{key}'",
                    path="",
                    missing_property=key,
                )
        if data.get("fields") is None and data.get("steps") is None:
            raise SchemaShapeError(
                "Schema must have either fields or steps",
                path="",
                missing_property="fields",
            )
        steps = tuple(
            FormStep.from_dict(s, f"steps[{i}]") for i, s in enumerate(data.get("steps") or [])
        )
        fields = _fields_from_list(data.get("fields") or [], "fields")
        return cls(
            id=data["id"],
            title=data["title"],
            fields=fields,
            steps=steps,
            description=data.get("description"),
            version=data.get("version"),
            extra=_split_extra(data, _SCHEMA_KEYS),
        )


__all__ = [
    "FieldKind",
    "ConditionalOperator",
    "RuleAction",
    "ValidationRuleType",
    "FieldErrorCode",
    "EventType",
    "ConditionalRule",
    "ValidationRule",
    "SemanticValidationConfig",
    "FieldDefinition",
    "FormStep",
    "FormSchema",
]
