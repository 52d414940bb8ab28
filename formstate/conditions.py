"""Conditional rule evaluation and field-state resolution.

``evaluate`` decides whether a single ConditionalRule's condition holds for
the current values. ``resolve`` folds every rule attached to a field into a
FieldAccess (visible / enabled / required).

Values passed here are keyed by field id. A rule whose subject id is absent
from the mapping is a dangling reference and its condition is never met.

Emptiness: None, "", False and empty sequences/mappings are empty. Numbers
(including 0) are never empty, so ``isNotEmpty`` is the exact negation of
``isEmpty`` for every present value.

Numeric operators coerce strings only when they spell a plain decimal number
(surrounding whitespace allowed). Python-only spellings such as "1_000",
"inf" or "nan" do not coerce, so comparisons against them are false.

A rule whose operator or action is not recognised is kept as-is: its
condition never holds and it changes nothing when resolved.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from formstate.types import ConditionalOperator, ConditionalRule, FieldDefinition, RuleAction


_MISSING = object()

# plain decimal or exponent notation; rejects "1_000", "inf", "nan" and hex
_NUMERIC_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class FieldAccess:
    """Visibility, enablement and requiredness derived from conditional rules."""
    visible: bool = True
    enabled: bool = True
    required: bool = False


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _strict_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_RE.fullmatch(text):
            return float(text)
        return math.nan
    return math.nan


def is_empty(value: Any) -> bool:
    """Emptiness test shared by the isEmpty/isNotEmpty operators."""
    if value is None:
        return True
    if _is_sequence(value) or isinstance(value, (dict, str)):
        return len(value) == 0
    if isinstance(value, bool):
        return not value
    return False


def evaluate(rule: ConditionalRule, values: Mapping[str, Any]) -> bool:
    """Evaluate a rule's condition against the current values.

    Never raises: unknown operators, dangling subjects and non-numeric
    comparisons all evaluate to False.

    Examples:
        >>> rule = ConditionalRule("age", ConditionalOperator.GREATER_THAN, 18)
        >>> evaluate(rule, {"age": 25})
        True
        >>> evaluate(rule, {"age": "n/a"})
        False
    """
    subject = values.get(rule.subject_field_id, _MISSING)
    if subject is _MISSING:
        return False

    operator = rule.operator
    expected = rule.value

    if operator == ConditionalOperator.EQUALS:
        return _strict_equals(subject, expected)

    if operator == ConditionalOperator.NOT_EQUALS:
        return not _strict_equals(subject, expected)

    if operator == ConditionalOperator.CONTAINS:
        if isinstance(subject, str):
            return isinstance(expected, str) and expected in subject
        if _is_sequence(subject):
            return any(_strict_equals(item, expected) for item in subject)
        return False

    if operator == ConditionalOperator.GREATER_THAN:
        # NaN compares False both ways
        return _to_number(subject) > _to_number(expected)

    if operator == ConditionalOperator.LESS_THAN:
        return _to_number(subject) < _to_number(expected)

    if operator == ConditionalOperator.IS_EMPTY:
        return is_empty(subject)

    if operator == ConditionalOperator.IS_NOT_EMPTY:
        return not is_empty(subject)

    return False


def resolve(
    rules: Optional[Sequence[ConditionalRule]],
    values: Mapping[str, Any],
) -> FieldAccess:
    """Fold a field's conditional rules into its derived access state.

    Every rule is evaluated. Each output only ever moves toward its more
    restrictive value (hidden, disabled, required), so the result does not
    depend on rule order. The field's static ``required`` flag is not
    applied here.

    Examples:
        >>> show_if_new = ConditionalRule("customerType", ConditionalOperator.EQUALS, "new", RuleAction.SHOW)
        >>> resolve([show_if_new], {"customerType": "existing"}).visible
        False
        >>> resolve([], {})
        FieldAccess(visible=True, enabled=True, required=False)
    """
    visible = True
    enabled = True
    required = False

    for rule in rules or ():
        met = evaluate(rule, values)
        action = rule.action
        if action == RuleAction.SHOW:
            if not met:
                visible = False
        elif action == RuleAction.HIDE:
            if met:
                visible = False
        elif action == RuleAction.ENABLE:
            if not met:
                enabled = False
        elif action == RuleAction.DISABLE:
            if met:
                enabled = False
        elif action == RuleAction.REQUIRE:
            if met:
                required = True

    return FieldAccess(visible=visible, enabled=enabled, required=required)


def visible_field_ids(
    fields: Iterable[FieldDefinition],
    values: Mapping[str, Any],
) -> List[str]:
    """Ids of the given fields whose rules currently leave them visible."""
    return [f.id for f in fields if resolve(f.conditional_rules, values).visible]


def dangling_subjects(fields: Iterable[FieldDefinition]) -> List[str]:
    """Rule subject ids that reference no field in ``fields``.

    Conditions on these subjects are never met; the engine logs them once at
    construction.
    """
    fields = list(fields)
    known = {f.id for f in fields}
    missing: List[str] = []
    for f in fields:
        for rule in f.conditional_rules:
            if rule.subject_field_id not in known and rule.subject_field_id not in missing:
                missing.append(rule.subject_field_id)
    return missing


__all__ = [
    "FieldAccess",
    "evaluate",
    "resolve",
    "is_empty",
    "visible_field_ids",
    "dangling_subjects",
]
