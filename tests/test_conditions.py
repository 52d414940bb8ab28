"""Unit tests for conditional rule evaluation and field-state resolution.

Tests cover:
- Every operator, including coercion and strict-equality edge cases
- Dangling subject references
- isEmpty/isNotEmpty negation
- Folding several rules into visible/enabled/required
- Order independence of resolution
"""

import itertools

import pytest

from formstate.conditions import FieldAccess, dangling_subjects, evaluate, is_empty, resolve, visible_field_ids
from formstate.types import ConditionalOperator, ConditionalRule, FieldDefinition, FieldKind, RuleAction


def rule(operator, value=None, action=RuleAction.SHOW, subject="subject"):
    return ConditionalRule(subject_field_id=subject, operator=operator, value=value, action=action)


class TestEquality:
    """Test equals / notEquals."""

    def test_equals_same_value(self):
        assert evaluate(rule(ConditionalOperator.EQUALS, "new"), {"subject": "new"}) is True

    def test_equals_different_value(self):
        assert evaluate(rule(ConditionalOperator.EQUALS, "new"), {"subject": "existing"}) is False

    def test_equals_is_type_strict(self):
        """A string never equals a number and a bool never equals an int."""
        assert evaluate(rule(ConditionalOperator.EQUALS, 5), {"subject": "5"}) is False
        assert evaluate(rule(ConditionalOperator.EQUALS, 1), {"subject": True}) is False
        assert evaluate(rule(ConditionalOperator.EQUALS, True), {"subject": True}) is True

    def test_equals_int_and_float(self):
        assert evaluate(rule(ConditionalOperator.EQUALS, 5), {"subject": 5.0}) is True

    def test_not_equals_is_negation(self):
        for subject in ["new", "existing", 5, None, True]:
            eq = evaluate(rule(ConditionalOperator.EQUALS, "new"), {"subject": subject})
            ne = evaluate(rule(ConditionalOperator.NOT_EQUALS, "new"), {"subject": subject})
            assert eq is not ne


class TestContains:
    """Test contains on strings and sequences."""

    def test_substring(self):
        assert evaluate(rule(ConditionalOperator.CONTAINS, "corp"), {"subject": "acme corp"}) is True

    def test_sequence_membership(self):
        assert evaluate(rule(ConditionalOperator.CONTAINS, "b"), {"subject": ["a", "b"]}) is True
        assert evaluate(rule(ConditionalOperator.CONTAINS, "c"), {"subject": ["a", "b"]}) is False

    def test_non_container_is_false(self):
        assert evaluate(rule(ConditionalOperator.CONTAINS, 1), {"subject": 12}) is False
        assert evaluate(rule(ConditionalOperator.CONTAINS, "x"), {"subject": None}) is False


class TestNumericComparison:
    """Test greaterThan / lessThan coercion."""

    def test_greater_than(self):
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, 18), {"subject": 25}) is True
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, 18), {"subject": 18}) is False

    def test_less_than(self):
        assert evaluate(rule(ConditionalOperator.LESS_THAN, 18), {"subject": 10}) is True

    def test_numeric_strings_are_coerced(self):
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, "10"), {"subject": "25"}) is True

    def test_non_numeric_is_false_both_ways(self):
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, 18), {"subject": "n/a"}) is False
        assert evaluate(rule(ConditionalOperator.LESS_THAN, 18), {"subject": "n/a"}) is False
        assert evaluate(rule(ConditionalOperator.LESS_THAN, 18), {"subject": None}) is False

    @pytest.mark.parametrize("text", ["1_000", "inf", "-inf", "nan ", "Infinity", "0x10", "1e"])
    def test_python_only_numeric_spellings_do_not_coerce(self, text):
        """Strings float() would accept but are not plain decimals compare false."""
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, 0), {"subject": text}) is False
        assert evaluate(rule(ConditionalOperator.LESS_THAN, 0), {"subject": text}) is False

    @pytest.mark.parametrize("text, expected", [(" 42 ", True), ("1e3", True), (".5", False), ("-7", False), ("12.", True)])
    def test_plain_decimal_strings_coerce(self, text, expected):
        assert evaluate(rule(ConditionalOperator.GREATER_THAN, 10), {"subject": text}) is expected


class TestUnknownRules:
    """Test rules whose operator or action is not recognised."""

    def test_unknown_operator_is_false(self):
        assert evaluate(rule("startsWith", "x"), {"subject": "xyz"}) is False

    def test_unknown_action_changes_nothing(self):
        flash = rule(ConditionalOperator.EQUALS, "x", action="flash")
        assert resolve([flash], {"subject": "x"}) == FieldAccess()

    def test_unknown_operator_cannot_show(self):
        """A show rule that can never be met hides its field."""
        show = rule("startsWith", "x", RuleAction.SHOW)
        assert resolve([show], {"subject": "xyz"}).visible is False

    def test_from_dict_keeps_raw_values(self):
        data = {"fieldId": "subject", "operator": "startsWith", "value": "x", "action": "flash"}
        parsed = ConditionalRule.from_dict(data)
        assert parsed.operator == "startsWith"
        assert parsed.action == "flash"
        assert parsed.to_dict() == data

    def test_from_dict_still_parses_known_values(self):
        parsed = ConditionalRule.from_dict({"fieldId": "subject", "operator": "isEmpty", "action": "hide"})
        assert parsed.operator is ConditionalOperator.IS_EMPTY
        assert parsed.action is RuleAction.HIDE


class TestEmptiness:
    """Test isEmpty / isNotEmpty."""

    @pytest.mark.parametrize("value", [None, "", [], {}, False])
    def test_empty_values(self, value):
        assert is_empty(value) is True

    @pytest.mark.parametrize("value", [0, 0.0, "a", ["a"], True, 42])
    def test_non_empty_values(self, value):
        assert is_empty(value) is False

    @pytest.mark.parametrize("value", [None, "", [], False, 0, "text", ["x"], True, 3.5])
    def test_is_not_empty_is_exact_negation(self, value):
        empty = evaluate(rule(ConditionalOperator.IS_EMPTY), {"subject": value})
        not_empty = evaluate(rule(ConditionalOperator.IS_NOT_EMPTY), {"subject": value})
        assert empty is not not_empty


class TestDanglingSubjects:
    """Test rules that reference fields that do not exist."""

    def test_missing_subject_is_never_met(self):
        for operator in ConditionalOperator:
            assert evaluate(rule(operator, "x", subject="ghost"), {"subject": "x"}) is False

    def test_dangling_show_rule_hides(self):
        assert resolve([rule(ConditionalOperator.IS_EMPTY, subject="ghost")], {}).visible is False

    def test_dangling_subjects_reported(self):
        fields = [
            FieldDefinition(id="a", name="a", kind=FieldKind.TEXT),
            FieldDefinition(
                id="b", name="b", kind=FieldKind.TEXT,
                conditional_rules=(
                    rule(ConditionalOperator.EQUALS, "x", subject="a"),
                    rule(ConditionalOperator.EQUALS, "x", subject="ghost"),
                    rule(ConditionalOperator.IS_EMPTY, subject="ghost"),
                ),
            ),
        ]
        assert dangling_subjects(fields) == ["ghost"]


class TestResolve:
    """Test folding rules into FieldAccess."""

    def test_no_rules_defaults(self):
        assert resolve([], {}) == FieldAccess(visible=True, enabled=True, required=False)
        assert resolve(None, {}) == FieldAccess()

    def test_customer_type_scenario(self):
        """howHeard is shown only to new customers."""
        show_if_new = rule(ConditionalOperator.EQUALS, "new", RuleAction.SHOW, subject="customerType")
        assert resolve([show_if_new], {"customerType": "existing"}).visible is False
        assert resolve([show_if_new], {"customerType": "new"}).visible is True

    def test_hide_and_disable(self):
        hide = rule(ConditionalOperator.EQUALS, "yes", RuleAction.HIDE)
        disable = rule(ConditionalOperator.EQUALS, "yes", RuleAction.DISABLE)
        access = resolve([hide, disable], {"subject": "yes"})
        assert access.visible is False
        assert access.enabled is False

    def test_enable_requires_condition(self):
        enable = rule(ConditionalOperator.IS_NOT_EMPTY, action=RuleAction.ENABLE)
        assert resolve([enable], {"subject": ""}).enabled is False
        assert resolve([enable], {"subject": "x"}).enabled is True

    def test_require(self):
        require = rule(ConditionalOperator.GREATER_THAN, 100, RuleAction.REQUIRE)
        assert resolve([require], {"subject": 150}).required is True
        assert resolve([require], {"subject": 50}).required is False

    def test_later_rule_cannot_undo_earlier_hide(self):
        hide = rule(ConditionalOperator.EQUALS, "a", RuleAction.HIDE)
        show = rule(ConditionalOperator.EQUALS, "a", RuleAction.SHOW)
        assert resolve([hide, show], {"subject": "a"}).visible is False

    def test_resolution_is_order_independent(self):
        rules = [
            rule(ConditionalOperator.EQUALS, "a", RuleAction.SHOW),
            rule(ConditionalOperator.IS_EMPTY, action=RuleAction.HIDE, subject="other"),
            rule(ConditionalOperator.GREATER_THAN, 3, RuleAction.DISABLE, subject="count"),
            rule(ConditionalOperator.CONTAINS, "x", RuleAction.REQUIRE, subject="tags"),
            rule(ConditionalOperator.IS_NOT_EMPTY, action=RuleAction.ENABLE, subject="other"),
        ]
        value_sets = [
            {"subject": "a", "other": "", "count": 5, "tags": ["x"]},
            {"subject": "b", "other": "set", "count": 1, "tags": []},
            {"subject": "a", "other": "set", "count": 4, "tags": ["y", "x"]},
        ]
        for values in value_sets:
            expected = resolve(rules, values)
            for permutation in itertools.permutations(rules):
                assert resolve(list(permutation), values) == expected


class TestVisibleFieldIds:
    """Test visibility filtering over a field list."""

    def test_filters_hidden_fields(self):
        fields = [
            FieldDefinition(id="customerType", name="customerType", kind=FieldKind.RADIO),
            FieldDefinition(
                id="howHeard", name="howHeard", kind=FieldKind.TEXT,
                conditional_rules=(rule(ConditionalOperator.EQUALS, "new", subject="customerType"),),
            ),
        ]
        assert visible_field_ids(fields, {"customerType": "existing"}) == ["customerType"]
        assert visible_field_ids(fields, {"customerType": "new"}) == ["customerType", "howHeard"]
