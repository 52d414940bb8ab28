"""Unit tests for the structural validation engine.

Tests cover:
- Kind to base type mapping and type errors
- Required handling, including blank values on optional fields
- Email and URL formats
- min/max on strings, numbers, multi-selects and dates
- pattern and custom (sync and async) predicates
- Rule ordering (first failure wins)
- TypedSchema outcomes and duplicate names
"""

import asyncio
import datetime

import pytest

from formstate.errors import FieldValidationError, SchemaShapeError
from formstate.types import FieldDefinition, FieldErrorCode, FieldKind, ValidationRule, ValidationRuleType
from formstate.validation import (
    BaseType,
    KIND_BASE_TYPES,
    StringFormat,
    build_field_schema,
    build_schema,
    validate,
)


def make_field(kind=FieldKind.TEXT, name="field", label="Field", required=False, rules=()):
    return FieldDefinition(
        id=name, name=name, kind=kind, label=label, required=required, validation=tuple(rules),
    )


def check(field_def, value, force_required=False):
    return asyncio.run(build_field_schema(field_def).check(value, force_required=force_required))


class TestBaseTypes:
    """Test the kind to base type mapping."""

    def test_every_kind_is_mapped(self):
        assert set(KIND_BASE_TYPES) == set(FieldKind)

    @pytest.mark.parametrize("kind,expected", [
        (FieldKind.SWITCH, BaseType.BOOLEAN),
        (FieldKind.RATING, BaseType.NUMBER),
        (FieldKind.COLOR, BaseType.STRING),
        (FieldKind.SIGNATURE, BaseType.STRING),
        (FieldKind.MULTI_SELECT, BaseType.STRING_ARRAY),
        (FieldKind.CUSTOM, BaseType.ANY),
    ])
    def test_kind_mapping(self, kind, expected):
        assert KIND_BASE_TYPES[kind][0] == expected

    def test_email_kind_has_format(self):
        assert KIND_BASE_TYPES[FieldKind.EMAIL] == (BaseType.STRING, StringFormat.EMAIL)

    def test_number_rejects_string(self):
        error = check(make_field(FieldKind.NUMBER), "12")
        assert error.code == FieldErrorCode.INVALID_TYPE
        assert error.message == "Expected number, received string"

    def test_number_rejects_bool(self):
        assert check(make_field(FieldKind.NUMBER), True).code == FieldErrorCode.INVALID_TYPE

    def test_checkbox_accepts_bool(self):
        assert check(make_field(FieldKind.CHECKBOX), True) is None

    def test_multi_select_requires_string_list(self):
        assert check(make_field(FieldKind.MULTI_SELECT), ["a", "b"]) is None
        assert check(make_field(FieldKind.MULTI_SELECT), ["a", 1]).code == FieldErrorCode.INVALID_TYPE

    def test_file_accepts_bytes(self):
        assert check(make_field(FieldKind.FILE), b"data") is None

    def test_custom_accepts_anything(self):
        assert check(make_field(FieldKind.CUSTOM), {"any": "thing"}) is None


class TestRequired:
    """Test presence and requiredness."""

    def test_required_missing(self):
        error = check(make_field(label="Email", required=True), None)
        assert error.code == FieldErrorCode.REQUIRED
        assert error.message == "Email is required"

    def test_required_blank_string(self):
        assert check(make_field(required=True), "").code == FieldErrorCode.REQUIRED

    def test_required_empty_list(self):
        assert check(make_field(FieldKind.CHECKBOX_GROUP, required=True), []).code == FieldErrorCode.REQUIRED

    def test_optional_absent_passes(self):
        assert check(make_field(FieldKind.NUMBER), None) is None

    def test_optional_blank_string_still_checked(self):
        """Only None is absent; an optional "" is still held to its rules."""
        field_def = make_field(label="Username", rules=[ValidationRule(ValidationRuleType.MIN, 3)])
        assert check(field_def, "").code == FieldErrorCode.TOO_SHORT

    def test_optional_blank_email_is_invalid(self):
        assert check(make_field(FieldKind.EMAIL), "").code == FieldErrorCode.INVALID_FORMAT

    def test_optional_empty_selection_still_checked(self):
        field_def = make_field(FieldKind.MULTI_SELECT, rules=[ValidationRule(ValidationRuleType.MIN, 1)])
        error = check(field_def, [])
        assert error.code == FieldErrorCode.TOO_SHORT
        assert error.message == "Select at least 1 options"

    def test_optional_blank_without_rules_passes(self):
        assert check(make_field(), "") is None

    def test_required_rule_with_message(self):
        field_def = make_field(rules=[ValidationRule(ValidationRuleType.REQUIRED, message="Tell us")])
        schema = build_field_schema(field_def)
        assert schema.required is True
        assert check(field_def, None).message == "Tell us"

    def test_force_required(self):
        assert check(make_field(), None, force_required=True).code == FieldErrorCode.REQUIRED

    def test_label_falls_back_to_name(self):
        field_def = FieldDefinition(id="zip", name="zip", kind=FieldKind.TEXT, required=True)
        assert check(field_def, None).message == "zip is required"


class TestFormats:
    """Test email and URL formats."""

    def test_valid_email(self):
        assert check(make_field(FieldKind.EMAIL), "ada@example.com") is None

    @pytest.mark.parametrize("value", ["not-an-email", "a@b", "a b@example.com"])
    def test_invalid_email(self, value):
        error = check(make_field(FieldKind.EMAIL), value)
        assert error.code == FieldErrorCode.INVALID_FORMAT
        assert error.message == "Invalid email format"

    def test_valid_url(self):
        assert check(make_field(FieldKind.URL), "https://example.com/path") is None

    def test_invalid_url(self):
        assert check(make_field(FieldKind.URL), "example").message == "Invalid URL format"


class TestBounds:
    """Test min/max on each base type."""

    def test_string_min_length(self):
        field_def = make_field(label="Username", rules=[ValidationRule(ValidationRuleType.MIN, 3)])
        error = check(field_def, "ab")
        assert error.code == FieldErrorCode.TOO_SHORT
        assert error.message == "Username must be at least 3 characters"
        assert check(field_def, "abc") is None

    def test_string_max_length(self):
        field_def = make_field(label="Bio", rules=[ValidationRule(ValidationRuleType.MAX, 5)])
        assert check(field_def, "toolong").message == "Bio must be at most 5 characters"

    def test_number_bounds(self):
        field_def = make_field(
            FieldKind.NUMBER, label="Age",
            rules=[ValidationRule(ValidationRuleType.MIN, 18), ValidationRule(ValidationRuleType.MAX, 120)],
        )
        assert check(field_def, 17).message == "Age must be at least 18"
        assert check(field_def, 121).code == FieldErrorCode.TOO_LARGE
        assert check(field_def, 18) is None

    def test_zero_is_a_present_number(self):
        field_def = make_field(FieldKind.NUMBER, required=True, rules=[ValidationRule(ValidationRuleType.MIN, 1)])
        assert check(field_def, 0).code == FieldErrorCode.TOO_SMALL

    def test_array_count(self):
        field_def = make_field(FieldKind.CHECKBOX_GROUP, rules=[ValidationRule(ValidationRuleType.MIN, 2)])
        assert check(field_def, ["a"]).message == "Select at least 2 options"
        assert check(field_def, ["a", "b"]) is None

    def test_custom_message(self):
        field_def = make_field(rules=[ValidationRule(ValidationRuleType.MIN, 3, message="Too short!")])
        assert check(field_def, "a").message == "Too short!"

    def test_date_bounds(self):
        field_def = make_field(FieldKind.DATE, rules=[ValidationRule(ValidationRuleType.MIN, "2024-01-01")])
        assert check(field_def, "2024-06-01") is None
        assert check(field_def, datetime.date(2023, 12, 31)).code == FieldErrorCode.TOO_SMALL

    def test_time_bounds(self):
        field_def = make_field(FieldKind.TIME, rules=[ValidationRule(ValidationRuleType.MAX, "17:00")])
        assert check(field_def, "09:30") is None
        assert check(field_def, "18:15").code == FieldErrorCode.TOO_LARGE

    def test_unparseable_date_value(self):
        field_def = make_field(FieldKind.DATE, rules=[ValidationRule(ValidationRuleType.MIN, "2024-01-01")])
        assert check(field_def, "someday").code == FieldErrorCode.INVALID_FORMAT

    def test_bad_bound_fails_at_build_time(self):
        field_def = make_field(FieldKind.NUMBER, rules=[ValidationRule(ValidationRuleType.MIN, "lots")])
        with pytest.raises(SchemaShapeError):
            build_field_schema(field_def)


class TestPatternAndCustom:
    """Test pattern and custom predicates."""

    def test_pattern(self):
        field_def = make_field(label="Code", rules=[ValidationRule(ValidationRuleType.PATTERN, r"^[A-Z]{3}$")])
        assert check(field_def, "ABC") is None
        error = check(field_def, "abc")
        assert error.code == FieldErrorCode.INVALID_FORMAT
        assert error.message == "Code format is invalid"

    def test_sync_custom(self):
        field_def = make_field(rules=[
            ValidationRule(ValidationRuleType.CUSTOM, validator=lambda v: v != "admin", message="Reserved"),
        ])
        assert check(field_def, "admin").message == "Reserved"
        assert check(field_def, "ada") is None

    def test_async_custom(self):
        async def available(value):
            await asyncio.sleep(0)
            return value not in {"taken"}

        field_def = make_field(rules=[ValidationRule(ValidationRuleType.CUSTOM, validator=available)])
        error = check(field_def, "taken")
        assert error.code == FieldErrorCode.CUSTOM
        assert error.message == "Validation failed"

    def test_raising_custom_fails_the_check(self):
        def broken(value):
            raise RuntimeError("boom")

        field_def = make_field(rules=[ValidationRule(ValidationRuleType.CUSTOM, validator=broken)])
        assert check(field_def, "x").code == FieldErrorCode.CUSTOM

    def test_first_failure_wins(self):
        field_def = make_field(rules=[
            ValidationRule(ValidationRuleType.MIN, 5, message="first"),
            ValidationRule(ValidationRuleType.PATTERN, r"^\d+$", message="second"),
        ])
        assert check(field_def, "ab").message == "first"
        assert check(field_def, "abcdef").message == "second"

    def test_type_check_precedes_rules(self):
        field_def = make_field(FieldKind.NUMBER, rules=[ValidationRule(ValidationRuleType.MIN, 5)])
        assert check(field_def, "x").code == FieldErrorCode.INVALID_TYPE


class TestTypedSchema:
    """Test whole-schema validation."""

    def _schema(self):
        return build_schema([
            make_field(name="name", label="Name", required=True),
            make_field(FieldKind.EMAIL, name="email", label="Email"),
            make_field(FieldKind.NUMBER, name="age", label="Age"),
        ])

    def test_success(self):
        outcome = asyncio.run(validate({"name": "Ada", "email": "ada@example.com"}, self._schema()))
        assert outcome.success is True
        assert outcome.errors == []
        assert outcome.data == {"name": "Ada", "email": "ada@example.com"}

    def test_one_error_per_field(self):
        outcome = asyncio.run(validate({"email": "bad", "age": "old"}, self._schema()))
        assert outcome.success is False
        assert outcome.field_errors == {
            "name": "Name is required",
            "email": "Invalid email format",
            "age": "Expected number, received string",
        }
        assert outcome.missing_fields == ["name"]
        assert outcome.invalid_fields == ["email", "age"]

    def test_only_and_required(self):
        outcome = asyncio.run(self._schema().validate({}, only=["email"], required={"email"}))
        assert outcome.field_errors == {"email": "Email is required"}

    def test_raise_for_errors(self):
        outcome = asyncio.run(validate({}, self._schema()))
        with pytest.raises(FieldValidationError) as exc_info:
            outcome.raise_for_errors()
        assert exc_info.value.errors[0].path == "name"

    def test_to_dict(self):
        outcome = asyncio.run(validate({}, self._schema()))
        data = outcome.to_dict()
        assert data["success"] is False
        assert data["errors"][0]["code"] == "required"

    def test_duplicate_names_last_wins(self, caplog):
        schema = build_schema([
            make_field(name="contact", label="Phone"),
            make_field(FieldKind.EMAIL, name="contact", label="Email"),
        ])
        assert schema.duplicate_names == ("contact",)
        assert schema.fields["contact"].base_type == BaseType.STRING
        assert schema.fields["contact"].string_format == StringFormat.EMAIL
        assert "declared by fields" in caplog.text
