"""Schema export/import for formstate.

Schemas are exchanged as UTF-8 text in one of two encodings of the same
document tree:

- JSON, pretty-printed (2-space indent) or minified to a single line
- YAML, block style with every string quoted

``deserialize`` accepts either encoding. The shape of a document (not its
values) is checked against a JSON Schema with the jsonschema library; the
first problem found is reported as a SchemaShapeError naming the missing
property and its location.

Round trip: for any document that passes ``validate_shape``,
``deserialize(serialize(doc)) == doc`` in every format.
"""

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Tuple, Union

import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

from formstate.errors import SchemaShapeError, SerializationError
from formstate.types import FormSchema

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("json", "yaml")
DEFAULT_SCHEMA_VERSION = "1.0.0"

_NON_EMPTY_STRING = {"type": "string", "minLength": 1}

FORM_SCHEMA_SHAPE: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "title"],
    "properties": {
        "id": _NON_EMPTY_STRING,
        "title": _NON_EMPTY_STRING,
        "fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
        "steps": {"type": "array", "items": {"$ref": "#/definitions/step"}},
    },
    "definitions": {
        "field": {
            "type": "object",
            "required": ["id", "name"],
            "anyOf": [{"required": ["kind"]}, {"required": ["type"]}],
            "properties": {
                "id": _NON_EMPTY_STRING,
                "name": _NON_EMPTY_STRING,
                "kind": _NON_EMPTY_STRING,
                "type": _NON_EMPTY_STRING,
                "validation": {"type": "array", "items": {"type": "object"}},
                "conditionalRules": {"type": "array", "items": {"type": "object"}},
            },
        },
        "step": {
            "type": "object",
            "required": ["id", "title", "fields"],
            "properties": {
                "id": _NON_EMPTY_STRING,
                "title": _NON_EMPTY_STRING,
                "fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
            },
        },
    },
}

_SHAPE_VALIDATOR = Draft7Validator(FORM_SCHEMA_SHAPE)


class _QuotedDumper(yaml.SafeDumper):
    """SafeDumper that double-quotes every string scalar."""


def _represent_quoted_str(dumper: yaml.SafeDumper, value: str) -> yaml.Node:
    return dumper.represent_scalar("tag:yaml.org,2002:str", value, style='"')


_QuotedDumper.add_representer(str, _represent_quoted_str)


def _format_path(parts) -> str:
    path = ""
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def _error_sort_key(error: ValidationError) -> Tuple:
    parts = tuple((0, p) if isinstance(p, int) else (1, p) for p in error.absolute_path)
    # report missing properties before other problems at the same node
    return (len(parts), parts, 0 if error.validator in ("required", "anyOf") else 1)


def _translate_error(error: ValidationError) -> SchemaShapeError:
    path = _format_path(error.absolute_path)
    where = path or "schema root"
    if error.validator == "required":
        missing = error.message.split("'")[1] if "'" in error.message else None
        return SchemaShapeError(
            f"{where} is missing required property '{missing}'",
            path=path,
            missing_property=missing,
        )
    if error.validator == "anyOf":
        # every alternative is a required-property check; name the first
        missing = error.validator_value[0]["required"][0]
        return SchemaShapeError(
            f"{where} is missing required property '{missing}'",
            path=path,
            missing_property=missing,
        )
    if error.validator == "minLength":
        prop = error.absolute_path[-1] if error.absolute_path else None
        parent = _format_path(list(error.absolute_path)[:-1]) or "schema root"
        return SchemaShapeError(
            f"{parent} is missing required property '{prop}'",
            path=_format_path(list(error.absolute_path)[:-1]),
            missing_property=prop if isinstance(prop, str) else None,
        )
    return SchemaShapeError(f"{where}: {error.message}", path=path)


def validate_shape(document: Any) -> None:
    """Check that a schema document has the properties every consumer needs.

    Required: ``id`` and ``title`` and either ``fields`` or ``steps`` at the
    top level; ``id``, ``name`` and a ``kind`` (or its alias ``type``) on
    every field; ``id``/``title``/``fields`` on every step.

    Raises:
        SchemaShapeError: Identifying the first problem found

    Examples:
        >>> validate_shape({"id": "f", "title": "T", "fields": []})
        >>> validate_shape({"id": "f", "fields": []})
        Traceback (most recent call last):
        ...
        formstate.errors.SchemaShapeError: schema root is missing required property 'title'
    """
    if not isinstance(document, dict):
        raise SchemaShapeError(
            f"Schema must be an object, got {type(document).__name__}",
            path="",
        )

    errors = sorted(_SHAPE_VALIDATOR.iter_errors(document), key=_error_sort_key)
    top_level = [e for e in errors if not e.absolute_path]
    if top_level:
        raise _translate_error(top_level[0])

    if "fields" not in document and "steps" not in document:
        raise SchemaShapeError(
            "Schema must have either fields or steps",
            path="",
            missing_property="fields",
        )

    if errors:
        raise _translate_error(errors[0])


def _export_document(schema: Union[FormSchema, Dict[str, Any]], include_metadata: bool) -> Dict[str, Any]:
    document = schema.to_dict() if isinstance(schema, FormSchema) else copy.deepcopy(schema)
    if include_metadata:
        document["metadata"] = {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "version": document.get("version") or DEFAULT_SCHEMA_VERSION,
        }
    return document


def serialize(
    schema: Union[FormSchema, Dict[str, Any]],
    format: str = "json",
    minify: bool = False,
    include_metadata: bool = False,
) -> str:
    """Encode a schema as text.

    Args:
        schema: A FormSchema model or a schema document
        format: "json" or "yaml"
        minify: For JSON, emit a single line with no extra whitespace
        include_metadata: Add ``metadata: {exportedAt, version}``

    Raises:
        SerializationError: If the format is unknown or the document holds
            values that cannot be encoded

    Examples:
        >>> serialize({"id": "f", "title": "T", "fields": []}, minify=True)
        '{"id":"f","title":"T","fields":[]}'
    """
    if format not in SUPPORTED_FORMATS:
        raise SerializationError(
            f"Unsupported export format '{format}'. Expected one of: {', '.join(SUPPORTED_FORMATS)}",
            format=format,
        )
    document = _export_document(schema, include_metadata)

    try:
        if format == "json":
            if minify:
                return json.dumps(document, separators=(",", ":"), ensure_ascii=False)
            return json.dumps(document, indent=2, ensure_ascii=False)
        return yaml.dump(
            document,
            Dumper=_QuotedDumper,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    except (TypeError, ValueError, yaml.YAMLError) as exc:
        raise SerializationError(f"Schema cannot be encoded as {format}: {exc}", format=format) from exc


def deserialize(text: str, validate: bool = True) -> Dict[str, Any]:
    """Decode schema text produced by ``serialize`` (JSON or YAML).

    Args:
        text: Serialized schema
        validate: Run ``validate_shape`` on the decoded document

    Raises:
        SerializationError: If the text is not valid JSON/YAML or does not
            decode to an object
        SchemaShapeError: If ``validate`` is set and the shape is incomplete
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SerializationError("Schema text is not valid UTF-8") from exc
    if not isinstance(text, str):
        raise SerializationError(f"Schema text must be str, got {type(text).__name__}")

    fmt = "json"
    try:
        document = json.loads(text)
    except ValueError:
        fmt = "yaml"
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise SerializationError(
                "Invalid schema format. Expected valid JSON or YAML.", format=fmt
            ) from exc

    if not isinstance(document, dict):
        raise SerializationError(
            f"Invalid schema format. Expected an object, got {type(document).__name__}.",
            format=fmt,
        )

    if validate:
        validate_shape(document)
    logger.debug("Deserialized schema '%s' from %s", document.get("id"), fmt)
    return document


def load_schema(text: str) -> FormSchema:
    """Decode, shape-check and build a FormSchema model from schema text."""
    return FormSchema.from_dict(deserialize(text, validate=True))


__all__ = [
    "FORM_SCHEMA_SHAPE",
    "SUPPORTED_FORMATS",
    "serialize",
    "deserialize",
    "validate_shape",
    "load_schema",
]
