"""formstate: declarative form rendering core.

formstate turns a declarative form schema into live runtime state:
- Conditional rules that show, hide, enable, disable or require fields
- Structural validation compiled from each field's kind and declared rules
- Optional, fail-open semantic validation through an external text-analysis service
- Multi-step navigation with validation and guard vetoes
- Schema export/import as JSON or YAML with shape checking

Basic usage:
    >>> import asyncio
    >>> from formstate import FormStateEngine
    >>> schema = {
    ...     "id": "signup",
    ...     "title": "Sign up",
    ...     "fields": [
    ...         {"id": "username", "name": "username", "type": "text", "label": "Username",
    ...          "validation": [{"type": "min", "value": 3}]},
    ...     ],
    ... }
    >>> engine = FormStateEngine(schema)
    >>> engine.set_value("username", "ab")
    >>> asyncio.run(engine.validate_field("username"))
    False
    >>> engine.errors["username"]
    'Username must be at least 3 characters'
"""

__version__ = "0.1.0"
__author__ = "formstate maintainers"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formstate.config import EngineConfig
from formstate.engine import DerivedFieldState, FormState, FormStateEngine
from formstate.errors import (
    FieldError,
    FieldValidationError,
    FormStateError,
    SchemaShapeError,
    SemanticValidationError,
    SerializationError,
    SubmissionError,
)
from formstate.events import EventEmitter, FormEvent, FormHooks
from formstate.semantic import OpenAIBackend, SemanticBackend, SemanticValidator
from formstate.serialization import deserialize, load_schema, serialize, validate_shape
from formstate.types import EventType, FieldDefinition, FieldKind, FormSchema, FormStep

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "EngineConfig",
    "FormStateEngine",
    "FormState",
    "DerivedFieldState",
    "FieldError",
    "FormStateError",
    "SchemaShapeError",
    "SerializationError",
    "FieldValidationError",
    "SemanticValidationError",
    "SubmissionError",
    "EventEmitter",
    "EventType",
    "FormEvent",
    "FormHooks",
    "SemanticBackend",
    "SemanticValidator",
    "OpenAIBackend",
    "FieldDefinition",
    "FieldKind",
    "FormSchema",
    "FormStep",
    "serialize",
    "deserialize",
    "validate_shape",
    "load_schema",
]
