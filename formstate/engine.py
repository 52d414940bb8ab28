"""Form state engine for formstate.

This module provides the FormStateEngine class, the single source of truth for
one form instance's runtime state. It coordinates the conditional-rule
resolver, the structural validator, the optional semantic validator, the
step state machine and the event system, and exposes the mutation/query API
that rendering surfaces consume.

All mutations happen on one logical thread in response to discrete events.
The only suspension points are validation (custom predicates and semantic
checks may be asynchronous) and the external submit callback.

Usage:
    >>> import asyncio
    >>> schema = {
    ...     "id": "contact",
    ...     "title": "Contact us",
    ...     "fields": [{"id": "name", "name": "name", "type": "text", "label": "Name", "required": True}],
    ... }
    >>> engine = FormStateEngine(schema)
    >>> asyncio.run(engine.validate_form())
    False
    >>> engine.errors
    {'name': 'Name is required'}
"""

import copy
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from formstate.conditions import FieldAccess, dangling_subjects, resolve
from formstate.config import EngineConfig
from formstate.errors import SubmissionError
from formstate.events import EventEmitter, FormEvent, FormHooks
from formstate.semantic import DEFAULT_INVALID_MESSAGE, SemanticValidator
from formstate.serialization import serialize, validate_shape
from formstate.state_machine import StepStateMachine
from formstate.types import EventType, FieldDefinition, FormSchema, FormStep
from formstate.validation import FieldSchema, TypedSchema, build_field_schema, build_schema

logger = logging.getLogger(__name__)

SubmitCallback = Callable[[Dict[str, Any]], Any]
StepGuard = Callable[[int, Dict[str, Any]], Any]


@dataclass
class FormState:
    """Mutable runtime record of one form instance.

    Attributes:
        current_step_index: Active step (always 0 for flat schemas)
        values: Current values keyed by field name
        errors: Messages keyed by field id, only for currently failing fields
        touched: Touched flags keyed by field id
        is_submitting: A submission is in flight
        is_validating: At least one validation pass is in flight
        submit_count: Number of submission attempts
    """
    current_step_index: int = 0
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    touched: Dict[str, bool] = field(default_factory=dict)
    is_submitting: bool = False
    is_validating: bool = False
    submit_count: int = 0
    _pending_validations: int = field(default=0, repr=False, compare=False)
    _field_generations: Dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "currentStepIndex": self.current_step_index,
            "values": dict(self.values),
            "errors": dict(self.errors),
            "touched": dict(self.touched),
            "isSubmitting": self.is_submitting,
            "isValidating": self.is_validating,
            "submitCount": self.submit_count,
        }


@dataclass(frozen=True)
class DerivedFieldState:
    """Computed view of one field; never stored, recomputed on every query."""
    value: Any = None
    error: Optional[str] = None
    touched: bool = False
    visible: bool = False
    enabled: bool = False
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "error": self.error,
            "touched": self.touched,
            "visible": self.visible,
            "enabled": self.enabled,
            "required": self.required,
        }


async def _call_guard(guard: Callable[..., Any], *args: Any) -> bool:
    try:
        result = guard(*args)
        if inspect.isawaitable(result):
            result = await result
    except Exception:
        logger.exception("Step guard raised; advancing is vetoed")
        return False
    return bool(result)


class FormStateEngine:
    """Orchestrator for one form instance's runtime state.

    Attributes:
        schema: The immutable FormSchema this engine renders
        config: Engine configuration
        events: EventEmitter carrying every notification; hooks are listeners on it

    Examples:
        >>> schema = {
        ...     "id": "survey", "title": "Survey",
        ...     "fields": [
        ...         {"id": "customerType", "name": "customerType", "type": "radio"},
        ...         {"id": "howHeard", "name": "howHeard", "type": "text",
        ...          "conditionalRules": [{"fieldId": "customerType", "operator": "equals",
        ...                                "value": "new", "action": "show"}]},
        ...     ],
        ... }
        >>> engine = FormStateEngine(schema, initial_values={"customerType": "existing"})
        >>> engine.get_field_state("howHeard").visible
        False
        >>> engine.set_value("customerType", "new")
        >>> engine.get_field_state("howHeard").visible
        True
    """

    def __init__(
        self,
        schema: Union[FormSchema, Dict[str, Any]],
        on_submit: Optional[SubmitCallback] = None,
        hooks: Optional[FormHooks] = None,
        initial_values: Optional[Dict[str, Any]] = None,
        semantic_validator: Optional[SemanticValidator] = None,
        step_guard: Optional[StepGuard] = None,
        config: Optional[EngineConfig] = None,
    ):
        """Initialize the engine.

        Args:
            schema: A FormSchema model or a schema document
            on_submit: Callback ``(values) -> None | awaitable`` invoked once per
                successful submit
            hooks: Optional notification hooks
            initial_values: Values (keyed by field name) layered over field defaults
            semantic_validator: Capability for semantic checks. When omitted, one
                is built from ``config`` if it carries a credential; otherwise
                semantic checks are skipped
            step_guard: Optional ``(step_index, values) -> bool | awaitable[bool]``
                that can veto advancing even when validation passes. ``values``
                is keyed by field name, as for ``on_submit``
            config: Engine configuration (defaults when omitted)

        Raises:
            SchemaShapeError: If the schema is malformed
        """
        if isinstance(schema, dict):
            validate_shape(schema)
            schema = FormSchema.from_dict(schema)

        self.schema = schema
        self.config = config or EngineConfig()
        self.events = EventEmitter()
        if hooks is not None:
            hooks.attach(self.events)

        self._on_submit = on_submit
        if semantic_validator is None and self.config.semantic_api_key:
            semantic_validator = SemanticValidator.from_config(self.config)
        self._semantic = semantic_validator
        self._step_guard = step_guard
        self._steps = StepStateMachine(form_id=schema.id, step_count=len(schema.steps) or 1)

        all_fields = schema.all_fields()
        self._fields_by_id: Dict[str, FieldDefinition] = {}
        for f in all_fields:
            if f.id in self._fields_by_id:
                logger.warning(
                    "Field id '%s' appears in more than one step of form '%s'", f.id, schema.id
                )
            self._fields_by_id[f.id] = f

        # Whole-schema view, also the place duplicate names are reported
        self._typed_schema = build_schema(all_fields, warn_duplicates=self.config.warn_on_duplicate_names)
        self._step_schemas: List[TypedSchema] = [
            build_schema(self._fields_at(i), warn_duplicates=False) for i in range(self._steps.step_count)
        ]
        self._field_schemas: Dict[Tuple[int, str], FieldSchema] = {
            (i, f.id): build_field_schema(f)
            for i in range(self._steps.step_count)
            for f in self._fields_at(i)
        }

        for subject in dangling_subjects(all_fields):
            logger.warning(
                "Conditional rule in form '%s' references unknown field '%s'; its condition is never met",
                schema.id, subject,
            )

        defaults = {f.name: f.default_value for f in all_fields if f.default_value is not None}
        defaults.update(initial_values or {})
        self._initial_values = defaults
        self._state = self._fresh_state()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fresh_state(self) -> FormState:
        return FormState(values=copy.deepcopy(self._initial_values))

    def _fields_at(self, index: int) -> Tuple[FieldDefinition, ...]:
        return self.schema.fields_for_step(index)

    def _find_field(self, field_id: str) -> Optional[Tuple[int, FieldDefinition]]:
        """Locate a field, preferring the current step's definition."""
        current = self._state.current_step_index
        for f in self._fields_at(current):
            if f.id == field_id:
                return current, f
        for index in range(self._steps.step_count):
            for f in self._fields_at(index):
                if f.id == field_id:
                    return index, f
        return None

    def _values_by_id(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {f.id: values.get(f.name) for f in self._fields_by_id.values()}

    def _access(self, field_def: FieldDefinition, values: Dict[str, Any]) -> FieldAccess:
        return resolve(field_def.conditional_rules, self._values_by_id(values))

    def _emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> None:
        self.events.emit(
            FormEvent.create(event_type, self.schema.id, self._state.current_step_index, payload)
        )

    @staticmethod
    def _begin_validation(state: FormState) -> None:
        state._pending_validations += 1
        state.is_validating = True

    @staticmethod
    def _end_validation(state: FormState) -> None:
        state._pending_validations -= 1
        state.is_validating = state._pending_validations > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> FormState:
        """The live runtime record; replaced wholesale by ``reset``."""
        return self._state

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self._state.values)

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._state.errors)

    @property
    def touched(self) -> Dict[str, bool]:
        return dict(self._state.touched)

    @property
    def is_submitting(self) -> bool:
        return self._state.is_submitting

    @property
    def is_validating(self) -> bool:
        return self._state.is_validating

    @property
    def submit_count(self) -> int:
        return self._state.submit_count

    @property
    def current_step_index(self) -> int:
        return self._state.current_step_index

    @property
    def step_count(self) -> int:
        """Number of steps; a flat schema counts as a single step."""
        return self._steps.step_count

    @property
    def step_history(self) -> List[Dict[str, Any]]:
        """Step transitions since construction or the last reset, oldest first."""
        return self._steps.get_history()

    @property
    def current_step(self) -> Optional[FormStep]:
        if not self.schema.is_stepped:
            return None
        return self.schema.steps[self._state.current_step_index]

    @property
    def is_last_step(self) -> bool:
        return self._steps.can_submit_from(self._state.current_step_index)

    @property
    def current_fields(self) -> Tuple[FieldDefinition, ...]:
        """Fields in effect: the current step's, or the flat list."""
        return self._fields_at(self._state.current_step_index)

    @property
    def typed_schema(self) -> TypedSchema:
        """Structural schema across every field in the form."""
        return self._typed_schema

    def export_schema(self, format: Optional[str] = None, **options: Any) -> str:
        """Serialize the engine's schema, defaulting to the configured format."""
        return serialize(self.schema, format=format or self.config.export_format, **options)

    def visible_fields(self) -> List[str]:
        """Ids of the current fields that are visible under the current values."""
        by_id = self._values_by_id(self._state.values)
        return [f.id for f in self.current_fields if resolve(f.conditional_rules, by_id).visible]

    def get_field_state(self, field_id: str) -> DerivedFieldState:
        """Compute the derived state of a field from the current values.

        Unknown fields report an invisible, disabled, empty state.
        """
        found = self._find_field(field_id)
        if found is None:
            return DerivedFieldState()
        index, field_def = found
        state = self._state
        access = self._access(field_def, state.values)
        return DerivedFieldState(
            value=state.values.get(field_def.name),
            error=state.errors.get(field_id),
            touched=state.touched.get(field_id, False),
            visible=access.visible,
            enabled=access.enabled,
            required=access.required or self._field_schemas[(index, field_id)].required,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_value(self, field_id: str, value: Any) -> None:
        """Store a value for a field (under its submission name) and notify observers.

        Does not validate; validation is explicit (blur/submit).
        """
        found = self._find_field(field_id)
        name = found[1].name if found else field_id
        self._state.values[name] = value
        self._emit(EventType.FIELD_CHANGED, {"fieldId": field_id, "name": name, "value": value})

    def set_touched(self, field_id: str, touched: bool = True) -> None:
        self._state.touched[field_id] = touched
        self._emit(EventType.FIELD_TOUCHED, {"fieldId": field_id, "touched": touched})

    def set_error(self, field_id: str, message: Optional[str]) -> None:
        """Set or (with a falsy message) clear a field's error."""
        if message:
            self._state.errors[field_id] = message
        else:
            self._state.errors.pop(field_id, None)

    def handle_focus(self, field_id: str) -> None:
        self._emit(EventType.FIELD_FOCUSED, {"fieldId": field_id})

    async def handle_blur(self, field_id: str) -> bool:
        """Mark a field touched, notify, then validate it."""
        self.set_touched(field_id, True)
        self._emit(EventType.FIELD_BLURRED, {"fieldId": field_id})
        return await self.validate_field(field_id)

    def reset(self) -> None:
        """Replace the runtime state with a freshly initialized one."""
        self._state = self._fresh_state()
        self._steps.reset()
        self._emit(EventType.FORM_RESET)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_field(self, field_id: str) -> bool:
        """Validate one field and update exactly its entry in the errors map.

        Structural validation runs first. If it passes, the field opted into
        semantic validation, a semantic validator was supplied and the value
        is non-empty text, the semantic check runs next. Hidden fields pass
        and have their error cleared.

        If another validation of the same field starts before this one
        finishes, this result is discarded.

        Returns:
            True if the field is currently valid
        """
        found = self._find_field(field_id)
        if found is None:
            logger.debug("validate_field called for unknown field '%s'", field_id)
            return True
        index, field_def = found

        state = self._state
        generation = state._field_generations.get(field_id, 0) + 1
        state._field_generations[field_id] = generation
        values = dict(state.values)
        value = values.get(field_def.name)
        access = self._access(field_def, values)

        message: Optional[str] = None
        self._begin_validation(state)
        try:
            if access.visible:
                error = await self._field_schemas[(index, field_id)].check(
                    value, force_required=access.required
                )
                if error is not None:
                    message = error.message
                elif (
                    field_def.semantic_enabled
                    and self._semantic is not None
                    and isinstance(value, str)
                    and value.strip()
                ):
                    result = await self._semantic.check_text(value, field_def.semantic)
                    if not result["valid"]:
                        message = result.get("message") or DEFAULT_INVALID_MESSAGE
        finally:
            self._end_validation(state)

        if state is not self._state or state._field_generations.get(field_id) != generation:
            logger.debug("Discarding superseded validation of field '%s'", field_id)
            return message is None

        if message:
            state.errors[field_id] = message
        else:
            state.errors.pop(field_id, None)
        return message is None

    async def validate_form(self) -> bool:
        """Validate every applicable field and replace the errors map.

        Applicable fields are the current step's (or the flat list's) fields
        that are visible; rule-derived ``require`` is enforced alongside the
        static flag. Errors for fields that now pass are dropped.

        Returns:
            True if every applicable field passed
        """
        state = self._state
        index = state.current_step_index
        values = dict(state.values)
        by_id = self._values_by_id(values)

        names: List[str] = []
        required = set()
        id_for_name: Dict[str, str] = {}
        for f in self._fields_at(index):
            access = resolve(f.conditional_rules, by_id)
            if not access.visible:
                continue
            if f.name not in id_for_name:
                names.append(f.name)
            id_for_name[f.name] = f.id
            if access.required:
                required.add(f.name)

        self._begin_validation(state)
        try:
            outcome = await self._step_schemas[index].validate(values, only=names, required=required)
        finally:
            self._end_validation(state)

        errors = {id_for_name.get(path, path): message for path, message in outcome.field_errors.items()}
        state.errors = errors

        if outcome.success:
            self._emit(EventType.VALIDATION_PASSED, {"fields": names})
        else:
            self._emit(EventType.VALIDATION_FAILED, {"errors": dict(errors)})
        return outcome.success

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def advance_step(self) -> bool:
        """Move to the next step if the current one validates and no guard vetoes.

        Returns:
            True if the step changed
        """
        state = self._state
        index = state.current_step_index
        if not self._steps.can_advance(index):
            return False

        if not await self.validate_form():
            return False

        values = dict(state.values)
        step = self.schema.steps[index]
        if step.on_next is not None and not await _call_guard(step.on_next, values):
            logger.debug("Step '%s' guard vetoed advancing", step.id)
            return False
        if self._step_guard is not None and not await _call_guard(self._step_guard, index, values):
            logger.debug("Engine step guard vetoed advancing from step %d", index)
            return False

        # state may have been reset or moved while guards were pending
        if state is not self._state or state.current_step_index != index:
            return False

        state.current_step_index = self._steps.transition(index, index + 1)
        self._emit(EventType.STEP_CHANGED, {"fromStep": index, "toStep": index + 1})
        return True

    def retreat_step(self) -> bool:
        """Move back one step without validation.

        Returns:
            True if the step changed (False on the first step)
        """
        state = self._state
        index = state.current_step_index
        if not self._steps.can_retreat(index):
            return False

        step = self.schema.steps[index]
        if step.on_previous is not None:
            try:
                step.on_previous()
            except Exception:
                logger.exception("on_previous callback of step '%s' raised", step.id)

        state.current_step_index = self._steps.transition(index, index - 1)
        self._emit(EventType.STEP_CHANGED, {"fromStep": index, "toStep": index - 1})
        return True

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self) -> bool:
        """Validate and hand the values to the submit callback.

        Not re-entrant: a call made while a submission is in flight is a
        no-op. For stepped schemas submission is only available from the last
        step. Callback failures are wrapped in SubmissionError and reported
        through the ``submission.failed`` event, never raised.

        Returns:
            True if validation passed and the callback completed
        """
        state = self._state
        if state.is_submitting:
            logger.debug("submit ignored: a submission is already in flight")
            return False
        if not self._steps.can_submit_from(state.current_step_index):
            logger.warning(
                "submit ignored: form '%s' is on step %d of %d",
                self.schema.id, state.current_step_index + 1, self._steps.step_count,
            )
            return False

        state.is_submitting = True
        state.submit_count += 1
        self._emit(EventType.SUBMISSION_STARTED, {"submitCount": state.submit_count})
        try:
            if not await self.validate_form():
                return False

            values = dict(state.values)
            if self._on_submit is not None:
                try:
                    result = self._on_submit(values)
                    if inspect.isawaitable(result):
                        await result
                except Exception as exc:
                    error = SubmissionError(f"Submit callback failed: {exc}", original=exc)
                    logger.warning("Submission of form '%s' failed: %s", self.schema.id, exc)
                    self._emit(EventType.SUBMISSION_FAILED, {"error": error})
                    return False

            self._emit(EventType.SUBMISSION_SUCCEEDED, {"values": values})
            return True
        finally:
            state.is_submitting = False


__all__ = [
    "FormState",
    "DerivedFieldState",
    "FormStateEngine",
]
