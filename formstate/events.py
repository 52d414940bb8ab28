"""Event system for formstate.

This module provides the notification records and event emitter through
which the form state engine reports field changes, validation outcomes, step
changes, submissions and resets. External hooks (FormHooks) are plain
listeners on the emitter.

Notifications are fire-and-forget: listeners are called synchronously in
registration order, their exceptions are isolated and logged, and coroutine
listeners are scheduled on the running event loop without being awaited.
"""

import asyncio
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from formstate.types import EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormEvent:
    """A single notification emitted by the engine.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_3f2a...")
        type: Event type from EventType enum
        form_id: Id of the schema the engine instance renders
        ts: UTC timestamp when the event occurred
        step_index: Current step index when the event was emitted
        payload: Optional event-specific data (field id, value, errors, ...)

    Examples:
        >>> event = FormEvent.create(EventType.FIELD_CHANGED, "signup", 0, {"fieldId": "email"})
        >>> event.type
        <EventType.FIELD_CHANGED: 'field.changed'>
    """
    event_id: str
    type: EventType
    form_id: str
    ts: datetime
    step_index: int = 0
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    @classmethod
    def create(
        cls,
        event_type: EventType,
        form_id: str,
        step_index: int = 0,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "FormEvent":
        """Build an event with a fresh id and the current UTC time."""
        return cls(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=event_type,
            form_id=form_id,
            ts=datetime.now(timezone.utc),
            step_index=step_index,
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as an ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
            "stepIndex": self.step_index,
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Convert event to a single-line JSON string.

        Payload values that are not JSON-native are rendered with ``str``.
        """
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace("Z", "+00:00"))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            step_index=data.get("stepIndex", 0),
            payload=data.get("payload"),
        )


EventListener = Callable[[FormEvent], Any]
"""Type alias for event listener callbacks.

Listeners may be plain functions or coroutine functions; coroutine results
are scheduled, never awaited by the emitter.
"""


class EventEmitter:
    """Event emitter for managing listeners and dispatching events.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (listen to all events)
    - Synchronous dispatch in registration order
    - Error isolation (listener exceptions are logged, not propagated)

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.FORM_RESET, seen.append)
        >>> emitter.emit(FormEvent.create(EventType.FORM_RESET, "signup"))
        >>> len(seen)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []
        self._pending: Set["asyncio.Future[Any]"] = set()

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type; unknown listeners are ignored."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe from the wildcard subscription; unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def _dispatch(self, listener: EventListener, event: FormEvent) -> None:
        try:
            result = listener(event)
        except Exception:
            logger.exception("Listener for %s raised", event.type.value)
            return
        if inspect.iscoroutine(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    "Coroutine listener for %s dropped: no running event loop", event.type.value
                )
                result.close()
                return
            task = loop.create_task(result)
            self._pending.add(task)
            task.add_done_callback(self._finish_task)

    def _finish_task(self, task: "asyncio.Future[Any]") -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async listener raised", exc_info=task.exception())

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event to type-specific, then wildcard listeners."""
        for listener in list(self._listeners.get(event.type, ())):
            self._dispatch(listener, event)
        for listener in list(self._any_listeners):
            self._dispatch(listener, event)

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count registered listeners, for one type or in total (including wildcard)."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(v) for v in self._listeners.values())


@dataclass
class FormHooks:
    """External callbacks invoked at well-defined points of the form lifecycle.

    Each hook is a fire-and-forget notification; the engine never awaits it
    and a failing hook never affects engine state.

    Attributes:
        on_field_change: ``(field_id, value)``
        on_field_blur: ``(field_id)``
        on_field_focus: ``(field_id)``
        on_step_change: ``(step_index)``
        on_validation_error: ``(errors)`` with errors keyed by field id
        on_success: ``(values)`` after the submit callback completed
        on_error: ``(error)`` with a SubmissionError
        on_reset: ``()``
    """
    on_field_change: Optional[Callable[[str, Any], Any]] = None
    on_field_blur: Optional[Callable[[str], Any]] = None
    on_field_focus: Optional[Callable[[str], Any]] = None
    on_step_change: Optional[Callable[[int], Any]] = None
    on_validation_error: Optional[Callable[[Dict[str, str]], Any]] = None
    on_success: Optional[Callable[[Dict[str, Any]], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None
    on_reset: Optional[Callable[[], Any]] = None

    def attach(self, emitter: EventEmitter) -> None:
        """Subscribe every configured hook to the matching event type."""
        bindings = [
            (self.on_field_change, EventType.FIELD_CHANGED,
             lambda hook, e: hook(e.payload["fieldId"], e.payload.get("value"))),
            (self.on_field_blur, EventType.FIELD_BLURRED,
             lambda hook, e: hook(e.payload["fieldId"])),
            (self.on_field_focus, EventType.FIELD_FOCUSED,
             lambda hook, e: hook(e.payload["fieldId"])),
            (self.on_step_change, EventType.STEP_CHANGED,
             lambda hook, e: hook(e.payload["toStep"])),
            (self.on_validation_error, EventType.VALIDATION_FAILED,
             lambda hook, e: hook(e.payload["errors"])),
            (self.on_success, EventType.SUBMISSION_SUCCEEDED,
             lambda hook, e: hook(e.payload["values"])),
            (self.on_error, EventType.SUBMISSION_FAILED,
             lambda hook, e: hook(e.payload["error"])),
            (self.on_reset, EventType.FORM_RESET,
             lambda hook, e: hook()),
        ]
        for hook, event_type, call in bindings:
            if hook is not None:
                emitter.on(event_type, _bind(hook, call))


def _bind(hook, call) -> EventListener:
    def listener(event: FormEvent) -> Any:
        return call(hook, event)
    return listener


__all__ = [
    "FormEvent",
    "EventType",
    "EventListener",
    "EventEmitter",
    "FormHooks",
]
