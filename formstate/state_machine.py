"""Step navigation state machine for multi-step forms.

States are step indices ``0 .. step_count - 1``. The only transitions are
forward by one (advance, guarded by validation and optional step guards) and
backward by one (retreat, unguarded). The initial state is 0 and submission
is only available from the last step.

The machine does not hold the current index itself; FormState owns it so
that a reset replaces the whole runtime record at once. The machine
validates transitions and keeps the transition history for the instance.

Usage:
    >>> sm = StepStateMachine(form_id="onboarding", step_count=3)
    >>> sm.valid_transitions(0)
    {1}
    >>> sm.transition(0, 1)
    1
    >>> sm.can_submit_from(1)
    False
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Set

logger = logging.getLogger(__name__)


class InvalidStepTransitionError(Exception):
    """Raised when attempting a step transition the machine does not allow.

    Attributes:
        current_step: Index before the attempted transition
        target_step: Index that was attempted
    """

    def __init__(self, current_step: int, target_step: int, message: str):
        self.current_step = current_step
        self.target_step = target_step
        super().__init__(message)


@dataclass
class StepStateMachine:
    """Transition rules for a stepped form.

    A flat form is modelled as a single step, so every query still answers
    consistently (no transitions, submit available from step 0).

    Attributes:
        form_id: Id of the schema, used in log records
        step_count: Number of steps (at least 1)
    """

    form_id: str
    step_count: int = 1
    _history: List[Dict[str, Any]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        if self.step_count < 1:
            self.step_count = 1

    @property
    def first_step(self) -> int:
        return 0

    @property
    def last_step(self) -> int:
        return self.step_count - 1

    def valid_transitions(self, current: int) -> Set[int]:
        """Indices reachable from ``current`` in one transition."""
        targets: Set[int] = set()
        if current < self.last_step:
            targets.add(current + 1)
        if current > self.first_step:
            targets.add(current - 1)
        return targets

    def can_transition(self, current: int, target: int) -> bool:
        return target in self.valid_transitions(current)

    def can_advance(self, current: int) -> bool:
        return self.can_transition(current, current + 1)

    def can_retreat(self, current: int) -> bool:
        return self.can_transition(current, current - 1)

    def can_submit_from(self, current: int) -> bool:
        """Submission is the terminal action, available only from the last step."""
        return current == self.last_step

    def transition(self, current: int, target: int) -> int:
        """Validate and record a transition, returning the new index.

        Raises:
            InvalidStepTransitionError: If ``target`` is not adjacent to
                ``current`` or lies outside the step range
        """
        if not self.can_transition(current, target):
            valid = sorted(self.valid_transitions(current))
            raise InvalidStepTransitionError(
                current_step=current,
                target_step=target,
                message=(
                    f"Invalid step transition: cannot move from step {current} to step {target}. "
                    f"Valid targets from step {current} are: {valid}"
                    if valid
                    else f"Invalid step transition: form '{self.form_id}' has a single step"
                ),
            )
        self._history.append({
            "fromStep": current,
            "toStep": target,
            "ts": datetime.now(timezone.utc).isoformat(),
        })
        logger.debug("Form '%s' moved from step %d to step %d", self.form_id, current, target)
        return target

    def get_history(self) -> List[Dict[str, Any]]:
        """Transitions recorded so far, oldest first."""
        return list(self._history)

    def reset(self) -> None:
        """Forget recorded transitions, as when the form starts over."""
        self._history.clear()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the machine configuration.

        Examples:
            >>> StepStateMachine(form_id="f", step_count=2).to_dict()
            {'formId': 'f', 'stepCount': 2}
        """
        return {"formId": self.form_id, "stepCount": self.step_count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepStateMachine":
        return cls(form_id=data["formId"], step_count=data["stepCount"])


__all__ = [
    "StepStateMachine",
    "InvalidStepTransitionError",
]
