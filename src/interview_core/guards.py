"""
Stage Guard Protocol

A guard is the one hook a stage has into navigation:

    guard(direction) -> True | False | FORCE     (sync or async)

    False  the stage handled this attempt itself (rejected it, moved an
           internal sub-step, opened a dialog). Navigation stops here.
    True   hand control back: advance one prompt, or one stage when on
           the last prompt.
    FORCE  skip the remaining prompts and change stage now.

Anything else is a contract violation and raises GuardContractError.
It is never coerced.

ARCHITECTURAL RULE:
    At most one guard is registered at a time (GuardSlot).
    The slot is cleared by the controller whenever the stage changes.
"""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from interview_core.errors import GuardContractError


class Direction(Enum):
    FORWARDS = "forwards"
    BACKWARDS = "backwards"


FORCE = "FORCE"

GuardResult = Union[bool, str]
NavigationGuard = Callable[[Direction], Union[GuardResult, Awaitable[GuardResult]]]


def validate_guard_result(result: Any) -> GuardResult:
    """Accept exactly True, False or FORCE."""
    if result is True or result is False:
        return result
    if isinstance(result, str) and result == FORCE:
        return FORCE
    raise GuardContractError(f"Navigation guard returned {result!r}; expected True, False or {FORCE!r}")


class GuardSlot:
    """Single-slot holder for the active stage's guard."""

    def __init__(self) -> None:
        self._guard: Optional[NavigationGuard] = None

    @property
    def guard(self) -> Optional[NavigationGuard]:
        return self._guard

    def set(self, guard: Optional[NavigationGuard]) -> None:
        # Registering None clears the slot
        self._guard = guard

    def clear(self) -> None:
        self._guard = None

    def __bool__(self) -> bool:
        return self._guard is not None

    async def run(self, direction: Direction) -> GuardResult:
        """
        Invoke the registered guard and validate its answer.

        With no guard registered the answer is True. Exceptions raised by
        the guard propagate unchanged.
        """
        if self._guard is None:
            return True
        result = self._guard(direction)
        if inspect.isawaitable(result):
            result = await result
        return validate_guard_result(result)


class StepwiseGuard:
    """
    Guard for stages that walk an internal item collection.

    Used by stages with one sub-step per collected entity (alter forms,
    dyad census pairs). Each call validates the current item, moves the
    internal index one step and answers False. Only when the collection is
    exhausted in the requested direction does it answer True, letting the
    controller move on at the protocol level.

    Args:
        item_count: Number of internal sub-steps
        validate: Optional callable (index) -> bool; a False answer keeps
            the participant on the current item when moving forwards
        on_step: Optional callable (index) called after the index changes
        start_index: Initial position
    """

    def __init__(
        self,
        item_count: int,
        validate: Optional[Callable[[int], bool]] = None,
        on_step: Optional[Callable[[int], None]] = None,
        start_index: int = 0,
    ) -> None:
        self.item_count = item_count
        self.validate = validate
        self.on_step = on_step
        self.index = start_index

    @property
    def is_first_item(self) -> bool:
        return self.index <= 0

    @property
    def is_last_item(self) -> bool:
        return self.index >= self.item_count - 1

    def _move(self, delta: int) -> None:
        self.index += delta
        if self.on_step is not None:
            self.on_step(self.index)

    def __call__(self, direction: Direction) -> bool:
        if self.item_count <= 0:
            return True

        if direction is Direction.BACKWARDS:
            if self.is_first_item:
                return True
            self._move(-1)
            return False

        if self.validate is not None and not self.validate(self.index):
            return False
        if self.is_last_item:
            return True
        self._move(1)
        return False
