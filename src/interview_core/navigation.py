"""
Navigation Controller: the interview's position state machine.

Moves a session through its stages and prompts:

    request  ->  guard  ->  prompt advance            (same stage)
                        ->  EXIT_PENDING(target)      (stage change)
    exit_complete()     ->  COMMITTING -> IDLE        (position written)

A stage change is two-phase. The controller computes the target, shows
an anticipated progress value, clears the guard and asks the presentation
layer to play the current stage's exit. The session position is only
written when the presentation layer calls exit_complete(). Nothing of
the new stage is visible before the old one has left.

ARCHITECTURAL RULE:
    One request at a time. A request that arrives while a guard is
    pending or a transition is in flight is dropped, not queued.

    The controller never positions a participant forward of where they
    were when healing an unreachable stage; it always moves back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from interview_core.errors import SessionError
from interview_core.guards import FORCE, Direction, GuardResult, GuardSlot, NavigationGuard
from interview_core.model import Protocol, Stage
from interview_core.session import Action, SessionMap, SessionState, SessionStore
from interview_core.skip_logic import NavigableStages, get_navigable_stages

logger = logging.getLogger(__name__)


class TransitionPhase(Enum):
    IDLE = "idle"
    EXIT_PENDING = "exit_pending"
    COMMITTING = "committing"


def calculate_progress(stage_index: int, stage_count: int, prompt_index: int = 0, prompt_count: int = 1) -> float:
    """
    Percentage through the interview, 0-100.

    Each stage is an equal share; prompts subdivide their stage's share.
    The last stage is 100.
    """
    if stage_count <= 1:
        return 100.0
    prompt_fraction = prompt_index / prompt_count if prompt_count > 0 else 0.0
    progress = (stage_index + prompt_fraction) / (stage_count - 1) * 100
    return max(0.0, min(100.0, progress))


@dataclass(frozen=True)
class NavigationInfo:
    """Snapshot of the session's position, as the presentation layer sees it."""

    progress: float
    current_step: int
    prompt_index: int
    can_move_forward: bool
    can_move_backward: bool
    is_first_prompt: bool
    is_last_prompt: bool
    is_first_stage: bool
    is_last_stage: bool
    is_transitioning: bool


@dataclass(frozen=True)
class NavigationHelpers:
    move_forward: Callable[[], Awaitable[bool]]
    move_backward: Callable[[], Awaitable[bool]]


class NavigationController:
    """
    Drives one session through its protocol.

    Args:
        store: SessionStore holding the session
        session_id: Key of the session this controller drives
        guard_timeout: Optional bound (seconds) on how long a guard may
            take. None waits indefinitely.
        on_exit_requested: Called with the target stage index when a stage
            change is requested. The presentation layer answers by calling
            exit_complete() once the current stage has exited.

    Example:
        controller = NavigationController(store, session_id)
        await controller.move_forward()
        if controller.phase is TransitionPhase.EXIT_PENDING:
            controller.exit_complete()
    """

    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        guard_timeout: Optional[float] = None,
        on_exit_requested: Optional[Callable[[int], Any]] = None,
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.guard_timeout = guard_timeout
        self.on_exit_requested = on_exit_requested

        self._guard = GuardSlot()
        self._phase = TransitionPhase.IDLE
        self._pending_target: Optional[int] = None
        self._guard_pending = False
        self._progress_override: Optional[float] = None

        self._unsubscribe = store.subscribe(self._on_store_change)
        self.heal()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def protocol(self) -> Protocol:
        return self.store.protocol

    @property
    def phase(self) -> TransitionPhase:
        return self._phase

    @property
    def pending_target(self) -> Optional[int]:
        return self._pending_target

    @property
    def is_transitioning(self) -> bool:
        return self._guard_pending or self._phase is not TransitionPhase.IDLE

    @property
    def guard(self) -> Optional[NavigationGuard]:
        return self._guard.guard

    def _session(self) -> SessionState:
        session = self.store.get_session(self.session_id)
        if session is None:
            raise SessionError(f"No session {self.session_id}")
        return session

    @property
    def current_step(self) -> int:
        return self._session().current_step

    @property
    def prompt_index(self) -> int:
        return self._session().prompt_index

    @property
    def current_stage(self) -> Optional[Stage]:
        return self.protocol.get_stage(self.current_step)

    def navigable_stages(self) -> NavigableStages:
        session = self._session()
        return get_navigable_stages(self.protocol.navigable_stages, session.network, session.current_step)

    def get_navigation_info(self) -> NavigationInfo:
        session = self._session()
        stage_count = len(self.protocol.navigable_stages)
        stage = self.protocol.get_stage(session.current_step)
        prompt_count = stage.prompt_count if stage is not None else 1

        is_first_prompt = session.prompt_index == 0
        is_last_prompt = session.prompt_index >= prompt_count - 1
        is_first_stage = session.current_step == 0
        is_last_stage = session.current_step == stage_count - 1

        progress = self._progress_override
        if progress is None:
            progress = calculate_progress(session.current_step, stage_count, session.prompt_index, prompt_count)

        return NavigationInfo(
            progress=progress,
            current_step=session.current_step,
            prompt_index=session.prompt_index,
            can_move_forward=not (is_last_prompt and is_last_stage),
            can_move_backward=not (is_first_prompt and is_first_stage),
            is_first_prompt=is_first_prompt,
            is_last_prompt=is_last_prompt,
            is_first_stage=is_first_stage,
            is_last_stage=is_last_stage,
            is_transitioning=self.is_transitioning,
        )

    # =========================================================================
    # GUARDS
    # =========================================================================

    def register_guard(self, guard: Optional[NavigationGuard]) -> None:
        """Set the active stage's guard. None clears it."""
        self._guard.set(guard)

    async def _run_guard(self, direction: Direction) -> GuardResult:
        if self.guard_timeout is None:
            return await self._guard.run(direction)
        return await asyncio.wait_for(self._guard.run(direction), self.guard_timeout)

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    async def move_forward(self) -> bool:
        """
        Advance one prompt, or request a change to the next reachable stage.

        Returns:
            True if the prompt advanced or a stage change was requested
        """
        return await self._navigate(Direction.FORWARDS)

    async def move_backward(self) -> bool:
        """Mirror of move_forward()."""
        return await self._navigate(Direction.BACKWARDS)

    async def _navigate(self, direction: Direction) -> bool:
        if self.is_transitioning:
            logger.debug("Session %s: dropped %s request during transition", self.session_id, direction.value)
            return False

        # Never navigate from a stage that is no longer reachable
        if self.heal():
            return False

        forwards = direction is Direction.FORWARDS
        info = self.get_navigation_info()
        if forwards and not info.can_move_forward:
            return False
        # A guard may still have internal steps to walk back through
        if not forwards and not info.can_move_backward and not self._guard:
            return False

        self._guard_pending = True
        try:
            result = await self._run_guard(direction)
        finally:
            self._guard_pending = False

        if result is False:
            logger.debug("Session %s: guard blocked %s navigation", self.session_id, direction.value)
            return False

        # A self-heal may have started a transition while the guard was pending
        if self._phase is not TransitionPhase.IDLE:
            return False

        # The guard may have changed the session; decide on fresh state
        info = self.get_navigation_info()

        if result is not FORCE:
            if forwards and not info.is_last_prompt:
                return self._move_prompt(info.prompt_index + 1)
            if not forwards and not info.is_first_prompt:
                return self._move_prompt(info.prompt_index - 1)

        navigable = self.navigable_stages()
        target = navigable.next_valid_stage_index if forwards else navigable.previous_valid_stage_index
        if target == info.current_step:
            return False

        self._progress_override = calculate_progress(target, len(self.protocol.navigable_stages))
        self._guard.clear()
        self._request_transition(target)
        return True

    def _move_prompt(self, prompt_index: int) -> bool:
        logger.debug("Session %s: prompt %d", self.session_id, prompt_index)
        self.store.update_prompt(self.session_id, prompt_index)
        return True

    def _request_transition(self, target: int) -> None:
        self._pending_target = target
        self._phase = TransitionPhase.EXIT_PENDING
        logger.info(
            "Session %s: transition requested from stage %d to stage %d",
            self.session_id,
            self.current_step,
            target,
        )
        if self.on_exit_requested is not None:
            self.on_exit_requested(target)

    def exit_complete(self) -> bool:
        """
        Signal that the current stage has finished exiting.

        Commits the pending target: stage index set, prompt index reset to
        0, guard cleared. Ignored when no transition is pending.

        Returns:
            True if a transition was committed
        """
        if self._phase is not TransitionPhase.EXIT_PENDING:
            return False

        target = self._pending_target
        self._phase = TransitionPhase.COMMITTING
        # The exiting stage may have re-registered a guard during its exit
        self._guard.clear()
        try:
            self.store.update_stage(self.session_id, target)
        finally:
            self._pending_target = None
            self._progress_override = None
            self._phase = TransitionPhase.IDLE

        logger.info("Session %s: committed stage %d", self.session_id, target)
        self.heal()
        return True

    # =========================================================================
    # SELF-HEALING
    # =========================================================================

    def heal(self) -> bool:
        """
        Move back to the previous reachable stage if the current one is not
        reachable any more (e.g. the data it depends on was edited).

        Returns:
            True if a transition was requested
        """
        if self._phase is not TransitionPhase.IDLE:
            return False
        if self.store.get_session(self.session_id) is None:
            return False

        navigable = self.navigable_stages()
        if navigable.is_current_step_valid:
            return False

        current = self.current_step
        target = navigable.previous_valid_stage_index
        if target == current:
            return False

        logger.warning(
            "Session %s: stage %d is not reachable; moving back to stage %d",
            self.session_id,
            current,
            target,
        )
        self._progress_override = calculate_progress(target, len(self.protocol.navigable_stages))
        self._guard.clear()
        self._request_transition(target)
        return True

    def _on_store_change(self, previous: SessionMap, current: SessionMap, action: Action) -> None:
        if action.session_id != self.session_id:
            return
        self.heal()

    # =========================================================================
    # STAGE CONTEXT
    # =========================================================================

    def stage_context(self) -> "StageContext":
        """The navigation contract handed to the currently mounted stage."""
        return StageContext(self, self.current_step)

    def close(self) -> None:
        self._unsubscribe()
        self._guard.clear()


class StageContext:
    """
    What one mounted stage gets from navigation: a guard setter and the
    navigation helpers.

    Bound to the stage index it was created for. Once that stage is
    exiting or gone, guard registrations are ignored so a departing stage
    cannot leave a guard behind for its successor.
    """

    def __init__(self, controller: NavigationController, stage_index: int) -> None:
        self._controller = controller
        self.stage_index = stage_index

    @property
    def is_active(self) -> bool:
        controller = self._controller
        return controller.phase is TransitionPhase.IDLE and controller.current_step == self.stage_index

    def register_before_next(self, guard: Optional[NavigationGuard]) -> None:
        if not self.is_active:
            logger.debug("Ignoring guard registration from inactive stage %d", self.stage_index)
            return
        self._controller.register_guard(guard)

    def get_navigation_helpers(self) -> NavigationHelpers:
        return NavigationHelpers(
            move_forward=self._controller.move_forward,
            move_backward=self._controller.move_backward,
        )
