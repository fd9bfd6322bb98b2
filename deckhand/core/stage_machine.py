"""Deterministic stage state machine for a pipeline run.

Enforces the VALID_TRANSITIONS table: each stage leads to the next one
or straight to Notify, and Notify is the only way to Done.
"""

from __future__ import annotations

import logging

from deckhand.models.stages import VALID_TRANSITIONS, PipelineStage

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested stage transition is not valid."""


class StageMachine:
    """Tracks the current stage of one run and validates every move."""

    def __init__(self, initial: PipelineStage = PipelineStage.CHECKOUT) -> None:
        self._current = initial
        self._history: list[PipelineStage] = [initial]

    @property
    def current(self) -> PipelineStage:
        return self._current

    @property
    def history(self) -> list[PipelineStage]:
        return list(self._history)

    @property
    def is_done(self) -> bool:
        return self._current == PipelineStage.DONE

    def can_transition(self, target: PipelineStage) -> bool:
        return target in VALID_TRANSITIONS.get(self._current, set())

    def transition(self, target: PipelineStage) -> PipelineStage:
        """Move to *target*, raising ``InvalidTransitionError`` if not allowed."""
        if not self.can_transition(target):
            allowed = sorted(s.value for s in VALID_TRANSITIONS.get(self._current, set()))
            raise InvalidTransitionError(
                f"Cannot transition from {self._current.value} to {target.value}. "
                f"Allowed: {allowed}"
            )
        logger.debug("Stage %s -> %s", self._current.value, target.value)
        self._current = target
        self._history.append(target)
        return target
