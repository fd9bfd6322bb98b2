"""Tests for the StageMachine — valid paths and rejected jumps."""

from __future__ import annotations

import pytest

from deckhand.core.stage_machine import InvalidTransitionError, StageMachine
from deckhand.models.stages import STAGE_ORDER, PipelineStage


class TestStageMachine:
    def test_happy_path(self):
        machine = StageMachine()
        for stage in STAGE_ORDER[1:]:
            machine.transition(stage)
        machine.transition(PipelineStage.DONE)
        assert machine.is_done
        assert machine.history == STAGE_ORDER + [PipelineStage.DONE]

    @pytest.mark.parametrize("stage", STAGE_ORDER[:-1])
    def test_every_stage_can_short_circuit_to_notify(self, stage):
        machine = StageMachine(initial=stage)
        machine.transition(PipelineStage.NOTIFY)
        assert machine.current == PipelineStage.NOTIFY

    def test_cannot_skip_forward(self):
        machine = StageMachine()
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineStage.DEPLOY)

    def test_cannot_reach_done_without_notify(self):
        machine = StageMachine(initial=PipelineStage.VERIFY)
        assert not machine.can_transition(PipelineStage.DONE)
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineStage.DONE)

    def test_done_is_terminal(self):
        machine = StageMachine(initial=PipelineStage.DONE)
        for stage in PipelineStage:
            assert not machine.can_transition(stage)

    def test_cannot_go_backwards(self):
        machine = StageMachine(initial=PipelineStage.DEPLOY)
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineStage.BUILD)
