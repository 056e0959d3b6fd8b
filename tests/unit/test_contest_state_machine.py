"""Unit tests for the contest state machine."""

from __future__ import annotations

import pytest

from unic.contests.lifecycle import VALID_TRANSITIONS, validate_transition
from unic.errors import InvalidTransition, PreconditionError


class TestContestStateMachine:
    """Test contest state transitions."""

    def test_valid_transitions_structure(self):
        """All states have defined transitions."""
        assert set(VALID_TRANSITIONS.keys()) == {
            "draft", "pending_payment", "active", "completing", "completed", "cancelled",
        }

    def test_forward_path(self):
        """draft -> pending_payment -> active -> completing -> completed."""
        path = ["draft", "pending_payment", "active", "completing", "completed"]
        for current, target in zip(path, path[1:]):
            validate_transition(current, target)

    def test_active_can_be_cancelled(self):
        validate_transition("active", "cancelled")

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_states(self, status):
        """completed and cancelled have no way out."""
        assert VALID_TRANSITIONS[status] == []

    def test_skipping_states_rejected(self):
        """Skipping states raises InvalidTransition, which is also a ValueError."""
        with pytest.raises(ValueError, match="Invalid transition"):
            validate_transition("draft", "active")

    def test_draft_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition("draft", "cancelled")
        assert exc_info.value.current_status == "draft"
        assert exc_info.value.target_status == "cancelled"
        assert isinstance(exc_info.value, PreconditionError)

    def test_completed_cannot_reopen(self):
        with pytest.raises(InvalidTransition):
            validate_transition("completed", "active")
