"""
Tests for game status transitions and the day/night phase rules.
"""
import pytest

from core.exceptions import InvalidStateError
from core.state_machine import GameStateMachine
from models import GameStatus
from services.phase_service import is_voting_open, next_phase


@pytest.mark.parametrize("current,target", [
    (GameStatus.SETUP, GameStatus.SIGNUP),
    (GameStatus.SIGNUP, GameStatus.ACTIVE),
    (GameStatus.ACTIVE, GameStatus.ENDED),
    (GameStatus.SIGNUP, GameStatus.ENDED),
    (GameStatus.SETUP, GameStatus.ENDED),
])
def test_forward_transitions_allowed(current, target):
    assert GameStateMachine.can_transition(current, target)
    GameStateMachine.validate(current, target)


@pytest.mark.parametrize("current,target", [
    (GameStatus.ACTIVE, GameStatus.SIGNUP),
    (GameStatus.SIGNUP, GameStatus.SETUP),
    (GameStatus.ENDED, GameStatus.ACTIVE),
    (GameStatus.ENDED, GameStatus.ENDED),
    (GameStatus.SETUP, GameStatus.ACTIVE),
])
def test_backward_or_skipping_transitions_rejected(current, target):
    assert not GameStateMachine.can_transition(current, target)
    with pytest.raises(InvalidStateError):
        GameStateMachine.validate(current, target)


def test_day_goes_to_night_of_same_day():
    assert next_phase(True, 1) == (False, 1)


def test_night_goes_to_next_day():
    assert next_phase(False, 1) == (True, 2)


def test_voting_only_open_on_active_day():
    assert is_voting_open(GameStatus.ACTIVE, True)
    assert not is_voting_open(GameStatus.ACTIVE, False)
    assert not is_voting_open(GameStatus.SIGNUP, True)
    assert not is_voting_open(GameStatus.ENDED, True)
