"""
Tests for the calibration state machine
"""

import pytest

from screen_gaze.calibration.state_machine import IDLE, CalibrationState, Event, Phase, advance
from screen_gaze.errors import InvalidTransitionError


def state(phase, index=0):
    return CalibrationState(phase, index)


def test_happy_path_single_target():
    s = advance(IDLE, Event.START, 1)
    assert s == state(Phase.SHOWING_TARGET, 0)
    s = advance(s, Event.TARGET_SHOWN, 1)
    assert s == state(Phase.WARMUP, 0)
    s = advance(s, Event.WARMUP_ELAPSED, 1)
    assert s == state(Phase.COLLECTING, 0)
    s = advance(s, Event.WINDOW_CLOSED, 1)
    assert s == state(Phase.PROCESSING, 0)
    s = advance(s, Event.TARGET_ACCEPTED, 1)
    assert s == state(Phase.ADVANCE, 1)
    s = advance(s, Event.DELAY_ELAPSED, 1)
    assert s.phase is Phase.FITTING
    assert advance(s, Event.FIT_SUCCEEDED, 1).phase is Phase.SUCCEEDED
    assert advance(s, Event.FIT_FAILED, 1).phase is Phase.FAILED


def test_advance_moves_to_next_target():
    s = advance(state(Phase.PROCESSING, 2), Event.TARGET_ACCEPTED, 7)
    assert advance(s, Event.DELAY_ELAPSED, 7) == state(Phase.SHOWING_TARGET, 3)


def test_retry_shows_same_target():
    s = advance(state(Phase.PROCESSING, 4), Event.SAMPLES_INSUFFICIENT, 7)
    assert s == state(Phase.RETRY, 4)
    assert advance(s, Event.DELAY_ELAPSED, 7) == state(Phase.SHOWING_TARGET, 4)


@pytest.mark.parametrize("phase", list(Phase))
def test_reset_from_any_state(phase):
    assert advance(state(phase, 3), Event.RESET, 7) == IDLE


@pytest.mark.parametrize("phase", list(Phase))
def test_start_from_any_state(phase):
    assert advance(state(phase, 3), Event.START, 7) == state(Phase.SHOWING_TARGET, 0)


def test_abort_running_fails():
    assert advance(state(Phase.COLLECTING, 2), Event.ABORT, 7) == state(Phase.FAILED, 2)


@pytest.mark.parametrize("phase", [Phase.IDLE, Phase.SUCCEEDED, Phase.FAILED])
def test_abort_when_not_running_is_noop(phase):
    s = state(phase, 1)
    assert advance(s, Event.ABORT, 7) == s


@pytest.mark.parametrize("phase, event", [
    (Phase.IDLE, Event.WARMUP_ELAPSED),
    (Phase.WARMUP, Event.WINDOW_CLOSED),
    (Phase.COLLECTING, Event.TARGET_ACCEPTED),
    (Phase.SUCCEEDED, Event.DELAY_ELAPSED),
    (Phase.FITTING, Event.TARGET_SHOWN),
])
def test_invalid_transitions_raise(phase, event):
    with pytest.raises(InvalidTransitionError):
        advance(state(phase), event, 7)


def test_state_string_and_running_flag():
    assert str(IDLE) == "idle"
    assert str(state(Phase.COLLECTING, 3)) == "collecting(3)"
    assert IDLE.is_running is False
    assert state(Phase.FITTING, 7).is_running is True
    assert state(Phase.FAILED).is_running is False
