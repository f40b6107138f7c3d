"""
Calibration state machine.

States are a tagged variant (phase + target index); all transitions go
through the single pure function `advance()`. Side effects (showing
targets, scheduling timers, fitting) live in the CalibrationEngine, which
reacts to the state it gets back.

    IDLE -> SHOWING_TARGET(i) -> WARMUP(i) -> COLLECTING(i) -> PROCESSING(i)
         -> RETRY(i) | ADVANCE(i+1) -> SHOWING_TARGET(...) | FITTING
         -> SUCCEEDED | FAILED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from screen_gaze.errors import InvalidTransitionError


class Phase(Enum):
    IDLE = "idle"
    SHOWING_TARGET = "showing_target"
    WARMUP = "warmup"
    COLLECTING = "collecting"
    PROCESSING = "processing"
    RETRY = "retry"
    ADVANCE = "advance"
    FITTING = "fitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Event(Enum):
    START = "start"
    TARGET_SHOWN = "target_shown"
    WARMUP_ELAPSED = "warmup_elapsed"
    WINDOW_CLOSED = "window_closed"
    SAMPLES_INSUFFICIENT = "samples_insufficient"
    TARGET_ACCEPTED = "target_accepted"
    DELAY_ELAPSED = "delay_elapsed"
    FIT_SUCCEEDED = "fit_succeeded"
    FIT_FAILED = "fit_failed"
    RESET = "reset"
    ABORT = "abort"


TERMINAL_PHASES = frozenset({Phase.IDLE, Phase.SUCCEEDED, Phase.FAILED})


@dataclass(frozen=True)
class CalibrationState:
    phase: Phase = Phase.IDLE
    target_index: int = 0

    @property
    def is_running(self) -> bool:
        return self.phase not in TERMINAL_PHASES

    def __str__(self) -> str:
        if self.phase in (Phase.IDLE, Phase.FITTING, Phase.SUCCEEDED, Phase.FAILED):
            return self.phase.value
        return f"{self.phase.value}({self.target_index})"


IDLE = CalibrationState()


def advance(state: CalibrationState, event: Event, target_count: int) -> CalibrationState:
    """
    Compute the next calibration state.

    Args:
        state: Current state
        event: Event that occurred
        target_count: Number of calibration targets in this run

    Returns:
        The next state

    Raises:
        InvalidTransitionError: If `event` is not valid in `state`
    """
    phase = state.phase
    index = state.target_index

    # Valid from anywhere
    if event is Event.RESET:
        return IDLE
    if event is Event.START:
        return CalibrationState(Phase.SHOWING_TARGET, 0)
    if event is Event.ABORT:
        if state.is_running:
            return CalibrationState(Phase.FAILED, index)
        return state

    if phase is Phase.SHOWING_TARGET and event is Event.TARGET_SHOWN:
        return CalibrationState(Phase.WARMUP, index)

    if phase is Phase.WARMUP and event is Event.WARMUP_ELAPSED:
        return CalibrationState(Phase.COLLECTING, index)

    if phase is Phase.COLLECTING and event is Event.WINDOW_CLOSED:
        return CalibrationState(Phase.PROCESSING, index)

    if phase is Phase.PROCESSING:
        if event is Event.SAMPLES_INSUFFICIENT:
            return CalibrationState(Phase.RETRY, index)
        if event is Event.TARGET_ACCEPTED:
            return CalibrationState(Phase.ADVANCE, index + 1)

    if phase in (Phase.RETRY, Phase.ADVANCE) and event is Event.DELAY_ELAPSED:
        if index >= target_count:
            return CalibrationState(Phase.FITTING, index)
        return CalibrationState(Phase.SHOWING_TARGET, index)

    if phase is Phase.FITTING:
        if event is Event.FIT_SUCCEEDED:
            return CalibrationState(Phase.SUCCEEDED, index)
        if event is Event.FIT_FAILED:
            return CalibrationState(Phase.FAILED, index)

    raise InvalidTransitionError(f"Event '{event.value}' is not valid in state {state}")
