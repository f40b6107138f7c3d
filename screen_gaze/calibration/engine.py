"""
Calibration Engine

Runs the multi-target calibration procedure:
- shows each target, waits for the fixation to settle, then collects raw
  gaze points for a fixed window
- cleans the samples and scores their quality, retrying a target when too
  few samples survive
- fits a per-axis scale + offset from all accepted targets

All timing goes through an injected Scheduler, so the whole procedure can be
driven by a virtual clock.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Tuple
import logging

import numpy as np

from screen_gaze.calibration.state_machine import (
    IDLE,
    CalibrationState,
    Event,
    Phase,
    advance,
)
from screen_gaze.calibration.statistics import (
    CalibrationPointResult,
    CalibrationSample,
    CalibrationTransform,
    SampleFilterSettings,
    clean_samples,
    data_quality,
    fit_transform,
    sample_confidence,
    weighted_average,
)
from screen_gaze.models import ScreenPoint, ScreenSize
from screen_gaze.scheduling import Scheduler, TimerHandle


DEFAULT_TARGET_POINTS: Tuple[Tuple[float, float], ...] = (
    (0.15, 0.15),
    (0.85, 0.15),
    (0.5, 0.5),
    (0.15, 0.85),
    (0.85, 0.85),
    (0.3, 0.3),
    (0.7, 0.7),
)


@dataclass
class CalibrationConfig:
    """Configuration for the calibration procedure."""

    # Normalized (0..1) target positions, shown in order
    target_points: List[Tuple[float, float]] = field(
        default_factory=lambda: list(DEFAULT_TARGET_POINTS)
    )

    # Timing (seconds)
    warmup_duration: float = 0.8
    collection_duration: float = 3.0
    retry_delay: float = 1.0
    advance_delay: float = 0.5

    # Sample buffer
    min_samples: int = 15
    max_samples: int = 60

    # Sample scoring / cleaning
    confidence_threshold: float = 0.6
    max_reasonable_distance: float = 300.0
    mad_multiplier: float = 3.0

    # Quality gates
    point_quality_threshold: float = 0.3
    overall_quality_threshold: float = 0.4
    min_quality_points: int = 3

    # None keeps retrying a target until it succeeds
    max_retries_per_target: Optional[int] = None

    def filter_settings(self) -> SampleFilterSettings:
        return SampleFilterSettings(
            confidence_threshold=self.confidence_threshold,
            mad_multiplier=self.mad_multiplier,
        )


class CalibrationListener:
    """
    Receives display events from the calibration engine.

    The default implementation ignores everything; override what you need.
    """

    def on_show_target(self, index: int, normalized: Tuple[float, float], point: ScreenPoint) -> None:
        pass

    def on_hide_target(self, index: int) -> None:
        pass


CompletionCallback = Callable[[bool], None]


class CalibrationEngine:
    """
    Orchestrates target display, sample collection and the affine fit.

    The completion callback passed to `start_calibration()` is invoked exactly
    once per run, unless the run is discarded by `reset_calibration()`.
    """

    def __init__(
        self,
        screen_size: ScreenSize,
        scheduler: Scheduler,
        config: Optional[CalibrationConfig] = None,
        listener: Optional[CalibrationListener] = None,
    ):
        """
        Initialize the calibration engine

        Args:
            screen_size: Display size used to place targets and score samples
            scheduler: Scheduler used for warm-up, collection and retry delays
            config: Calibration configuration
            listener: Receives show/hide target events
        """
        self.screen_size = screen_size
        self.scheduler = scheduler
        self.config = config or CalibrationConfig()
        self.listener = listener or CalibrationListener()
        self.logger = logging.getLogger(__name__)

        self._state: CalibrationState = IDLE
        self._transform = CalibrationTransform.identity()
        self._results: List[CalibrationPointResult] = []
        self._samples: Deque[CalibrationSample] = deque(maxlen=self.config.max_samples)
        self._retries: Dict[int, int] = {}

        self._completion: Optional[CompletionCallback] = None
        self._timer: Optional[TimerHandle] = None
        # Bumped whenever pending timers must be invalidated
        self._generation = 0

        self.last_quality: Optional[float] = None
        self.last_fitted_transform: Optional[CalibrationTransform] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def is_collecting(self) -> bool:
        return self._state.phase is Phase.COLLECTING

    @property
    def transform(self) -> CalibrationTransform:
        return self._transform

    @property
    def results(self) -> List[CalibrationPointResult]:
        return list(self._results)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def target_count(self) -> int:
        return len(self.config.target_points)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_calibration(self, completion: Optional[CompletionCallback] = None):
        """
        Start a new calibration run.

        A run already in progress is aborted first (its callback gets False).
        The current transform stays in effect until a new fit succeeds.

        Args:
            completion: Called once with True/False when the run ends
        """
        if self._state.is_running:
            self.abort("restarted")

        self.logger.info(f"Starting calibration with {self.target_count} targets")
        self._invalidate_timers()
        self._results.clear()
        self._samples.clear()
        self._retries.clear()
        self.last_quality = None
        self.last_fitted_transform = None
        self._completion = completion

        self._dispatch(Event.START)

    def add_raw_gaze_point(self, point: ScreenPoint):
        """
        Record a raw (uncalibrated) gaze point for the current target.

        Ignored unless the engine is inside a collection window.
        """
        if not self.is_collecting:
            return

        previous = self._samples[-1].point if self._samples else None
        confidence = sample_confidence(
            point,
            previous,
            in_bounds=self.screen_size.contains(point),
            max_reasonable_distance=self.config.max_reasonable_distance,
        )
        self._samples.append(CalibrationSample(point, self.scheduler.now(), confidence))

        if len(self._samples) % 10 == 0:
            self.logger.debug(f"Collected {len(self._samples)} gaze samples")

    def apply_calibration(self, raw_point: ScreenPoint) -> ScreenPoint:
        """Apply the stored transform (identity if never fitted)."""
        return self._transform.apply(raw_point)

    def install_transform(self, transform: CalibrationTransform):
        """Replace the stored transform, e.g. with one loaded from disk."""
        self._transform = transform

    def reset_calibration(self):
        """
        Clear results and restore the identity transform.

        Pending timers are cancelled and the completion callback of a run in
        progress is discarded without being called.
        """
        was_showing = self._state.phase in (Phase.SHOWING_TARGET, Phase.WARMUP, Phase.COLLECTING)
        index = self._state.target_index

        self._invalidate_timers()
        self._completion = None
        self._results.clear()
        self._samples.clear()
        self._retries.clear()
        self._transform = CalibrationTransform.identity()
        self.last_quality = None
        self.last_fitted_transform = None
        self._state = advance(self._state, Event.RESET, self.target_count)

        if was_showing:
            self._notify_hide(index)
        self.logger.info("Calibration reset")

    def abort(self, reason: str = "aborted"):
        """
        Stop a run in progress and report failure to its completion callback.
        """
        if not self._state.is_running:
            return

        was_showing = self._state.phase in (Phase.SHOWING_TARGET, Phase.WARMUP, Phase.COLLECTING)
        index = self._state.target_index

        self.logger.warning(f"Calibration aborted: {reason}")
        self._invalidate_timers()
        self._samples.clear()
        if was_showing:
            self._notify_hide(index)
        self._dispatch(Event.ABORT)

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------

    def _dispatch(self, event: Event):
        previous = self._state
        self._state = advance(previous, event, self.target_count)
        self.logger.debug(f"Calibration {previous} --{event.value}--> {self._state}")
        self._enter(self._state)

    def _enter(self, state: CalibrationState):
        phase = state.phase
        if phase is Phase.SHOWING_TARGET:
            self._show_target(state.target_index)
        elif phase is Phase.WARMUP:
            self._schedule(self.config.warmup_duration, Event.WARMUP_ELAPSED)
        elif phase is Phase.COLLECTING:
            self.logger.info(f"Collecting data for target {state.target_index + 1}")
            self._schedule(self.config.collection_duration, Event.WINDOW_CLOSED)
        elif phase is Phase.PROCESSING:
            self._notify_hide(state.target_index)
            self._process_target(state.target_index)
        elif phase is Phase.RETRY:
            self._schedule(self.config.retry_delay, Event.DELAY_ELAPSED)
        elif phase is Phase.ADVANCE:
            self._schedule(self.config.advance_delay, Event.DELAY_ELAPSED)
        elif phase is Phase.FITTING:
            self._fit()
        elif phase is Phase.SUCCEEDED:
            self._complete(True)
        elif phase is Phase.FAILED:
            self._complete(False)

    def _schedule(self, delay: float, event: Event):
        generation = self._generation

        def fire():
            if generation != self._generation:
                return
            self._timer = None
            self._dispatch(event)

        self._timer = self.scheduler.call_later(delay, fire)

    def _invalidate_timers(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Phase actions
    # ------------------------------------------------------------------

    def _show_target(self, index: int):
        normalized = tuple(self.config.target_points[index])
        point = self.screen_size.to_pixels(*normalized)
        self.logger.info(
            f"Showing calibration point {index + 1}/{self.target_count} "
            f"at ({point.x:.1f}, {point.y:.1f})"
        )
        self._samples.clear()
        try:
            self.listener.on_show_target(index, normalized, point)
        except Exception as e:
            self.logger.error(f"Calibration listener failed on show target: {e}", exc_info=True)
        self._dispatch(Event.TARGET_SHOWN)

    def _notify_hide(self, index: int):
        try:
            self.listener.on_hide_target(index)
        except Exception as e:
            self.logger.error(f"Calibration listener failed on hide target: {e}", exc_info=True)

    def _process_target(self, index: int):
        collected = len(self._samples)
        processed = clean_samples(list(self._samples), self.config.filter_settings())
        self._samples.clear()

        self.logger.info(
            f"Target {index + 1}: {collected} samples collected, {len(processed)} usable"
        )

        if len(processed) < self.config.min_samples:
            self._retries[index] = self._retries.get(index, 0) + 1
            limit = self.config.max_retries_per_target
            if limit is not None and self._retries[index] > limit:
                self.logger.error(
                    f"Target {index + 1} still insufficient after {limit} retries, failing calibration"
                )
                self._dispatch(Event.ABORT)
                return
            self.logger.warning(
                f"Insufficient quality data ({len(processed)} < {self.config.min_samples}), "
                f"retrying target {index + 1}"
            )
            self._dispatch(Event.SAMPLES_INSUFFICIENT)
            return

        target_point = self.screen_size.to_pixels(*self.config.target_points[index])
        result = CalibrationPointResult(
            target_point=target_point,
            raw_point=weighted_average(processed),
            quality=data_quality(processed, self.config.max_samples),
            timestamp=self.scheduler.now(),
        )
        self._results.append(result)
        self.logger.info(f"Target {index + 1} completed with quality {result.quality:.3f}")
        self._dispatch(Event.TARGET_ACCEPTED)

    def _fit(self):
        quality_points = [
            r for r in self._results if r.quality >= self.config.point_quality_threshold
        ]

        if len(quality_points) < self.config.min_quality_points:
            self.logger.warning(
                f"Insufficient quality calibration points "
                f"({len(quality_points)} < {self.config.min_quality_points}), failing"
            )
            self._dispatch(Event.FIT_FAILED)
            return

        fitted = fit_transform(quality_points)
        overall = float(np.mean([r.quality for r in quality_points]))
        self.last_quality = overall
        self.last_fitted_transform = fitted

        self.logger.info(
            f"Parameters calculated - scale=({fitted.scale_x:.4f}, {fitted.scale_y:.4f}) "
            f"offset=({fitted.offset_x:.2f}, {fitted.offset_y:.2f})"
        )
        self.logger.info(
            f"Overall quality {overall:.3f}, using {len(quality_points)}/{len(self._results)} points"
        )

        if overall >= self.config.overall_quality_threshold:
            self._transform = fitted
            self._dispatch(Event.FIT_SUCCEEDED)
        else:
            self._dispatch(Event.FIT_FAILED)

    def _complete(self, success: bool):
        callback = self._completion
        self._completion = None
        self.logger.info(f"Calibration {'succeeded' if success else 'failed'}")
        if callback is not None:
            callback(success)
