"""
Gaze Pipeline

Coordinates the per-frame path from pose sample to emitted gaze point:

    pose sample -> head-motion compensation -> screen projection
                -> outlier gate -> [calibration] -> smoothing -> listeners

and owns the calibration lifecycle on top of the tracking session.
All mutable state lives on one pipeline instance; pose delivery and timer
callbacks are serialized through a single re-entrant lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from screen_gaze.calibration.engine import (
    CalibrationConfig,
    CalibrationEngine,
    CalibrationListener,
    CompletionCallback,
)
from screen_gaze.calibration.storage import load_calibration, save_calibration
from screen_gaze.data_acquisition.pose_source import PoseSource
from screen_gaze.errors import (
    GazeTrackingError,
    InvalidConfigurationError,
    SessionFailureError,
    UnsupportedCapabilityError,
)
from screen_gaze.estimation.filters import FilterConfig, OutlierGate, SmoothingFilter
from screen_gaze.estimation.head_motion import HeadMotionCompensator, HeadMotionConfig
from screen_gaze.estimation.projector import GeometryProjector, ProjectionConfig
from screen_gaze.models import PoseSample, ScreenPoint, ScreenSize
from screen_gaze.scheduling import Scheduler, TimerHandle


@dataclass
class TrackingConfig:
    """Tracking session behaviour around calibration."""

    # Delay between checks that tracking came up before calibrating
    start_retry_delay: float = 0.5

    # Checks before giving up on starting calibration
    start_attempts: int = 10

    # Re-anchor the head reference right before a calibration run
    anchor_head_on_calibration: bool = True


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    screen: ScreenSize = field(default_factory=lambda: ScreenSize(1920, 1080))
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    head_motion: HeadMotionConfig = field(default_factory=HeadMotionConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    # Where save/load of the fitted transform goes by default
    calibration_file: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "PipelineConfig":
        """
        Build a configuration from the YAML dictionary.

        Missing sections and keys fall back to defaults.

        Raises:
            InvalidConfigurationError: If a value has the wrong type or range
        """
        config = config or {}
        try:
            screen_cfg = _section(config, 'screen')
            screen = ScreenSize(
                width=float(screen_cfg.get('width', 1920)),
                height=float(screen_cfg.get('height', 1080)),
            )

            proj_cfg = _section(config, 'projection')
            projection = ProjectionConfig(
                plane_distance=float(proj_cfg.get('plane_distance', 0.6)),
                projection_scale=float(proj_cfg.get('projection_scale', 1000.0)),
                min_direction_z=float(proj_cfg.get('min_direction_z', 1e-6)),
            )

            filt_cfg = _section(config, 'filters')
            filters = FilterConfig(
                jump_threshold=float(filt_cfg.get('jump_threshold', 200.0)),
                damping_factor=float(filt_cfg.get('damping_factor', 0.3)),
                overscan=float(filt_cfg.get('overscan', 0.2)),
                smoothing_window=int(filt_cfg.get('smoothing_window', 5)),
            )

            head_cfg = _section(config, 'head_motion')
            head_motion = HeadMotionConfig(
                history_size=int(head_cfg.get('history_size', 10)),
                stability_window=int(head_cfg.get('stability_window', 3)),
                position_threshold=float(head_cfg.get('position_threshold', 0.01)),
                rotation_threshold=float(head_cfg.get('rotation_threshold', 0.05)),
                compensation_factor=float(head_cfg.get('compensation_factor', 0.8)),
            )

            cal_cfg = _section(config, 'calibration')
            defaults = CalibrationConfig()
            max_retries = cal_cfg.get('max_retries_per_target')
            calibration = CalibrationConfig(
                target_points=_target_points(cal_cfg.get('target_points', defaults.target_points)),
                warmup_duration=float(cal_cfg.get('warmup_duration', defaults.warmup_duration)),
                collection_duration=float(cal_cfg.get('collection_duration', defaults.collection_duration)),
                retry_delay=float(cal_cfg.get('retry_delay', defaults.retry_delay)),
                advance_delay=float(cal_cfg.get('advance_delay', defaults.advance_delay)),
                min_samples=int(cal_cfg.get('min_samples', defaults.min_samples)),
                max_samples=int(cal_cfg.get('max_samples', defaults.max_samples)),
                confidence_threshold=float(cal_cfg.get('confidence_threshold', defaults.confidence_threshold)),
                max_reasonable_distance=float(cal_cfg.get('max_reasonable_distance', defaults.max_reasonable_distance)),
                mad_multiplier=float(cal_cfg.get('mad_multiplier', defaults.mad_multiplier)),
                point_quality_threshold=float(cal_cfg.get('point_quality_threshold', defaults.point_quality_threshold)),
                overall_quality_threshold=float(cal_cfg.get('overall_quality_threshold', defaults.overall_quality_threshold)),
                min_quality_points=int(cal_cfg.get('min_quality_points', defaults.min_quality_points)),
                max_retries_per_target=None if max_retries is None else int(max_retries),
            )

            track_cfg = _section(config, 'tracking')
            tracking = TrackingConfig(
                start_retry_delay=float(track_cfg.get('start_retry_delay', 0.5)),
                start_attempts=int(track_cfg.get('start_attempts', 10)),
                anchor_head_on_calibration=bool(track_cfg.get('anchor_head_on_calibration', True)),
            )
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"Invalid configuration value: {e}") from e

        result = cls(
            screen=screen,
            projection=projection,
            filters=filters,
            head_motion=head_motion,
            calibration=calibration,
            tracking=tracking,
            calibration_file=cal_cfg.get('calibration_file'),
        )
        result.validate()
        return result

    def validate(self):
        """
        Raises:
            InvalidConfigurationError: If values are out of range
        """
        problems = []
        if self.screen.width <= 0 or self.screen.height <= 0:
            problems.append("screen size must be positive")
        if self.projection.plane_distance <= 0 or self.projection.min_direction_z <= 0:
            problems.append("projection distances must be positive")
        if not 0.0 < self.filters.damping_factor <= 1.0:
            problems.append("filters.damping_factor must be in (0, 1]")
        if self.filters.smoothing_window < 1:
            problems.append("filters.smoothing_window must be at least 1")
        if self.head_motion.history_size < self.head_motion.stability_window or self.head_motion.stability_window < 2:
            problems.append("head_motion.history_size must be >= stability_window >= 2")
        if not self.calibration.target_points:
            problems.append("calibration.target_points must not be empty")
        if self.calibration.min_samples > self.calibration.max_samples:
            problems.append("calibration.min_samples must not exceed max_samples")
        if self.tracking.start_attempts < 1:
            problems.append("tracking.start_attempts must be at least 1")
        if problems:
            raise InvalidConfigurationError("; ".join(problems))


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise InvalidConfigurationError(f"Section '{name}' must be a mapping")
    return section


def _target_points(raw) -> List[tuple]:
    points = []
    for item in raw:
        u, v = (float(c) for c in item)
        if not (0.0 <= u <= 1.0 and 0.0 <= v <= 1.0):
            raise InvalidConfigurationError(f"Target point {item} is outside the normalized range 0..1")
        points.append((u, v))
    return points


class GazeListener:
    """
    Receives the pipeline's output stream.

    The default implementation ignores everything; override what you need.
    """

    def on_gaze_point(self, point: ScreenPoint) -> None:
        pass

    def on_error(self, error: GazeTrackingError) -> None:
        pass


class CallbackGazeListener(GazeListener):
    """GazeListener that forwards to plain callables."""

    def __init__(
        self,
        on_point: Optional[Callable[[ScreenPoint], None]] = None,
        on_error: Optional[Callable[[GazeTrackingError], None]] = None,
    ):
        self._on_point = on_point
        self._on_error = on_error

    def on_gaze_point(self, point: ScreenPoint) -> None:
        if self._on_point is not None:
            self._on_point(point)

    def on_error(self, error: GazeTrackingError) -> None:
        if self._on_error is not None:
            self._on_error(error)


class _SerializedScheduler(Scheduler):
    """Runs every callback of the wrapped scheduler under the pipeline lock."""

    def __init__(self, inner: Scheduler, lock: threading.RLock):
        self._inner = inner
        self._lock = lock

    def now(self) -> float:
        return self._inner.now()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        def run():
            with self._lock:
                callback()

        return self._inner.call_later(delay, run)


class GazePipeline:
    """
    Per-frame gaze estimation coordinator.

    Owns the tracking session toggle, the estimation components and the
    calibration engine. Output goes to registered GazeListeners.
    """

    def __init__(
        self,
        pose_source: PoseSource,
        scheduler: Scheduler,
        config: Optional[PipelineConfig] = None,
        calibration_listener: Optional[CalibrationListener] = None,
    ):
        """
        Initialize the gaze pipeline

        Args:
            pose_source: Tracking collaborator delivering pose samples
            scheduler: Scheduler for calibration and start-up timers
            config: Pipeline configuration
            calibration_listener: Receives show/hide target events

        Raises:
            UnsupportedCapabilityError: If the pose source cannot track faces
        """
        if not pose_source.is_supported():
            raise UnsupportedCapabilityError()

        self.config = config or PipelineConfig()
        self.logger = logging.getLogger(__name__)
        self.pose_source = pose_source

        self._lock = threading.RLock()
        self.scheduler = _SerializedScheduler(scheduler, self._lock)

        screen = self.config.screen
        self.projector = GeometryProjector(screen, self.config.projection)
        self.outlier_gate = OutlierGate(screen, self.config.filters)
        self.smoothing = SmoothingFilter(self.config.filters.smoothing_window)
        self.head_compensator = HeadMotionCompensator(self.config.head_motion)
        self.calibration = CalibrationEngine(
            screen,
            self.scheduler,
            config=self.config.calibration,
            listener=calibration_listener,
        )

        self._listeners: List[GazeListener] = []
        self._tracking = False
        self._calibrated = False
        self._calibrating = False
        # Identifies the current run; an older run finishing must not clear the flag
        self._calibration_run = 0

        # Calibration requested while tracking was still starting
        self._pending_start: Optional[TimerHandle] = None
        self._pending_completion: Optional[CompletionCallback] = None
        self._start_checks = 0

        self.frames_processed = 0
        self.last_point: Optional[ScreenPoint] = None

        self._unsubscribe = pose_source.subscribe(self.handle_sample, self._on_session_failure)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_tracking(self) -> bool:
        return self._tracking and self.pose_source.is_running

    @property
    def is_calibrated(self) -> bool:
        return self._calibrated

    @property
    def is_calibrating(self) -> bool:
        return self._calibrating or self._pending_start is not None

    @property
    def is_calibration_required(self) -> bool:
        return not self._calibrated

    def status(self) -> Dict[str, Any]:
        """Snapshot of the pipeline state (JSON friendly)."""
        with self._lock:
            transform = self.calibration.transform
            return {
                'tracking': self.is_tracking,
                'calibrated': self.is_calibrated,
                'calibrating': self.is_calibrating,
                'calibration_state': str(self.calibration.state),
                'head_reference': self.head_compensator.has_reference,
                'frames_processed': self.frames_processed,
                'transform': transform.to_dict(),
                'screen': {'width': self.config.screen.width, 'height': self.config.screen.height},
            }

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: GazeListener) -> Callable[[], None]:
        """
        Register an output listener.

        Returns:
            A callable that unregisters the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit_point(self, point: ScreenPoint):
        for listener in list(self._listeners):
            try:
                listener.on_gaze_point(point)
            except Exception as e:
                self.logger.error(f"Gaze listener failed: {e}", exc_info=True)

    def _emit_error(self, error: GazeTrackingError):
        for listener in list(self._listeners):
            try:
                listener.on_error(error)
            except Exception as e:
                self.logger.error(f"Gaze listener failed handling error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Per-frame path
    # ------------------------------------------------------------------

    def handle_sample(self, sample: PoseSample) -> Optional[ScreenPoint]:
        """
        Process one pose sample

        Args:
            sample: Pose sample from the tracking collaborator

        Returns:
            The emitted (smoothed) gaze point, or None if the sample was ignored
        """
        with self._lock:
            if not self.is_tracking or not sample.is_valid:
                return None

            self.head_compensator.update_head_transform(sample.head_transform)

            position, direction = sample.combined_eye()
            position, direction = self.head_compensator.compensate(
                position, direction, sample.head_transform
            )

            raw_point = self.projector.project(position, direction)
            filtered = self.outlier_gate.filter(raw_point)

            if self.calibration.is_collecting:
                self.calibration.add_raw_gaze_point(filtered)

            point = self.calibration.apply_calibration(filtered) if self._calibrated else filtered
            smoothed = self.smoothing.apply(point)

            self.frames_processed += 1
            self.last_point = smoothed
            self._emit_point(smoothed)
            return smoothed

    # ------------------------------------------------------------------
    # Tracking lifecycle
    # ------------------------------------------------------------------

    def start_tracking(self) -> bool:
        """
        Start the tracking session.

        Failures are reported to listeners' on_error, not raised.

        Returns:
            True if tracking is running
        """
        with self._lock:
            if self.is_tracking:
                return True
            try:
                self.pose_source.start_session()
            except GazeTrackingError as e:
                self._tracking = False
                self.logger.error(f"Failed to start tracking: {e}")
                self._emit_error(e)
                return False
            except Exception as e:
                self._tracking = False
                self.logger.error(f"Failed to start tracking: {e}", exc_info=True)
                self._emit_error(SessionFailureError(f"Failed to start tracking session: {e}"))
                return False

            self._tracking = True
            self.logger.info("Tracking started")
            return True

    def stop_tracking(self):
        """Stop tracking; a calibration in progress is aborted (reported as failed)."""
        with self._lock:
            self._cancel_pending_start(report=True)
            self.calibration.abort("tracking stopped")
            self._calibrating = False
            self.pose_source.stop_session()
            self._tracking = False
            self.logger.info("Tracking stopped")

    def _on_session_failure(self, error: GazeTrackingError):
        with self._lock:
            self._tracking = False
            self._cancel_pending_start(report=True)
            self.calibration.abort(f"session failure: {error}")
            self._calibrating = False
            self._emit_error(error)

    def close(self):
        """Stop tracking and detach from the pose source."""
        self.stop_tracking()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def start_calibration(self, completion: Optional[CompletionCallback] = None):
        """
        Start calibration, starting tracking first if necessary.

        When tracking is not running it is started and checked again every
        `tracking.start_retry_delay` seconds before the first target is shown.

        Args:
            completion: Called once with True/False when calibration ends
        """
        with self._lock:
            self._cancel_pending_start(report=True)
            self._pending_completion = completion
            self._start_checks = 0

            if self.is_tracking:
                self._begin_calibration()
                return

            self.logger.info("Tracking not running, starting it before calibration")
            self.start_tracking()
            self._schedule_start_check()

    def _schedule_start_check(self):
        self._pending_start = self.scheduler.call_later(
            self.config.tracking.start_retry_delay, self._check_tracking_started
        )

    def _check_tracking_started(self):
        self._pending_start = None
        if self.is_tracking:
            self._begin_calibration()
            return

        self._start_checks += 1
        if self._start_checks >= self.config.tracking.start_attempts:
            self.logger.error(
                f"Tracking did not start after {self._start_checks} attempts, calibration not started"
            )
            completion = self._pending_completion
            self._pending_completion = None
            if completion is not None:
                completion(False)
            return

        self.start_tracking()
        self._schedule_start_check()

    def _cancel_pending_start(self, report: bool):
        if self._pending_start is not None:
            self._pending_start.cancel()
            self._pending_start = None
        completion = self._pending_completion
        self._pending_completion = None
        if report and completion is not None:
            completion(False)

    def _begin_calibration(self):
        completion = self._pending_completion
        self._pending_completion = None

        if self.config.tracking.anchor_head_on_calibration:
            self.head_compensator.set_head_reference()

        self._calibration_run += 1
        run = self._calibration_run
        self._calibrating = True

        def finished(success: bool):
            if run == self._calibration_run:
                self._calibrating = False
            if success:
                self._calibrated = True
            if completion is not None:
                completion(success)

        self.calibration.start_calibration(finished)

    def reset_calibration(self):
        """
        Forget the calibration and reset head reference and filters.

        A run in progress is discarded; its completion callback never fires.
        """
        with self._lock:
            self._cancel_pending_start(report=False)
            self.calibration.reset_calibration()
            self._calibrated = False
            self._calibrating = False
            self.head_compensator.reset_head_reference()
            self.reset_filters()

    def reset_filters(self):
        with self._lock:
            self.outlier_gate.reset()
            self.smoothing.reset()

    def set_head_reference(self) -> bool:
        """Use the current head pose as the compensation reference."""
        with self._lock:
            return self.head_compensator.set_head_reference()

    def reset_head_reference(self):
        """
        Clear the head reference and history.

        Raw points collected so far no longer share a reference, so a
        calibration run in progress is aborted (reported as failed).
        """
        with self._lock:
            self._cancel_pending_start(report=True)
            self.calibration.abort("head reference reset")
            self._calibrating = False
            self.head_compensator.reset_head_reference()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_calibration(self, path: Optional[str] = None) -> bool:
        """
        Save the current transform.

        Returns:
            True if saved, False if there is nothing to save or no path
        """
        path = path or self.config.calibration_file
        if path is None:
            self.logger.warning("No calibration file path specified")
            return False
        if not self._calibrated:
            self.logger.warning("No calibration data to save")
            return False
        with self._lock:
            save_calibration(
                self.calibration.transform,
                path,
                results=self.calibration.results,
                quality=self.calibration.last_quality,
            )
        return True

    def load_calibration(self, path: Optional[str] = None) -> bool:
        """
        Install a stored transform and mark the pipeline calibrated.

        Returns:
            True if a transform was loaded
        """
        path = path or self.config.calibration_file
        if path is None:
            self.logger.warning("No calibration file path specified")
            return False
        transform = load_calibration(path)
        if transform is None:
            return False
        with self._lock:
            self.calibration.install_transform(transform)
            self._calibrated = True
        return True
