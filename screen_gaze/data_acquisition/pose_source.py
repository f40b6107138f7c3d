"""
Pose sources: the boundary to the external face-tracking subsystem.

A pose source owns the tracking session (start/stop) and delivers one
PoseSample per tracking frame to its subscribers. Session-level failures
(e.g. tracking interrupted) are delivered on a separate channel, never as
invalid frames.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional
import logging

from screen_gaze.errors import SessionFailureError, GazeTrackingError
from screen_gaze.models import PoseSample, as_mat4, as_vec3, normalize


SampleHandler = Callable[[PoseSample], None]
FailureHandler = Callable[[GazeTrackingError], None]


class PoseSource:
    """
    Base class for tracking collaborators.

    Subclasses override `_open_session()` / `_close_session()` to talk to the
    actual tracker and call `emit_sample()` / `emit_failure()`.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._sample_handlers: List[SampleHandler] = []
        self._failure_handlers: List[FailureHandler] = []
        self._running = False

    def is_supported(self) -> bool:
        """Whether face tracking is available at all on this host."""
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    def start_session(self):
        """
        Start the tracking session.

        Raises:
            GazeTrackingError: If the session cannot be started
        """
        if self._running:
            return
        self._open_session()
        self._running = True
        self.logger.info(f"{type(self).__name__} session started")

    def stop_session(self):
        if not self._running:
            return
        self._running = False
        self._close_session()
        self.logger.info(f"{type(self).__name__} session stopped")

    def _open_session(self):
        pass

    def _close_session(self):
        pass

    def subscribe(
        self,
        on_sample: SampleHandler,
        on_failure: Optional[FailureHandler] = None,
    ) -> Callable[[], None]:
        """
        Register handlers for samples and session failures.

        Returns:
            A callable that removes both handlers again
        """
        self._sample_handlers.append(on_sample)
        if on_failure is not None:
            self._failure_handlers.append(on_failure)

        def unsubscribe():
            if on_sample in self._sample_handlers:
                self._sample_handlers.remove(on_sample)
            if on_failure is not None and on_failure in self._failure_handlers:
                self._failure_handlers.remove(on_failure)

        return unsubscribe

    def emit_sample(self, sample: PoseSample):
        """Deliver a sample to subscribers (dropped while the session is stopped)."""
        if not self._running:
            return
        for handler in list(self._sample_handlers):
            handler(sample)

    def emit_failure(self, error: GazeTrackingError):
        """Report a session failure; the session is considered stopped."""
        self._running = False
        self.logger.error(f"Tracking session failed: {error}")
        for handler in list(self._failure_handlers):
            handler(error)


class PushPoseSource(PoseSource):
    """
    Pose source fed by an external producer (network client, tests).
    """

    def __init__(self, supported: bool = True):
        super().__init__()
        self._supported = supported

    def is_supported(self) -> bool:
        return self._supported

    def push(self, sample: PoseSample):
        self.emit_sample(sample)

    def interrupt(self, reason: str = "Tracking interrupted"):
        if self._running:
            self.emit_failure(SessionFailureError(reason))


def _eye_from_dict(data: Dict[str, Any], side: str):
    eye = data.get(f"{side}_eye")
    if isinstance(eye, dict):
        return as_vec3(eye["position"]), normalize(as_vec3(eye["direction"]))
    raise KeyError(f"{side}_eye")


def parse_pose_message(data: Dict[str, Any]) -> PoseSample:
    """
    Build a PoseSample from a JSON-style dictionary.

    Accepted layouts:
    - {"left_eye_transform": 4x4, "right_eye_transform": 4x4, "head_transform": 4x4}
    - {"left_eye": {"position": [x,y,z], "direction": [x,y,z]},
       "right_eye": {...}, "head_transform": 4x4}

    Matrices may be nested row lists or flat 16-element row-major lists.
    Optional keys: "valid" (default true), "timestamp". Without a timestamp
    the sample is stamped with the current wall-clock time; `load_recording`
    instead spaces such lines 1/60 s apart.

    Raises:
        ValueError: If required fields are missing or malformed
    """
    try:
        is_valid = bool(data.get("valid", data.get("is_valid", True)))
        timestamp = data.get("timestamp")
        timestamp = float(timestamp) if timestamp is not None else None
        head = data["head_transform"]

        if "left_eye_transform" in data or "right_eye_transform" in data:
            return PoseSample.from_eye_transforms(
                data["left_eye_transform"],
                data["right_eye_transform"],
                head,
                is_valid=is_valid,
                timestamp=timestamp,
            )

        left_pos, left_dir = _eye_from_dict(data, "left")
        right_pos, right_dir = _eye_from_dict(data, "right")
        kwargs = {} if timestamp is None else {"timestamp": timestamp}
        return PoseSample(
            eye_position_left=left_pos,
            eye_position_right=right_pos,
            eye_direction_left=left_dir,
            eye_direction_right=right_dir,
            head_transform=as_mat4(head),
            is_valid=is_valid,
            **kwargs,
        )
    except KeyError as e:
        raise ValueError(f"Pose message is missing field {e}") from e
    except (AttributeError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed pose message: {e}") from e
