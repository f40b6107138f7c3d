"""
Error types for the gaze tracking pipeline.
"""

from typing import Optional


class GazeTrackingError(Exception):
    """Base class for all gaze tracking errors."""

    default_message = "Gaze tracking error."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def description(self) -> str:
        return str(self)


class UnsupportedCapabilityError(GazeTrackingError):
    """Tracking hardware or capability is absent. Not recoverable."""

    default_message = "This device does not support face tracking."


class PermissionDeniedError(GazeTrackingError):
    """The tracking collaborator was not allowed to access the camera."""

    default_message = "Camera permission is required for eye tracking."


class SessionFailureError(GazeTrackingError):
    """Tracking session failed or was interrupted; tracking is stopped."""

    default_message = "Face tracking session failed."


class CalibrationFailedError(GazeTrackingError):
    """Calibration quality gates were not met."""

    default_message = "Calibration process failed. Please try again."


class TrackingNotStartedError(GazeTrackingError):
    """An operation required active tracking."""

    default_message = "Eye tracking has not been started. Call start_tracking() first."


class InvalidConfigurationError(GazeTrackingError):
    """Configuration values are missing or malformed."""

    default_message = "Invalid configuration for eye tracking."


class InvalidTransitionError(GazeTrackingError):
    """Calibration state machine received an event not valid in its current state."""

    default_message = "Invalid calibration state transition."
