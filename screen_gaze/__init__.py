"""
Screen Gaze

Turns per-frame eye/head geometry from a face tracker into stabilized,
calibrated 2D gaze points on a display.
"""

from screen_gaze.errors import (
    GazeTrackingError,
    UnsupportedCapabilityError,
    PermissionDeniedError,
    SessionFailureError,
    CalibrationFailedError,
    TrackingNotStartedError,
    InvalidConfigurationError,
    InvalidTransitionError,
)
from screen_gaze.models import PoseSample, ScreenPoint, ScreenSize
from screen_gaze.pipeline import (
    CallbackGazeListener,
    GazeListener,
    GazePipeline,
    PipelineConfig,
    TrackingConfig,
)
from screen_gaze.scheduling import AsyncioScheduler, Scheduler, VirtualScheduler

__version__ = "0.1.0"

__all__ = [
    'GazePipeline',
    'PipelineConfig',
    'TrackingConfig',
    'GazeListener',
    'CallbackGazeListener',
    'PoseSample',
    'ScreenPoint',
    'ScreenSize',
    'Scheduler',
    'AsyncioScheduler',
    'VirtualScheduler',
    'GazeTrackingError',
    'UnsupportedCapabilityError',
    'PermissionDeniedError',
    'SessionFailureError',
    'CalibrationFailedError',
    'TrackingNotStartedError',
    'InvalidConfigurationError',
    'InvalidTransitionError',
]
