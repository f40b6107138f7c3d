"""
Calibration Module

Multi-target calibration state machine, sample statistics, and
persistence of the fitted per-axis affine transform.
"""

from .engine import (
    CalibrationEngine,
    CalibrationConfig,
    CalibrationListener,
    DEFAULT_TARGET_POINTS,
)
from .state_machine import CalibrationState, Phase, Event, advance
from .statistics import (
    CalibrationSample,
    CalibrationPointResult,
    CalibrationTransform,
)
from .storage import save_calibration, load_calibration

__all__ = [
    'CalibrationEngine',
    'CalibrationConfig',
    'CalibrationListener',
    'DEFAULT_TARGET_POINTS',
    'CalibrationState',
    'Phase',
    'Event',
    'advance',
    'CalibrationSample',
    'CalibrationPointResult',
    'CalibrationTransform',
    'save_calibration',
    'load_calibration',
]
