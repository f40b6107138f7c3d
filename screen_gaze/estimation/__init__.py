"""
Gaze Estimation Module
Projects eye rays onto the screen, compensates head motion, and filters points
"""

from screen_gaze.estimation.projector import GeometryProjector, ProjectionConfig
from screen_gaze.estimation.filters import OutlierGate, SmoothingFilter, FilterConfig
from screen_gaze.estimation.head_motion import HeadMotionCompensator, HeadMotionConfig

__all__ = [
    'GeometryProjector',
    'ProjectionConfig',
    'OutlierGate',
    'SmoothingFilter',
    'FilterConfig',
    'HeadMotionCompensator',
    'HeadMotionConfig',
]
