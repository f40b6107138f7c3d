"""
Eye-ray to screen-plane projection.

The eye ray is intersected with a virtual plane at a fixed distance in front
of the eye, and the intersection is mapped linearly onto screen pixels
around the screen center.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import math

import numpy as np

from screen_gaze.models import ScreenPoint, ScreenSize


@dataclass
class ProjectionConfig:
    """Configuration for screen-plane projection."""

    # Distance from the eye to the virtual screen plane (scene units)
    plane_distance: float = 0.6

    # Scene units -> pixels (device specific)
    projection_scale: float = 1000.0

    # Smallest |direction.z| used as a divisor
    min_direction_z: float = 1e-6


class GeometryProjector:
    """
    Projects a 3D eye position + unit gaze direction to a 2D screen point.

    Stateless: the same inputs always give the same output.
    """

    def __init__(self, screen_size: ScreenSize, config: Optional[ProjectionConfig] = None):
        self.screen_size = screen_size
        self.config = config or ProjectionConfig()

    def _guarded_z(self, dz: float) -> float:
        eps = self.config.min_direction_z
        if abs(dz) >= eps:
            return dz
        # Exact zero is treated as positive
        return math.copysign(eps, dz) if dz != 0.0 else eps

    def project(self, eye_position: np.ndarray, eye_direction: np.ndarray) -> ScreenPoint:
        """
        Intersect the gaze ray with the screen plane.

        Args:
            eye_position: Eye position (3,)
            eye_direction: Unit gaze direction (3,)

        Returns:
            Screen point in pixels (may lie outside the visible screen)
        """
        dz = self._guarded_z(float(eye_direction[2]))
        t = -self.config.plane_distance / dz

        intersection_x = float(eye_position[0]) + t * float(eye_direction[0])
        intersection_y = float(eye_position[1]) + t * float(eye_direction[1])

        k = self.config.projection_scale
        screen_x = self.screen_size.width / 2.0 - intersection_x * k
        screen_y = self.screen_size.height / 2.0 + intersection_y * k

        return ScreenPoint(screen_x, screen_y)
