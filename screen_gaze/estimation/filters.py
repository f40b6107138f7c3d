"""
Temporal filters applied to projected gaze points.

- OutlierGate: clamps pathological values and damps implausible jumps
- SmoothingFilter: bounded moving average over the most recent points
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from screen_gaze.models import ScreenPoint, ScreenSize


@dataclass
class FilterConfig:
    """Configuration for outlier gating and smoothing."""

    # Pixels; larger frame-to-frame moves are damped, not accepted outright
    jump_threshold: float = 200.0

    # Fraction of a large jump that is accepted
    damping_factor: float = 0.3

    # Fraction of width/height allowed outside the screen on each side
    overscan: float = 0.2

    # Moving average window (frames)
    smoothing_window: int = 5


class OutlierGate:
    """
    Rejects/damps implausible frame-to-frame jumps.

    Fast but genuine saccades still get through, just spread over several
    frames instead of in a single step.
    """

    def __init__(self, screen_size: ScreenSize, config: Optional[FilterConfig] = None):
        self.screen_size = screen_size
        self.config = config or FilterConfig()
        self._last_accepted: Optional[ScreenPoint] = None

    @property
    def last_accepted(self) -> Optional[ScreenPoint]:
        return self._last_accepted

    def clamp(self, point: ScreenPoint) -> ScreenPoint:
        """Clamp a point into the overscanned screen rectangle."""
        w = self.screen_size.width
        h = self.screen_size.height
        margin = self.config.overscan
        x = max(-w * margin, min(w * (1.0 + margin), point.x))
        y = max(-h * margin, min(h * (1.0 + margin), point.y))
        return ScreenPoint(x, y)

    def filter(self, point: ScreenPoint) -> ScreenPoint:
        clamped = self.clamp(point)

        last = self._last_accepted
        if last is not None and clamped.distance_to(last) > self.config.jump_threshold:
            damped = last.lerp(clamped, self.config.damping_factor)
            self._last_accepted = damped
            return damped

        self._last_accepted = clamped
        return clamped

    def reset(self):
        self._last_accepted = None


class SmoothingFilter:
    """Moving average over at most `window` recent points."""

    def __init__(self, window: int = 5):
        if window < 1:
            raise ValueError("Smoothing window must be at least 1")
        self._history: Deque[ScreenPoint] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._history)

    @property
    def window(self) -> int:
        return self._history.maxlen

    def apply(self, point: ScreenPoint) -> ScreenPoint:
        """
        Append a point and return the mean of the held points.

        During warm-up (fewer than `window` points) the mean is taken over
        however many points exist.
        """
        self._history.append(point)
        positions = np.array([p.as_tuple() for p in self._history], dtype=float)
        mean_x, mean_y = positions.mean(axis=0)
        return ScreenPoint(float(mean_x), float(mean_y))

    def reset(self):
        self._history.clear()
