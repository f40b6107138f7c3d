"""
Core data types shared across the gaze pipeline.

Vectors and matrices are plain NumPy arrays:
- Vec3: shape (3,) float
- Mat4: shape (4, 4) float, rigid transform with translation in column 3
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple
import math
import time

import numpy as np


def as_vec3(values: Sequence[float]) -> np.ndarray:
    """Coerce a 3-sequence into a float vector."""
    vec = np.asarray(values, dtype=float).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"Expected 3 components, got shape {vec.shape}")
    return vec


def as_mat4(values) -> np.ndarray:
    """Coerce a nested sequence (or flat 16-sequence, row-major) into a 4x4 matrix."""
    mat = np.asarray(values, dtype=float)
    if mat.shape == (16,):
        mat = mat.reshape(4, 4)
    if mat.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 matrix, got shape {mat.shape}")
    return mat


def normalize(vec: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vec))
    if norm < 1e-12:
        return vec.astype(float)
    return vec / norm


def translation_of(transform: np.ndarray) -> np.ndarray:
    """Translation component (column 3) of a rigid transform."""
    return np.array(transform[:3, 3], dtype=float)


def forward_of(transform: np.ndarray) -> np.ndarray:
    """Forward axis (column 2) of a rigid transform."""
    return np.array(transform[:3, 2], dtype=float)


@dataclass(frozen=True)
class ScreenPoint:
    """A point in screen-pixel coordinates."""
    x: float
    y: float

    def distance_to(self, other: "ScreenPoint") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def lerp(self, other: "ScreenPoint", fraction: float) -> "ScreenPoint":
        """Move `fraction` of the way from this point toward `other`."""
        return ScreenPoint(
            self.x + (other.x - self.x) * fraction,
            self.y + (other.y - self.y) * fraction,
        )

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class ScreenSize:
    """Display size in pixels."""
    width: float
    height: float

    def contains(self, point: ScreenPoint) -> bool:
        return 0.0 <= point.x <= self.width and 0.0 <= point.y <= self.height

    def to_pixels(self, u: float, v: float) -> ScreenPoint:
        """Convert normalized (0..1) screen coordinates to pixels."""
        return ScreenPoint(u * self.width, v * self.height)


@dataclass(frozen=True)
class PoseSample:
    """
    One frame of eye/head geometry from the tracking collaborator.

    Positions are in scene units (meters) in a right-handed device-centered
    frame; directions are unit vectors in the same frame.
    """
    eye_position_left: np.ndarray
    eye_position_right: np.ndarray
    eye_direction_left: np.ndarray
    eye_direction_right: np.ndarray
    head_transform: np.ndarray
    is_valid: bool = True
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_eye_transforms(
        cls,
        left_eye_transform,
        right_eye_transform,
        head_transform,
        is_valid: bool = True,
        timestamp: Optional[float] = None,
    ) -> "PoseSample":
        """
        Build a sample from per-eye 4x4 transforms.

        Eye position comes from the translation column and eye direction from
        the (normalized) forward column of each transform.
        """
        left = as_mat4(left_eye_transform)
        right = as_mat4(right_eye_transform)
        return cls(
            eye_position_left=translation_of(left),
            eye_position_right=translation_of(right),
            eye_direction_left=normalize(forward_of(left)),
            eye_direction_right=normalize(forward_of(right)),
            head_transform=as_mat4(head_transform),
            is_valid=is_valid,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def combined_eye(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Average the two eyes.

        Returns:
            (position, direction): arithmetic mean of the positions and the
            renormalized mean of the directions
        """
        position = (self.eye_position_left + self.eye_position_right) / 2.0
        direction = normalize((self.eye_direction_left + self.eye_direction_right) / 2.0)
        return position, direction
