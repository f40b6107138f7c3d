"""
Head-motion compensation.

Keeps a reference head pose and corrects the eye ray for the rotation and
translation the head has accumulated since that reference was taken. The
reference silently re-anchors whenever the head has been still for a few
frames, which keeps long sessions from drifting.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from itertools import combinations
from typing import Deque, List, Optional, Tuple
import logging

import numpy as np
from scipy.spatial.transform import Rotation

from screen_gaze.models import as_mat4, normalize, translation_of


@dataclass
class HeadMotionConfig:
    """Configuration for head-motion compensation."""

    history_size: int = 10

    # Number of most recent poses checked for stability
    stability_window: int = 3

    # Stability thresholds: 1 cm, ~3 degrees
    position_threshold: float = 0.01
    rotation_threshold: float = 0.05

    # Yaw/pitch correction strength
    compensation_factor: float = 0.8


def rotation_of(transform: np.ndarray) -> Rotation:
    return Rotation.from_matrix(np.asarray(transform, dtype=float)[:3, :3])


def rotation_delta(reference: np.ndarray, current: np.ndarray) -> np.ndarray:
    """
    Rotation from `reference` to `current` as an axis * angle vector.
    """
    delta = rotation_of(current) * rotation_of(reference).inv()
    return delta.as_rotvec()


def position_delta(reference: np.ndarray, current: np.ndarray) -> np.ndarray:
    return translation_of(current) - translation_of(reference)


def position_variation(transforms: List[np.ndarray]) -> float:
    """Largest pairwise distance between the translations."""
    if len(transforms) < 2:
        return 0.0
    positions = [translation_of(t) for t in transforms]
    return max(float(np.linalg.norm(a - b)) for a, b in combinations(positions, 2))


def rotation_variation(transforms: List[np.ndarray]) -> float:
    """Largest pairwise rotation angle (radians) between the orientations."""
    if len(transforms) < 2:
        return 0.0
    rotations = [rotation_of(t) for t in transforms]
    return max(float((a * b.inv()).magnitude()) for a, b in combinations(rotations, 2))


class HeadMotionCompensator:
    """
    Compensates eye position/direction for head movement.

    States (implicit):
    - uninitialized: no reference, inputs pass through unchanged
    - tracking: reference set, inputs are compensated
    - re-anchor: reference replaced by the newest pose once the head is stable
    """

    def __init__(self, config: Optional[HeadMotionConfig] = None):
        self.config = config or HeadMotionConfig()
        self.logger = logging.getLogger(__name__)

        self._reference: Optional[np.ndarray] = None
        self._history: Deque[np.ndarray] = deque(maxlen=self.config.history_size)

    @property
    def has_reference(self) -> bool:
        return self._reference is not None

    @property
    def reference_transform(self) -> Optional[np.ndarray]:
        return None if self._reference is None else self._reference.copy()

    @property
    def history_length(self) -> int:
        return len(self._history)

    def update_head_transform(self, head_transform) -> None:
        """
        Record a new head pose.

        Args:
            head_transform: 4x4 rigid head transform
        """
        transform = as_mat4(head_transform)

        if self._reference is None:
            self._reference = transform
            self.logger.debug("Head reference initialized")

        self._history.append(transform)

        if len(self._history) >= self.config.history_size:
            self._reanchor_if_stable()

    def _reanchor_if_stable(self) -> None:
        window = self.config.stability_window
        if len(self._history) < window:
            return

        recent = list(self._history)[-window:]
        moved = position_variation(recent)
        turned = rotation_variation(recent)

        if moved < self.config.position_threshold and turned < self.config.rotation_threshold:
            self._reference = recent[-1]

    def compensate(
        self,
        eye_position: np.ndarray,
        eye_direction: np.ndarray,
        head_transform,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Correct eye position and direction for head motion since the reference.

        Args:
            eye_position: Eye position (3,)
            eye_direction: Unit eye direction (3,)
            head_transform: Current 4x4 head transform

        Returns:
            (compensated_position, compensated_direction); the inputs unchanged
            when no reference has been set
        """
        if self._reference is None:
            return eye_position, eye_direction

        current = as_mat4(head_transform)
        delta_rotation = rotation_delta(self._reference, current)
        delta_position = position_delta(self._reference, current)

        f = self.config.compensation_factor
        direction = normalize(np.array([
            eye_direction[0] - delta_rotation[1] * f,  # yaw
            eye_direction[1] + delta_rotation[0] * f,  # pitch
            eye_direction[2],
        ], dtype=float))
        position = np.asarray(eye_position, dtype=float) - delta_position

        return position, direction

    def set_head_reference(self) -> bool:
        """
        Use the most recent head pose as the reference.

        Returns:
            True if a pose was available
        """
        if not self._history:
            return False
        self._reference = self._history[-1]
        self.logger.info("Head reference set to current pose")
        return True

    def reset_head_reference(self) -> None:
        self._reference = None
        self._history.clear()
