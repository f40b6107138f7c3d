"""
Tests for eye-ray to screen projection
"""

import numpy as np
import pytest

from screen_gaze.estimation.projector import GeometryProjector, ProjectionConfig
from screen_gaze.models import ScreenPoint, ScreenSize


SCREEN = ScreenSize(1920, 1080)


def test_straight_ahead_hits_screen_center():
    """Looking straight at the plane from the origin lands on the center"""
    projector = GeometryProjector(SCREEN)
    point = projector.project(np.zeros(3), np.array([0.0, 0.0, -1.0]))
    assert point.x == pytest.approx(960.0)
    assert point.y == pytest.approx(540.0)


def test_projection_formula():
    """x is mirrored around the center, y grows downward"""
    projector = GeometryProjector(SCREEN)
    direction = np.array([0.1, 0.05, -1.0])
    direction = direction / np.linalg.norm(direction)

    point = projector.project(np.zeros(3), direction)

    # t = 0.6 / |dz|; intersection = (0.06, 0.03)
    assert point.x == pytest.approx(960.0 - 60.0)
    assert point.y == pytest.approx(540.0 + 30.0)


def test_eye_position_offsets_intersection():
    projector = GeometryProjector(SCREEN)
    point = projector.project(np.array([0.01, -0.02, 0.0]), np.array([0.0, 0.0, -1.0]))
    assert point.x == pytest.approx(960.0 - 10.0)
    assert point.y == pytest.approx(540.0 - 20.0)


def test_custom_distance_and_scale():
    config = ProjectionConfig(plane_distance=1.0, projection_scale=500.0)
    projector = GeometryProjector(ScreenSize(1000, 800), config)
    direction = np.array([0.2, 0.0, -1.0])

    point = projector.project(np.zeros(3), direction)

    assert point.x == pytest.approx(500.0 - 0.2 * 500.0)
    assert point.y == pytest.approx(400.0)


class TestParallelRays:
    """Rays (nearly) parallel to the screen plane"""

    def test_zero_z_is_finite(self):
        projector = GeometryProjector(SCREEN)
        point = projector.project(np.zeros(3), np.array([1.0, 0.0, 0.0]))
        assert np.isfinite(point.x)
        assert np.isfinite(point.y)

    def test_tiny_z_keeps_sign(self):
        projector = GeometryProjector(SCREEN)
        toward = projector.project(np.zeros(3), np.array([1.0, 0.0, -1e-12]))
        away = projector.project(np.zeros(3), np.array([1.0, 0.0, 1e-12]))
        # Opposite signs of dz put the point on opposite sides of the center
        assert toward.x < 960.0 < away.x

    def test_guard_uses_configured_epsilon(self):
        projector = GeometryProjector(SCREEN, ProjectionConfig(min_direction_z=0.5))
        point = projector.project(np.zeros(3), np.array([0.1, 0.0, -0.01]))
        # t = 0.6 / 0.5 = 1.2
        assert point.x == pytest.approx(960.0 - 1.2 * 0.1 * 1000.0)


def test_projection_is_deterministic():
    projector = GeometryProjector(SCREEN)
    direction = np.array([0.05, -0.02, -0.99])
    first = projector.project(np.array([0.0, 0.01, 0.0]), direction)
    second = projector.project(np.array([0.0, 0.01, 0.0]), direction)
    assert first == second
    assert isinstance(first, ScreenPoint)
