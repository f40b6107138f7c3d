"""
Tests for head-motion compensation
"""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from screen_gaze.estimation.head_motion import (
    HeadMotionCompensator,
    HeadMotionConfig,
    position_variation,
    rotation_delta,
    rotation_variation,
)


def make_transform(translation=(0.0, 0.0, 0.0), rotvec=(0.0, 0.0, 0.0)):
    transform = np.eye(4)
    transform[:3, :3] = Rotation.from_rotvec(rotvec).as_matrix()
    transform[:3, 3] = translation
    return transform


FORWARD = np.array([0.0, 0.0, -1.0])


def test_passthrough_without_reference():
    """Inputs pass through unchanged until a head pose has been seen"""
    compensator = HeadMotionCompensator()
    position = np.array([0.01, 0.02, 0.03])
    out_pos, out_dir = compensator.compensate(position, FORWARD, make_transform((0.5, 0, 0)))
    assert out_pos is position
    assert out_dir is FORWARD
    assert compensator.has_reference is False


def test_first_pose_becomes_reference():
    compensator = HeadMotionCompensator()
    compensator.update_head_transform(make_transform((0.1, 0, 0)))
    assert compensator.has_reference
    np.testing.assert_allclose(compensator.reference_transform[:3, 3], [0.1, 0, 0])


def test_translation_compensated():
    compensator = HeadMotionCompensator()
    compensator.update_head_transform(make_transform())

    moved = make_transform((0.05, -0.02, 0.0))
    position, direction = compensator.compensate(np.array([0.1, 0.1, 0.0]), FORWARD, moved)

    np.testing.assert_allclose(position, [0.05, 0.12, 0.0])
    np.testing.assert_allclose(direction, FORWARD, atol=1e-12)


def test_yaw_compensated():
    """Yaw shifts the x component of the direction by -delta_yaw * factor"""
    compensator = HeadMotionCompensator()
    compensator.update_head_transform(make_transform())

    turned = make_transform(rotvec=(0.0, 0.1, 0.0))
    _, direction = compensator.compensate(np.zeros(3), FORWARD, turned)

    expected = np.array([-0.08, 0.0, -1.0])
    expected /= np.linalg.norm(expected)
    np.testing.assert_allclose(direction, expected, atol=1e-9)
    assert np.linalg.norm(direction) == pytest.approx(1.0)


def test_pitch_compensated():
    compensator = HeadMotionCompensator(HeadMotionConfig(compensation_factor=1.0))
    compensator.update_head_transform(make_transform())

    _, direction = compensator.compensate(np.zeros(3), FORWARD, make_transform(rotvec=(0.05, 0.0, 0.0)))

    expected = np.array([0.0, 0.05, -1.0])
    expected /= np.linalg.norm(expected)
    np.testing.assert_allclose(direction, expected, atol=1e-9)


class TestReanchoring:
    """Reference re-anchors once the head is still"""

    def test_reanchors_after_stable_history(self):
        compensator = HeadMotionCompensator()
        compensator.update_head_transform(make_transform())
        moved = make_transform((0.05, 0.0, 0.0))
        for _ in range(9):
            compensator.update_head_transform(moved)

        np.testing.assert_allclose(compensator.reference_transform, moved)

        position, _ = compensator.compensate(np.array([0.1, 0.0, 0.0]), FORWARD, moved)
        np.testing.assert_allclose(position, [0.1, 0.0, 0.0])

    def test_no_reanchor_while_moving(self):
        compensator = HeadMotionCompensator()
        compensator.update_head_transform(make_transform())
        for i in range(1, 15):
            compensator.update_head_transform(make_transform((0.02 * i, 0.0, 0.0)))

        np.testing.assert_allclose(compensator.reference_transform, make_transform())

    def test_history_is_bounded(self):
        compensator = HeadMotionCompensator(HeadMotionConfig(history_size=4))
        for _ in range(10):
            compensator.update_head_transform(make_transform())
        assert compensator.history_length == 4


class TestManualReference:

    def test_set_reference_requires_history(self):
        compensator = HeadMotionCompensator()
        assert compensator.set_head_reference() is False

    def test_set_reference_uses_latest_pose(self):
        compensator = HeadMotionCompensator()
        compensator.update_head_transform(make_transform())
        latest = make_transform((0.0, 0.3, 0.0))
        compensator.update_head_transform(latest)

        assert compensator.set_head_reference() is True
        np.testing.assert_allclose(compensator.reference_transform, latest)

    def test_reset_clears_reference_and_history(self):
        compensator = HeadMotionCompensator()
        compensator.update_head_transform(make_transform())
        compensator.reset_head_reference()
        assert compensator.has_reference is False
        assert compensator.history_length == 0


def test_rotation_helpers():
    reference = make_transform()
    current = make_transform(rotvec=(0.0, 0.2, 0.0))
    np.testing.assert_allclose(rotation_delta(reference, current), [0.0, 0.2, 0.0], atol=1e-12)
    assert rotation_variation([reference, current]) == pytest.approx(0.2)
    assert position_variation([make_transform((0, 0, 0)), make_transform((0.03, 0.04, 0))]) == pytest.approx(0.05)
    assert position_variation([reference]) == 0.0
