"""
Tests for pose sources and pose message parsing
"""

import json

import numpy as np
import pytest

from screen_gaze.data_acquisition.pose_source import PushPoseSource, parse_pose_message
from screen_gaze.data_acquisition.replay_source import ReplayPoseSource, load_recording
from screen_gaze.errors import SessionFailureError, UnsupportedCapabilityError


def eye_transform(position, forward):
    transform = np.eye(4)
    transform[:3, 2] = forward
    transform[:3, 3] = position
    return transform.tolist()


def vector_message(**extra):
    message = {
        "left_eye": {"position": [-0.03, 0.0, 0.0], "direction": [0.0, 0.0, -2.0]},
        "right_eye": {"position": [0.03, 0.0, 0.0], "direction": [0.0, 0.0, -1.0]},
        "head_transform": np.eye(4).tolist(),
    }
    message.update(extra)
    return message


class TestParsePoseMessage:

    def test_eye_transforms(self):
        sample = parse_pose_message({
            "left_eye_transform": eye_transform([-0.03, 0.01, 0.0], [0.0, 0.0, -2.0]),
            "right_eye_transform": eye_transform([0.03, 0.01, 0.0], [0.0, 0.0, -1.0]),
            "head_transform": np.eye(4).flatten().tolist(),
            "timestamp": 12.5,
        })
        np.testing.assert_allclose(sample.eye_position_left, [-0.03, 0.01, 0.0])
        np.testing.assert_allclose(sample.eye_direction_left, [0.0, 0.0, -1.0])
        assert sample.head_transform.shape == (4, 4)
        assert sample.timestamp == 12.5
        assert sample.is_valid

    def test_position_direction_layout(self):
        sample = parse_pose_message(vector_message(valid=False))
        position, direction = sample.combined_eye()
        np.testing.assert_allclose(position, [0.0, 0.0, 0.0])
        np.testing.assert_allclose(direction, [0.0, 0.0, -1.0])
        assert sample.is_valid is False

    def test_missing_field(self):
        message = vector_message()
        del message["head_transform"]
        with pytest.raises(ValueError, match="head_transform"):
            parse_pose_message(message)

    def test_malformed_matrix(self):
        with pytest.raises(ValueError):
            parse_pose_message(vector_message(head_transform=[1, 2, 3]))


class TestPushPoseSource:

    def test_samples_dropped_until_started(self):
        source = PushPoseSource()
        received = []
        source.subscribe(received.append)
        sample = parse_pose_message(vector_message())

        source.push(sample)
        assert received == []

        source.start_session()
        source.push(sample)
        assert received == [sample]

    def test_interrupt_reports_failure(self):
        source = PushPoseSource()
        failures = []
        source.subscribe(lambda s: None, failures.append)
        source.start_session()

        source.interrupt("lost face")
        assert source.is_running is False
        assert isinstance(failures[0], SessionFailureError)
        assert str(failures[0]) == "lost face"

        # Not running any more: nothing further to report
        source.interrupt()
        assert len(failures) == 1

    def test_unsubscribe(self):
        source = PushPoseSource()
        received = []
        unsubscribe = source.subscribe(received.append)
        source.start_session()
        unsubscribe()
        source.push(parse_pose_message(vector_message()))
        assert received == []


class TestReplay:

    def write_recording(self, path, count=3):
        lines = ["# recorded session", ""]
        for i in range(count):
            lines.append(json.dumps(vector_message(timestamp=float(i) / 30.0)))
        path.write_text("\n".join(lines) + "\n")
        return path

    def test_load_recording_skips_comments(self, tmp_path):
        path = self.write_recording(tmp_path / "rec.jsonl")
        samples = load_recording(str(path))
        assert len(samples) == 3
        assert samples[1].timestamp == pytest.approx(1 / 30.0)

    def test_untimed_lines_spaced_at_sixty_hz(self, tmp_path):
        path = tmp_path / "untimed.jsonl"
        lines = [
            vector_message(),
            vector_message(),
            vector_message(timestamp=5.0),
            vector_message(),
        ]
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n")

        samples = load_recording(str(path))
        assert [s.timestamp for s in samples] == pytest.approx([0.0, 1 / 60.0, 5.0, 5.0 + 1 / 60.0])

    def test_non_object_line_rejected(self, tmp_path):
        path = tmp_path / "list.jsonl"
        path.write_text("[1, 2, 3]\n")
        with pytest.raises(ValueError, match=":1:"):
            load_recording(str(path))

    def test_bad_line_reports_line_number(self, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text(json.dumps(vector_message()) + "\n{broken\n")
        with pytest.raises(ValueError, match=":2:"):
            load_recording(str(path))

    def test_replay_all_drives_clock(self, tmp_path):
        path = self.write_recording(tmp_path / "rec.jsonl", count=4)
        source = ReplayPoseSource(str(path))
        received, ticks = [], []
        source.subscribe(received.append)
        source.start_session()

        assert source.replay_all(before_frame=ticks.append) == 4
        assert len(received) == 4
        assert ticks == [s.timestamp for s in received]

    def test_missing_recording(self, tmp_path):
        source = ReplayPoseSource(str(tmp_path / "none.jsonl"))
        assert source.is_supported() is False
        with pytest.raises(UnsupportedCapabilityError):
            source.start_session()
