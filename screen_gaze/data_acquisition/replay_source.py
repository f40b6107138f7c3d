"""
Replay of recorded pose streams.

Recordings are JSON Lines files, one pose message per line (see
`parse_pose_message` for the layout). Blank lines and lines starting with
'#' are skipped. Lines without a "timestamp" are stamped 1/60 s after the
previous sample (the first at 0.0), so replay timing stays meaningful.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import List, Optional
import asyncio
import json

from screen_gaze.data_acquisition.pose_source import PoseSource, parse_pose_message
from screen_gaze.errors import UnsupportedCapabilityError
from screen_gaze.models import PoseSample


def load_recording(path: str, frame_interval: float = 1.0 / 60.0) -> List[PoseSample]:
    """
    Load all pose samples from a JSON Lines recording

    Args:
        path: Recording file
        frame_interval: Spacing used for lines that carry no timestamp

    Returns:
        Samples in file order

    Raises:
        ValueError: If a line is not a valid pose message (line number included)
    """
    samples: List[PoseSample] = []
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                message = json.loads(line)
                sample = parse_pose_message(message)
            except (json.JSONDecodeError, ValueError) as e:
                raise ValueError(f"{path}:{line_no}: {e}") from e
            if isinstance(message, dict) and message.get("timestamp") is None:
                timestamp = samples[-1].timestamp + frame_interval if samples else 0.0
                sample = replace(sample, timestamp=timestamp)
            samples.append(sample)
    return samples


class ReplayPoseSource(PoseSource):
    """Pose source that plays back a recording."""

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._samples: Optional[List[PoseSample]] = None

    def is_supported(self) -> bool:
        return self.path.exists()

    def _open_session(self):
        if not self.path.exists():
            raise UnsupportedCapabilityError(f"Recording not found: {self.path}")
        if self._samples is None:
            self._samples = load_recording(str(self.path))
            self.logger.info(f"Loaded {len(self._samples)} pose samples from {self.path}")

    @property
    def samples(self) -> List[PoseSample]:
        if self._samples is None:
            self._samples = load_recording(str(self.path))
        return self._samples

    def replay_all(self, before_frame=None) -> int:
        """
        Deliver every sample synchronously.

        Args:
            before_frame: Optional callable invoked with each sample's timestamp
                before it is delivered (used to drive a virtual clock)

        Returns:
            Number of samples delivered
        """
        delivered = 0
        for sample in self.samples:
            if not self.is_running:
                break
            if before_frame is not None:
                before_frame(sample.timestamp)
            self.emit_sample(sample)
            delivered += 1
        return delivered

    async def play(self, rate_hz: float = 60.0) -> int:
        """
        Deliver samples paced at `rate_hz` on the running event loop.

        Returns:
            Number of samples delivered
        """
        interval = 1.0 / rate_hz
        delivered = 0
        for sample in self.samples:
            if not self.is_running:
                break
            self.emit_sample(sample)
            delivered += 1
            await asyncio.sleep(interval)
        return delivered
