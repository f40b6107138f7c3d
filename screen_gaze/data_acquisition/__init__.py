"""
Data Acquisition Module
Pose sources that deliver per-frame eye/head geometry from the face tracker
"""

from screen_gaze.data_acquisition.pose_source import (
    PoseSource,
    PushPoseSource,
    parse_pose_message,
)
from screen_gaze.data_acquisition.replay_source import (
    ReplayPoseSource,
    load_recording,
)

__all__ = [
    'PoseSource',
    'PushPoseSource',
    'parse_pose_message',
    'ReplayPoseSource',
    'load_recording',
]
