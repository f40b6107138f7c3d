"""
WebSocket server module for the screen gaze pipeline.

Tracking clients stream pose frames in; display clients receive gaze points
and calibration events and drive the pipeline with commands.
"""

from .websocket_server import GazeServer, ServerMessage, run_server

__all__ = ["GazeServer", "ServerMessage", "run_server"]
