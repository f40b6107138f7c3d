"""
WebSocket server for the screen gaze pipeline.

A tracking client streams pose frames in; display clients receive gaze
points, calibration target events and errors, and send commands
(start tracking, calibrate, reset, ...). Everything runs on one asyncio
event loop, which serializes pose delivery and calibration timers.
"""

import asyncio
import json
import time
from typing import Any, Dict, Literal, Optional, Set, Tuple
from dataclasses import dataclass, asdict

import numpy as np
import websockets

from screen_gaze.calibration.engine import CalibrationListener
from screen_gaze.data_acquisition.pose_source import PushPoseSource, parse_pose_message
from screen_gaze.errors import (
    CalibrationFailedError,
    GazeTrackingError,
    InvalidConfigurationError,
    TrackingNotStartedError,
)
from screen_gaze.models import ScreenPoint
from screen_gaze.pipeline import CallbackGazeListener, GazePipeline, PipelineConfig
from screen_gaze.scheduling import AsyncioScheduler
from screen_gaze.utils.config_loader import load_config
from screen_gaze.utils.logger import setup_logger_from_config


StreamMode = Literal["all", "gaze", "calibration"]

# Message types each stream mode receives
_STREAM_TYPES = {
    "gaze": {"gaze_point", "error", "status"},
    "calibration": {
        "calibration_target",
        "calibration_target_hidden",
        "calibration_complete",
        "error",
        "status",
    },
}


class NumpyJSONEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles NumPy types."""
    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


@dataclass
class ServerMessage:
    """Message structure for everything the server sends to clients."""
    type: str
    timestamp: float = 0.0
    data: dict = None

    def __post_init__(self):
        if self.data is None:
            self.data = {}
        if not self.timestamp:
            self.timestamp = time.time()

    def to_json(self) -> str:
        return json.dumps(asdict(self), cls=NumpyJSONEncoder)


def error_message(error: Exception) -> ServerMessage:
    return ServerMessage(
        type="error",
        data={'error': type(error).__name__, 'message': str(error)},
    )


def command_response(command: str, success: bool, message: Optional[str] = None, **extra) -> ServerMessage:
    data = {'command': command, 'success': bool(success)}
    if message is not None:
        data['message'] = message
    data.update(extra)
    return ServerMessage(type="command_response", data=data)


class _BroadcastCalibrationListener(CalibrationListener):
    """Forwards calibration display events to the server's broadcast queue."""

    def __init__(self, server: "GazeServer"):
        self.server = server

    def on_show_target(self, index: int, normalized: Tuple[float, float], point: ScreenPoint) -> None:
        self.server.enqueue(ServerMessage(
            type="calibration_target",
            data={
                'index': index,
                'count': self.server.pipeline.calibration.target_count,
                'normalized': list(normalized),
                'point': list(point.as_tuple()),
            },
        ))

    def on_hide_target(self, index: int) -> None:
        self.server.enqueue(ServerMessage(type="calibration_target_hidden", data={'index': index}))


class GazeServer:
    """
    WebSocket server that wraps a GazePipeline.

    Pose frames pushed by clients go straight into the pipeline; results are
    queued and broadcast to all connected clients by a background task.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8765,
        config_path: str = "config/config.yaml",
        config: Optional[Dict[str, Any]] = None,
        queue_size: int = 256,
    ):
        """
        Initialize the WebSocket server.

        Args:
            host: Host address to bind to (default localhost only for security)
            port: Port to listen on
            config_path: Path to the YAML config (ignored when `config` is given)
            config: Already-loaded configuration dictionary
            queue_size: Maximum queued outbound messages; gaze points are
                dropped first when the queue is full
        """
        self.host = host
        self.port = port
        self.config_path = config_path

        if config is None:
            try:
                config = load_config(config_path)
            except FileNotFoundError:
                config = {}
                missing_config = True
            else:
                missing_config = False
        else:
            missing_config = False
        self.config = config

        self.logger = setup_logger_from_config(self.config, name="screen_gaze")
        if missing_config:
            self.logger.warning(f"Config file not found at {config_path}, using defaults")

        # Pipeline over a push source; poses arrive through websocket messages
        self.pose_source = PushPoseSource()
        self.scheduler = AsyncioScheduler()
        self.pipeline = GazePipeline(
            self.pose_source,
            self.scheduler,
            config=PipelineConfig.from_dict(self.config),
            calibration_listener=_BroadcastCalibrationListener(self),
        )
        self.pipeline.add_listener(CallbackGazeListener(self._on_gaze_point, self._on_pipeline_error))

        if self.pipeline.config.calibration_file:
            try:
                if self.pipeline.load_calibration():
                    self.logger.info("Saved calibration loaded")
            except InvalidConfigurationError as e:
                self.logger.warning(f"Ignoring saved calibration: {e}")

        # WebSocket state
        self.clients: Set[Any] = set()
        self.client_stream_mode: Dict[Any, StreamMode] = {}
        self.pose_clients: Set[Any] = set()
        self.server = None

        self.queue_size = queue_size
        self._outbox: Optional[asyncio.Queue] = None
        self.running = False
        self.dropped_messages = 0
        self.poses_received = 0

        self._shutdown_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Pipeline callbacks
    # ------------------------------------------------------------------

    def enqueue(self, message: ServerMessage, droppable: bool = False):
        """Queue a message for broadcast."""
        if self._outbox is None:
            self._outbox = asyncio.Queue(maxsize=self.queue_size)
        if self._outbox.full():
            if droppable:
                self.dropped_messages += 1
                return
            # Make room for a control message by discarding the oldest entry
            try:
                self._outbox.get_nowait()
                self.dropped_messages += 1
            except asyncio.QueueEmpty:
                pass
        self._outbox.put_nowait(message)

    def _on_gaze_point(self, point: ScreenPoint):
        self.enqueue(
            ServerMessage(type="gaze_point", data={'x': point.x, 'y': point.y}),
            droppable=True,
        )

    def _on_pipeline_error(self, error: GazeTrackingError):
        self.enqueue(error_message(error))

    def _on_calibration_complete(self, success: bool):
        calibration = self.pipeline.calibration
        self.enqueue(ServerMessage(
            type="calibration_complete",
            data={
                'success': success,
                'quality': calibration.last_quality,
                'transform': calibration.transform.to_dict(),
                'points': [r.to_dict() for r in calibration.results],
            },
        ))
        if not success:
            self.enqueue(error_message(CalibrationFailedError()))

    def _create_status_message(self) -> ServerMessage:
        data = self.pipeline.status()
        data.update({
            'clients_connected': len(self.clients),
            'pose_clients': len(self.pose_clients),
            'poses_received': self.poses_received,
            'dropped_messages': self.dropped_messages,
        })
        return ServerMessage(type="status", data=data)

    # ------------------------------------------------------------------
    # Client handling
    # ------------------------------------------------------------------

    async def _handle_client(self, websocket):
        """
        Handle a connected client.

        Args:
            websocket: The client's WebSocket connection
        """
        address = getattr(websocket, "remote_address", None) or ("?", 0)
        client_id = f"{address[0]}:{address[1]}"
        self.logger.info(f"Client connected: {client_id}")
        self.clients.add(websocket)
        self.client_stream_mode[websocket] = "all"

        try:
            await websocket.send(self._create_status_message().to_json())

            async for message in websocket:
                await self._handle_client_message(websocket, message)

        except websockets.exceptions.ConnectionClosed:
            self.logger.info(f"Client disconnected: {client_id}")
        except Exception as e:
            self.logger.error(f"Error handling client {client_id}: {e}")
        finally:
            self.clients.discard(websocket)
            self.client_stream_mode.pop(websocket, None)
            if websocket in self.pose_clients:
                self.pose_clients.discard(websocket)
                if not self.pose_clients and self.pipeline.is_tracking:
                    self.pose_source.interrupt("Tracking client disconnected")
            self.logger.info(f"Client removed: {client_id} (Total clients: {len(self.clients)})")

    async def _handle_client_message(self, websocket, message: str):
        """
        Handle incoming message from a client.

        Args:
            websocket: The client's WebSocket connection
            message: The message received
        """
        try:
            data = json.loads(message)
            msg_type = data.get('type')

            if msg_type == 'pose':
                self._handle_pose(websocket, data)
            elif msg_type == 'command':
                await self._handle_command(websocket, data.get('command'), data)
            elif msg_type == 'subscribe':
                stream = str(data.get("stream", "all")).strip().lower()
                if stream not in ("all", "gaze", "calibration"):
                    stream = "all"
                self.client_stream_mode[websocket] = stream  # type: ignore[assignment]
                await websocket.send(json.dumps({
                    "type": "subscribe_response",
                    "success": True,
                    "stream": stream
                }))
            elif msg_type == 'ping':
                await websocket.send(json.dumps({'type': 'pong', 'timestamp': time.time()}))
            else:
                self.logger.warning(f"Unknown message type: {msg_type}")

        except json.JSONDecodeError:
            self.logger.warning(f"Invalid JSON received: {message[:100]}")
        except Exception as e:
            self.logger.error(f"Error handling message: {e}", exc_info=True)

    def _handle_pose(self, websocket, data: dict):
        self.pose_clients.add(websocket)
        try:
            sample = parse_pose_message(data)
        except ValueError as e:
            self.logger.warning(f"Dropping pose frame: {e}")
            return
        self.poses_received += 1
        self.pose_source.push(sample)

    async def _handle_command(self, websocket, command: Optional[str], data: dict):
        """Handle a command from a client."""
        self.logger.info(f"Received command: {command}")
        pipeline = self.pipeline

        if command == 'start_tracking':
            ok = pipeline.start_tracking()
            response = command_response(command, ok, 'Tracking started' if ok else 'Failed to start tracking')
        elif command == 'stop_tracking':
            pipeline.stop_tracking()
            response = command_response(command, True, 'Tracking stopped')
        elif command == 'start_calibration':
            pipeline.start_calibration(self._on_calibration_complete)
            response = command_response(command, True, 'Calibration started')
        elif command == 'reset_calibration':
            pipeline.reset_calibration()
            response = command_response(command, True, 'Calibration reset')
        elif command == 'set_head_reference':
            if not pipeline.is_tracking:
                response = command_response(command, False, TrackingNotStartedError().description)
            else:
                ok = pipeline.set_head_reference()
                response = command_response(command, ok, 'Head reference set' if ok else 'No head pose received yet')
        elif command == 'reset_head_reference':
            pipeline.reset_head_reference()
            response = command_response(command, True, 'Head reference reset')
        elif command == 'save_calibration':
            ok = pipeline.save_calibration(data.get('path'))
            response = command_response(command, ok, 'Calibration saved' if ok else 'Nothing to save')
        elif command == 'load_calibration':
            try:
                ok = pipeline.load_calibration(data.get('path'))
                response = command_response(command, ok, 'Calibration loaded' if ok else 'Calibration file not found')
            except InvalidConfigurationError as e:
                response = command_response(command, False, str(e))
        elif command == 'status':
            await websocket.send(self._create_status_message().to_json())
            return
        elif command in ('shutdown', 'stop_server'):
            await websocket.send(command_response(command, True, 'Server shutting down').to_json())
            if self._shutdown_event is not None:
                self._shutdown_event.set()
            return
        else:
            self.logger.warning(f"Unknown command: {command}")
            response = command_response(str(command), False, 'Unknown command')

        await websocket.send(response.to_json())

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    def _wants(self, websocket, message: ServerMessage) -> bool:
        mode = self.client_stream_mode.get(websocket, "all")
        if mode == "all":
            return True
        return message.type in _STREAM_TYPES.get(mode, set())

    async def broadcast(self, message: ServerMessage):
        """Send one message to every interested client."""
        payload = message.to_json()
        tasks = [
            asyncio.create_task(self._safe_send(client, payload))
            for client in self.clients.copy()
            if self._wants(client, message)
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _broadcast_loop(self):
        """
        Continuously broadcast queued pipeline output to connected clients.
        """
        self.logger.info("Starting broadcast loop...")
        if self._outbox is None:
            self._outbox = asyncio.Queue(maxsize=self.queue_size)

        while self.running:
            try:
                message = await self._outbox.get()
                await self.broadcast(message)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in broadcast loop: {e}")
                await asyncio.sleep(0.1)

        self.logger.info("Broadcast loop stopped")

    async def _safe_send(self, websocket, message: str):
        """
        Safely send a message to a client, handling disconnections.

        Args:
            websocket: The client's WebSocket connection
            message: The message to send
        """
        try:
            await websocket.send(message)
        except websockets.exceptions.ConnectionClosed:
            self.clients.discard(websocket)
        except Exception as e:
            self.logger.debug(f"Error sending to client: {e}")
            self.clients.discard(websocket)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start the WebSocket server."""
        self.logger.info(f"Starting gaze server on ws://{self.host}:{self.port}")

        self._shutdown_event = asyncio.Event()
        self.running = True

        self.server = await websockets.serve(
            self._handle_client,
            self.host,
            self.port
        )

        self.logger.info(f"WebSocket server listening on ws://{self.host}:{self.port}")
        self.logger.info("Press Ctrl+C to stop")

        broadcast_task = asyncio.create_task(self._broadcast_loop())

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            broadcast_task.cancel()
            await self.stop()

    async def stop(self):
        """Stop the WebSocket server and cleanup resources."""
        self.logger.info("Stopping server...")

        if self._shutdown_event is not None:
            self._shutdown_event.set()

        self.running = False
        self.pipeline.close()

        if self.clients:
            close_tasks = [client.close() for client in self.clients]
            await asyncio.gather(*close_tasks, return_exceptions=True)

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

        self.logger.info("Server stopped")


def run_server(host: str = "127.0.0.1", port: int = 8765, config_path: str = "config/config.yaml"):
    """
    Run the WebSocket server.

    Args:
        host: Host address to bind to
        port: Port to listen on
        config_path: Path to config file
    """
    server = GazeServer(host=host, port=port, config_path=config_path)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nServer stopped by user")


if __name__ == "__main__":
    run_server()
