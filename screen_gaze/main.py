"""
Command line entry point.

    python main.py replay RECORDING.jsonl [--config CONFIG] [--calibration FILE]
                          [--calibrate] [--output CSV]
    python main.py serve [--host HOST] [--port PORT] [--config CONFIG]

`replay` runs a recorded pose stream through the pipeline on a virtual clock
driven by the recording's timestamps, so calibration timers behave exactly
as they would live.
"""

import argparse
import csv
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

from screen_gaze.data_acquisition.replay_source import ReplayPoseSource
from screen_gaze.errors import GazeTrackingError
from screen_gaze.models import ScreenPoint
from screen_gaze.pipeline import CallbackGazeListener, GazePipeline, PipelineConfig
from screen_gaze.scheduling import VirtualScheduler
from screen_gaze.utils.config_loader import load_config
from screen_gaze.utils.logger import setup_logger_from_config

logger = logging.getLogger(__name__)


def _load_config_or_defaults(config_path: str) -> Dict[str, Any]:
    try:
        return load_config(config_path)
    except FileNotFoundError:
        return {}


def replay(
    recording: str,
    config_path: str = "config/config.yaml",
    calibration_file: Optional[str] = None,
    calibrate: bool = False,
    output: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Replay a pose recording through the pipeline.

    Args:
        recording: JSON Lines pose recording
        config_path: YAML configuration
        calibration_file: Stored transform to apply (overrides the config)
        calibrate: Run a calibration at the start of the recording
        output: CSV file for the emitted gaze points

    Returns:
        Summary dictionary (frames, points, calibration outcome)
    """
    config = _load_config_or_defaults(config_path)
    setup_logger_from_config(config)
    pipeline_config = PipelineConfig.from_dict(config)
    if calibration_file:
        pipeline_config.calibration_file = calibration_file

    source = ReplayPoseSource(recording)
    samples = source.samples
    start_time = samples[0].timestamp if samples else 0.0
    scheduler = VirtualScheduler(start_time=start_time)

    pipeline = GazePipeline(source, scheduler, config=pipeline_config)

    points: List[Tuple[float, ScreenPoint]] = []
    errors: List[GazeTrackingError] = []
    pipeline.add_listener(CallbackGazeListener(
        on_point=lambda p: points.append((scheduler.now(), p)),
        on_error=errors.append,
    ))

    if pipeline_config.calibration_file and pipeline.load_calibration():
        logger.info(f"Using calibration from {pipeline_config.calibration_file}")

    calibration_outcome: Dict[str, Any] = {}

    def on_calibrated(success: bool):
        calibration_outcome['success'] = success
        calibration_outcome['quality'] = pipeline.calibration.last_quality
        logger.info(f"Calibration {'succeeded' if success else 'failed'}")

    if not pipeline.start_tracking():
        raise errors[-1] if errors else GazeTrackingError("Tracking could not be started")

    if calibrate:
        pipeline.start_calibration(on_calibrated)

    def advance_clock(timestamp: float):
        if timestamp > scheduler.now():
            scheduler.advance(timestamp - scheduler.now())

    frames = source.replay_all(before_frame=advance_clock)
    # Recording ended: an unfinished calibration is reported as failed
    pipeline.close()

    if output:
        out_dir = os.path.dirname(output)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(output, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['timestamp', 'x', 'y'])
            for timestamp, point in points:
                writer.writerow([f"{timestamp:.6f}", f"{point.x:.3f}", f"{point.y:.3f}"])
        logger.info(f"Wrote {len(points)} gaze points to {output}")

    summary = {
        'frames': frames,
        'points': len(points),
        'errors': [str(e) for e in errors],
        'calibrated': pipeline.is_calibrated,
        'transform': pipeline.calibration.transform.to_dict(),
    }
    if calibrate:
        summary['calibration'] = calibration_outcome
    if points:
        summary['last_point'] = list(points[-1][1].as_tuple())
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Screen gaze estimation")
    sub = parser.add_subparsers(dest="command", required=True)

    replay_parser = sub.add_parser("replay", help="Replay a JSON Lines pose recording")
    replay_parser.add_argument("recording", help="Pose recording (.jsonl)")
    replay_parser.add_argument("--config", default="config/config.yaml", help="Path to configuration file")
    replay_parser.add_argument("--calibration", default=None, help="Stored calibration JSON to apply")
    replay_parser.add_argument("--calibrate", action="store_true", help="Calibrate at the start of the recording")
    replay_parser.add_argument("--output", default=None, help="CSV file for emitted gaze points")

    serve_parser = sub.add_parser("serve", help="Run the WebSocket server")
    serve_parser.add_argument("--host", default=None, help="Host address to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--config", default="config/config.yaml", help="Path to configuration file")

    return parser


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        from screen_gaze.server.run_server import main as serve_main

        serve_argv = ["--config", args.config]
        if args.host:
            serve_argv += ["--host", args.host]
        if args.port:
            serve_argv += ["--port", str(args.port)]
        serve_main(serve_argv)
        return 0

    try:
        summary = replay(
            args.recording,
            config_path=args.config,
            calibration_file=args.calibration,
            calibrate=args.calibrate,
            output=args.output,
        )
    except (GazeTrackingError, ValueError, OSError) as e:
        logger.error(f"Replay failed: {e}")
        return 1

    print(f"Frames replayed: {summary['frames']}")
    print(f"Gaze points:     {summary['points']}")
    if 'calibration' in summary:
        outcome = summary['calibration']
        print(f"Calibration:     {'ok' if outcome.get('success') else 'failed'}"
              f" (quality={outcome.get('quality')})")
    if 'last_point' in summary:
        x, y = summary['last_point']
        print(f"Last point:      ({x:.1f}, {y:.1f})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
