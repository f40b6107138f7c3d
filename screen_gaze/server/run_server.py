#!/usr/bin/env python3
"""
CLI entry point for the Screen Gaze WebSocket Server.

Usage:
    python -m screen_gaze.server.run_server [--host HOST] [--port PORT] [--config CONFIG]

Examples:
    python -m screen_gaze.server.run_server
    python -m screen_gaze.server.run_server --port 9000
    python -m screen_gaze.server.run_server --config custom_config.yaml
"""

import argparse
import sys

from screen_gaze.server.websocket_server import run_server
from screen_gaze.utils.config_loader import load_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Screen Gaze WebSocket Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Start server on default port (8765):
        python -m screen_gaze.server.run_server

    Start server on custom port:
        python -m screen_gaze.server.run_server --port 9000

    Use custom config file:
        python -m screen_gaze.server.run_server --config my_config.yaml

The tracking client pushes {"type": "pose"} frames to ws://localhost:8765;
display clients connected to the same address receive gaze points and
calibration targets.
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to (default: server.host from config, else 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: server.port from config, else 8765)"
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)"
    )
    return parser


def resolve_address(config_path: str, host=None, port=None):
    """Fill in host/port from the config's server section when not given."""
    try:
        server_cfg = load_config(config_path).get('server') or {}
    except FileNotFoundError:
        server_cfg = {}
    host = host or server_cfg.get('host', "127.0.0.1")
    port = port or int(server_cfg.get('port', 8765))
    return host, port


def main(argv=None):
    args = build_parser().parse_args(argv)
    host, port = resolve_address(args.config, args.host, args.port)

    print(f"""
Screen Gaze WebSocket Server
  Host:   {host}
  Port:   {port}
  Config: {args.config}

  Tracking and display clients connect to: ws://{host}:{port}
    """)

    try:
        run_server(host=host, port=port, config_path=args.config)
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
        sys.exit(0)
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
