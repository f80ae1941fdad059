"""
TagWatch - BLE tracker identity resolution service.

Serves the tracker API and streams resolved trackers to the UI.
"""

from __future__ import annotations

import argparse

from flask import Flask, jsonify

from routes import register_blueprints
from utils.logging import configure_logging, get_logger
from utils.mqtt import get_mqtt_manager
from utils.trackers import reset_tracker_scanner

logger = get_logger('tagwatch.app')

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 5050


def create_app() -> Flask:
    """Create the Flask application."""
    app = Flask(__name__)
    register_blueprints(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app


def main() -> None:
    parser = argparse.ArgumentParser(description='TagWatch tracker identity service')
    parser.add_argument('--host', default=DEFAULT_HOST, help=f'Bind address (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help=f'Port (default: {DEFAULT_PORT})')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    configure_logging('DEBUG' if args.debug else None)

    manager = get_mqtt_manager()
    if manager.is_enabled:
        manager.connect()

    app = create_app()
    logger.info(f"Starting TagWatch on {args.host}:{args.port}")
    try:
        app.run(host=args.host, port=args.port, threaded=True)
    finally:
        reset_tracker_scanner()
        manager.shutdown()


if __name__ == '__main__':
    main()
