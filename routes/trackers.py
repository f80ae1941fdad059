"""
Tracker API - scan control, resolved tracker listing and SSE streaming.
"""

from __future__ import annotations

from typing import Generator

from flask import Blueprint, Response, jsonify, request

from utils.logging import get_logger
from utils.sse import format_sse
from utils.trackers import TrackerKind, get_tracker_scanner

logger = get_logger('tagwatch.routes.trackers')

trackers_bp = Blueprint('trackers', __name__, url_prefix='/api/trackers')

SORT_FIELDS = ('last_seen', 'rssi', 'distance', 'rotations')


@trackers_bp.route('/scan/start', methods=['POST'])
def start_scan():
    """Start tracker scanning."""
    scanner = get_tracker_scanner()

    if scanner.is_scanning:
        return jsonify({
            'status': 'already_running',
            'scan_status': scanner.get_status().to_dict(),
        })

    if scanner.start():
        status = scanner.get_status()
        return jsonify({
            'status': 'started',
            'backend': status.backend,
        })

    status = scanner.get_status()
    return jsonify({
        'status': 'error',
        'message': status.error or 'Failed to start scan',
    }), 500


@trackers_bp.route('/scan/stop', methods=['POST'])
def stop_scan():
    """Stop tracker scanning."""
    scanner = get_tracker_scanner()
    scanner.stop()
    return jsonify({'status': 'stopped'})


@trackers_bp.route('/scan/status', methods=['GET'])
def get_scan_status():
    """Scan status plus per-pipeline table sizes."""
    scanner = get_tracker_scanner()
    status = scanner.get_status().to_dict()
    status['pipelines'] = scanner.get_pipeline_info()
    return jsonify(status)


@trackers_bp.route('', methods=['GET'])
def list_trackers():
    """
    List resolved trackers.

    Query parameters:
        - kind: Tracker kind ('AIRTAG', 'TILE', 'SAMSUNG')
        - sort: 'last_seen', 'rssi', 'distance' or 'rotations'
    """
    kind = request.args.get('kind')
    sort_by = request.args.get('sort', 'last_seen')

    if kind and kind.upper() not in TrackerKind.__members__:
        return jsonify({'status': 'error', 'message': f'Invalid kind: {kind}'}), 400
    if sort_by not in SORT_FIELDS:
        return jsonify({
            'status': 'error',
            'message': f'Invalid sort. Must be one of: {", ".join(SORT_FIELDS)}',
        }), 400

    scanner = get_tracker_scanner()
    trackers = scanner.get_trackers(kind=kind, sort_by=sort_by)

    return jsonify({
        'count': len(trackers),
        'trackers': [t.to_dict() for t in trackers],
    })


@trackers_bp.route('/<logical_id>', methods=['GET'])
def get_tracker(logical_id: str):
    """Get the latest record for one logical tracker id."""
    scanner = get_tracker_scanner()
    tracker = scanner.get_tracker(logical_id)

    if tracker is None:
        return jsonify({'status': 'error', 'message': 'Tracker not found'}), 404

    return jsonify(tracker.to_dict())


@trackers_bp.route('/clear', methods=['POST'])
def clear_trackers():
    """Forget every tracked identity."""
    scanner = get_tracker_scanner()
    scanner.clear()
    return jsonify({'status': 'cleared'})


@trackers_bp.route('/stream', methods=['GET'])
def stream_events():
    """Server-Sent Events stream of tracker updates."""
    scanner = get_tracker_scanner()

    def event_generator() -> Generator[str, None, None]:
        events = scanner.stream_events(timeout=1.0)
        try:
            for event in events:
                if event.get('type') == 'tracker':
                    yield format_sse(event['tracker'], event='tracker_update')
                else:
                    yield format_sse({}, event='ping')
        finally:
            events.close()

    return Response(
        event_generator(),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        }
    )
