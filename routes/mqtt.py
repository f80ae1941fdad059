"""
MQTT configuration and status routes.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request, Response

from utils.logging import get_logger
from utils.mqtt import get_mqtt_manager

logger = get_logger('tagwatch.routes.mqtt')

mqtt_bp = Blueprint('mqtt', __name__, url_prefix='/mqtt')


@mqtt_bp.route('/status')
def mqtt_status() -> Response:
    """Get MQTT connection status and statistics."""
    manager = get_mqtt_manager()

    return jsonify({
        'enabled': manager.is_enabled,
        'connected': manager.is_connected,
        'last_error': manager.last_error,
        'stats': manager.stats,
        'config': manager.get_config(),
    })


@mqtt_bp.route('/config', methods=['GET'])
def get_config() -> Response:
    """Get current MQTT configuration."""
    return jsonify(get_mqtt_manager().get_config())


@mqtt_bp.route('/config', methods=['POST'])
def save_config() -> Response:
    """Save MQTT configuration and connect or disconnect to match it."""
    manager = get_mqtt_manager()

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'status': 'error', 'message': 'No configuration provided'}), 400

    if not manager.save_config(data):
        return jsonify({
            'status': 'error',
            'message': manager.last_error or 'Failed to save configuration',
        }), 400

    was_connected = manager.is_connected
    if manager.is_enabled and not was_connected:
        manager.connect()
    elif not manager.is_enabled and was_connected:
        manager.disconnect()

    return jsonify({
        'status': 'success',
        'message': 'Configuration saved',
        'connected': manager.is_connected,
    })


@mqtt_bp.route('/connect', methods=['POST'])
def connect() -> Response:
    """Manually connect to the MQTT broker."""
    manager = get_mqtt_manager()

    if manager.is_connected:
        return jsonify({'status': 'success', 'message': 'Already connected'})

    if manager.connect():
        return jsonify({'status': 'success', 'message': 'Connection initiated'})

    return jsonify({
        'status': 'error',
        'message': manager.last_error or 'Connection failed',
    }), 500


@mqtt_bp.route('/disconnect', methods=['POST'])
def disconnect() -> Response:
    """Manually disconnect from the MQTT broker."""
    manager = get_mqtt_manager()

    if not manager.is_connected:
        return jsonify({'status': 'success', 'message': 'Already disconnected'})

    manager.disconnect()
    return jsonify({'status': 'success', 'message': 'Disconnected'})
