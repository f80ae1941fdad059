"""Settings management routes."""

from __future__ import annotations

import sqlite3

from flask import Blueprint, jsonify, request, Response

from utils.database import (
    get_setting,
    set_setting,
    delete_setting,
    get_all_settings,
)
from utils.logging import get_logger
from utils.mqtt import get_mqtt_manager
from utils.trackers.config import (
    TRACKER_SETTING_KEYS,
    load_tracker_config,
    validate_tracker_setting,
)

logger = get_logger('tagwatch.routes.settings')

settings_bp = Blueprint('settings', __name__, url_prefix='/settings')


def _valid_key(key: str) -> bool:
    return bool(key) and all(c.isalnum() or c in '_.-' for c in key)


def _refresh_mqtt(keys) -> None:
    if any(key.startswith('mqtt_') for key in keys):
        get_mqtt_manager().reload_config()


@settings_bp.route('', methods=['GET'])
def get_settings() -> Response:
    """Get all settings plus the effective tracker configuration."""
    try:
        return jsonify({
            'status': 'success',
            'settings': get_all_settings(),
            'trackers': load_tracker_config().to_dict(),
        })
    except sqlite3.Error as e:
        logger.error(f"Error getting settings: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500


@settings_bp.route('', methods=['POST'])
def save_settings() -> Response:
    """
    Save one or more settings.

    Tracker settings take effect the next time the scanner is created.
    """
    data = request.get_json(silent=True) or {}

    if not data:
        return jsonify({'status': 'error', 'message': 'No settings provided'}), 400

    saved = []
    rejected = []
    for key, value in data.items():
        if not _valid_key(key):
            rejected.append(key)
            continue
        if key in TRACKER_SETTING_KEYS and not validate_tracker_setting(key, value):
            rejected.append(key)
            continue
        saved.append(key)

    try:
        for key in saved:
            set_setting(key, data[key])
    except sqlite3.Error as e:
        logger.error(f"Error saving settings: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500

    _refresh_mqtt(saved)

    return jsonify({
        'status': 'success',
        'saved': saved,
        'rejected': rejected,
    })


@settings_bp.route('/<key>', methods=['GET'])
def get_single_setting(key: str) -> Response:
    """Get a single setting by key."""
    value = get_setting(key)
    if value is None:
        return jsonify({'status': 'error', 'message': f'Setting {key} not found'}), 404

    return jsonify({'status': 'success', 'key': key, 'value': value})


@settings_bp.route('/<key>', methods=['DELETE'])
def delete_single_setting(key: str) -> Response:
    """Delete a setting."""
    if not delete_setting(key):
        return jsonify({'status': 'error', 'message': f'Setting {key} not found'}), 404

    _refresh_mqtt([key])

    return jsonify({'status': 'success', 'deleted': key})
