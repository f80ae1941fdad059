"""
MQTT publishing for resolved trackers.

Forwards tracker records to an MQTT broker from a background thread.
Supports reconnection with backoff; configuration lives in the settings
store.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import Optional

import paho.mqtt.client as mqtt

from utils.database import get_setting, set_setting

logger = logging.getLogger('tagwatch.mqtt')

# Default settings
DEFAULT_BROKER_HOST = 'localhost'
DEFAULT_BROKER_PORT = 1883
DEFAULT_CLIENT_ID = 'tagwatch'
DEFAULT_TOPIC_PREFIX = 'tagwatch'
DEFAULT_QOS = 1
DEFAULT_KEEPALIVE = 60
PUBLISH_QUEUE_SIZE = 10000

# Reconnection settings
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60
RECONNECT_MULTIPLIER = 2

# Message categories that can be toggled individually
CATEGORIES = ('trackers', 'status')

# Plain settings copied verbatim by save_config()
_CONFIG_KEYS = {
    'enabled': ('mqtt_enabled', bool),
    'broker_host': ('mqtt_broker_host', str),
    'broker_port': ('mqtt_broker_port', int),
    'username': ('mqtt_username', str),
    'use_tls': ('mqtt_use_tls', bool),
    'client_id': ('mqtt_client_id', str),
    'topic_prefix': ('mqtt_topic_prefix', str),
    'qos': ('mqtt_qos', int),
}


class MQTTManager:
    """
    MQTT client manager.

    Publishing is non-blocking: messages go through a bounded queue that a
    background thread drains into the paho client.
    """

    def __init__(self):
        self._client = None
        self._connected = False
        self._connecting = False
        self._publish_queue: queue.Queue = queue.Queue(maxsize=PUBLISH_QUEUE_SIZE)
        self._publish_thread: Optional[threading.Thread] = None
        self._reconnect_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._reconnect_delay = RECONNECT_MIN_DELAY
        self._last_error: Optional[str] = None
        self._publish_settings: Optional[dict] = None
        self._settings_lock = threading.Lock()
        self._stats = {
            'messages_published': 0,
            'messages_failed': 0,
            'reconnect_attempts': 0,
            'last_publish_time': None,
        }

    @property
    def is_enabled(self) -> bool:
        return self._settings()['enabled']

    def _settings(self) -> dict:
        """Publish-path settings, read from the settings store once."""
        with self._settings_lock:
            if self._publish_settings is None:
                self._publish_settings = self._load_publish_settings()
            return self._publish_settings

    @staticmethod
    def _load_publish_settings() -> dict:
        return {
            'enabled': bool(get_setting('mqtt_enabled', False)),
            'topic_prefix': get_setting('mqtt_topic_prefix', DEFAULT_TOPIC_PREFIX),
            'qos': get_setting('mqtt_qos', DEFAULT_QOS),
            'categories': {
                category: bool(get_setting(f'mqtt_{category}_enabled', True))
                for category in CATEGORIES
            },
        }

    def reload_config(self) -> None:
        """Re-read the publish settings after they changed in the store."""
        settings = self._load_publish_settings()
        with self._settings_lock:
            self._publish_settings = settings

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def stats(self) -> dict:
        return self._stats.copy()

    def get_config(self) -> dict:
        """Get current MQTT configuration (password masked)."""
        return {
            'enabled': get_setting('mqtt_enabled', False),
            'broker_host': get_setting('mqtt_broker_host', DEFAULT_BROKER_HOST),
            'broker_port': get_setting('mqtt_broker_port', DEFAULT_BROKER_PORT),
            'username': get_setting('mqtt_username', ''),
            'password': '***' if get_setting('mqtt_password', '') else '',
            'use_tls': get_setting('mqtt_use_tls', False),
            'client_id': get_setting('mqtt_client_id', DEFAULT_CLIENT_ID),
            'topic_prefix': get_setting('mqtt_topic_prefix', DEFAULT_TOPIC_PREFIX),
            'qos': get_setting('mqtt_qos', DEFAULT_QOS),
            'topics': {
                category: get_setting(f'mqtt_{category}_enabled', True)
                for category in CATEGORIES
            },
        }

    def save_config(self, config: dict) -> bool:
        """Save MQTT configuration to settings."""
        try:
            for name, (key, cast) in _CONFIG_KEYS.items():
                if name in config:
                    set_setting(key, cast(config[name]))

            if 'password' in config and config['password'] != '***':
                set_setting('mqtt_password', config['password'])

            for category, enabled in (config.get('topics') or {}).items():
                if category in CATEGORIES:
                    set_setting(f'mqtt_{category}_enabled', bool(enabled))

            self.reload_config()
            logger.info("MQTT configuration saved")
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid MQTT config: {e}")
            self._last_error = str(e)
            return False

    def connect(self) -> bool:
        """
        Connect to the MQTT broker.

        Returns True if the connection was initiated.
        """
        if self._connected or self._connecting:
            return True

        self._connecting = True
        self._stop_event.clear()

        try:
            config = self.get_config()

            client_id = f"{config['client_id']}_{int(time.time())}"
            self._client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_publish = self._on_publish

            if config['username']:
                self._client.username_pw_set(
                    config['username'], get_setting('mqtt_password', '')
                )
            if config['use_tls']:
                self._client.tls_set()

            logger.info(f"Connecting to MQTT broker at {config['broker_host']}:{config['broker_port']}")
            self._client.connect_async(
                config['broker_host'],
                int(config['broker_port']),
                keepalive=DEFAULT_KEEPALIVE,
            )
            self._client.loop_start()
            self._start_publish_thread()
            return True

        except (OSError, ValueError) as e:
            self._connecting = False
            self._last_error = str(e)
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> bool:
        """Disconnect from the MQTT broker."""
        self._stop_event.set()

        if self._client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except OSError as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._client = None

        self._connected = False
        self._connecting = False

        if self._publish_thread and self._publish_thread.is_alive():
            self._publish_thread.join(timeout=2)

        logger.info("Disconnected from MQTT broker")
        return True

    def publish(self, category: str, data: dict, subtopic: Optional[str] = None) -> bool:
        """
        Queue a message for publishing.

        Never blocks. Settings are read from the store on first use only,
        and a disconnected client is reconnected from the reconnect thread.

        Args:
            category: Message category ('trackers', 'status').
            data: JSON-serializable payload.
            subtopic: Optional topic suffix, e.g. the tracker kind.

        Returns True if the message was queued.
        """
        settings = self._settings()
        if not settings['enabled']:
            return False

        if not self._connected:
            if not self._connecting and not self._stop_event.is_set():
                self._start_reconnect_thread()
            return False

        if not settings['categories'].get(category, True):
            return False

        payload = dict(data)
        payload.setdefault('@timestamp', datetime.now(timezone.utc).isoformat())
        payload['category'] = category

        topic = f"{settings['topic_prefix']}/{category}"
        if subtopic:
            topic = f"{topic}/{subtopic}"

        message = {
            'topic': topic,
            'payload': json.dumps(payload, default=str),
            'qos': settings['qos'],
        }

        try:
            self._publish_queue.put_nowait(message)
            return True
        except queue.Full:
            self._stats['messages_failed'] += 1
            logger.warning("MQTT publish queue full, dropping message")
            return False

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._connecting = False
        if reason_code.is_failure:
            self._connected = False
            self._last_error = str(reason_code)
            logger.error(f"MQTT connection failed: {self._last_error}")
            return

        self._connected = True
        self._reconnect_delay = RECONNECT_MIN_DELAY
        self._last_error = None
        logger.info("Connected to MQTT broker")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False

        if reason_code.is_failure:
            self._last_error = f"Unexpected disconnection ({reason_code})"
            logger.warning(f"MQTT disconnected unexpectedly: {self._last_error}")
            if self.is_enabled and not self._stop_event.is_set():
                self._start_reconnect_thread()
        else:
            logger.info("MQTT disconnected gracefully")

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        self._stats['messages_published'] += 1
        self._stats['last_publish_time'] = datetime.now(timezone.utc).isoformat()

    def _start_publish_thread(self):
        if self._publish_thread and self._publish_thread.is_alive():
            return

        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self):
        """Drain the publish queue into the client."""
        while not self._stop_event.is_set():
            try:
                message = self._publish_queue.get(timeout=1)
            except queue.Empty:
                continue

            client = self._client
            if not (self._connected and client):
                try:
                    self._publish_queue.put_nowait(message)
                except queue.Full:
                    self._stats['messages_failed'] += 1
                time.sleep(0.1)
                continue

            result = client.publish(message['topic'], message['payload'], qos=message['qos'])
            if result.rc != mqtt.MQTT_ERR_SUCCESS:
                self._stats['messages_failed'] += 1
                logger.warning(f"MQTT publish failed: {result.rc}")

    def _start_reconnect_thread(self):
        if self._reconnect_thread and self._reconnect_thread.is_alive():
            return

        self._reconnect_thread = threading.Thread(target=self._reconnect_loop, daemon=True)
        self._reconnect_thread.start()

    def _reconnect_loop(self):
        """Reconnect with exponential backoff."""
        while not self._stop_event.is_set() and self.is_enabled and not self._connected:
            self._stats['reconnect_attempts'] += 1
            logger.info(f"Attempting MQTT reconnection (delay: {self._reconnect_delay}s)")

            time.sleep(self._reconnect_delay)
            if self._stop_event.is_set():
                break

            try:
                if self._client:
                    self._client.reconnect()
                else:
                    self.connect()
            except OSError as e:
                logger.warning(f"MQTT reconnection failed: {e}")
                self._reconnect_delay = min(
                    self._reconnect_delay * RECONNECT_MULTIPLIER,
                    RECONNECT_MAX_DELAY,
                )

    def shutdown(self):
        """Disconnect and drop queued messages."""
        logger.info("Shutting down MQTT manager")
        self.disconnect()

        while True:
            try:
                self._publish_queue.get_nowait()
            except queue.Empty:
                break


# Global instance
_mqtt_manager: Optional[MQTTManager] = None
_mqtt_lock = threading.Lock()


def get_mqtt_manager() -> MQTTManager:
    """Get the global MQTT manager instance."""
    global _mqtt_manager
    with _mqtt_lock:
        if _mqtt_manager is None:
            _mqtt_manager = MQTTManager()
        return _mqtt_manager


def reset_mqtt_manager() -> None:
    """Shut down and forget the global MQTT manager."""
    global _mqtt_manager
    with _mqtt_lock:
        if _mqtt_manager is not None:
            _mqtt_manager.shutdown()
        _mqtt_manager = None


def mqtt_publish(category: str, data: dict, subtopic: Optional[str] = None) -> bool:
    """Publish data via the global MQTT manager."""
    return get_mqtt_manager().publish(category, data, subtopic=subtopic)
