"""MQTT broker session.

Wraps a paho-mqtt ``Client`` running its network loop in a background
thread and hands every received message to a ``(topic, payload)`` handler.

Lifecycle
---------
``DISCONNECTED -> CONNECTING -> CONNECTED -> SUBSCRIBING -> ACTIVE ->
DISCONNECTING -> DISCONNECTED``. An unexpected disconnect while active moves
the session to ``CONNECTION_LOST``; paho reconnects on its own and the
session returns to ``ACTIVE``. The session is not clean, so the broker keeps
our subscriptions across a reconnect.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterable
from concurrent.futures import Executor
from enum import Enum
from typing import Callable

import paho.mqtt.client as mqtt

from mqtt_dbus_notify.config import APP_NAME, Config
from mqtt_dbus_notify.errors import (
    ConnectError,
    ConnectTimeout,
    SubscribeError,
    SubscribeTimeout,
)
from mqtt_dbus_notify.models import SubscriptionRule

logger = logging.getLogger(__name__)

QOS = 0
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 120

MessageHandler = Callable[[str, str], None]


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    CONNECTION_LOST = "connection_lost"
    DISCONNECTING = "disconnecting"


def broker_url(config: Config) -> str:
    """``tcp://host:port`` or ``ssl://host:port`` depending on ``secure``."""
    scheme = "ssl" if config.secure else "tcp"
    return f"{scheme}://{config.host}:{config.port}"


def client_id() -> str:
    """Stable per-host client identifier."""
    return f"{APP_NAME}-{socket.gethostname()}"


def _failures(reason_codes) -> list:
    return [rc for rc in reason_codes if getattr(rc, "is_failure", False)]


class _Ack:
    """Outcome of one SUBACK, filled in from the network thread."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self.reason_codes: list = []


class BrokerSession:
    """Connection to the MQTT broker plus the active subscription set."""

    def __init__(self, on_message: MessageHandler, executor: Executor | None = None) -> None:
        self._handler = on_message
        self._executor = executor
        self._client: mqtt.Client | None = None
        self._timeout: float = 5
        self._state = SessionState.DISCONNECTED

        self._connected = threading.Event()
        self._connect_failure: str | None = None
        self._has_connected = False

        self._lock = threading.Lock()
        self._acks: dict[int, _Ack] = {}
        self._abandoned: set[int] = set()  # timed-out mids whose SUBACK may still come
        self._resubscribing: dict[int, str] = {}  # mid -> topic, after a lost session
        self._subscribed: list[str] = []

    # -- public properties ---------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def subscribed(self) -> list[str]:
        """Filters the broker acknowledged, in subscribe order."""
        return list(self._subscribed)

    # -- lifecycle -----------------------------------------------------------

    def connect(self, config: Config) -> None:
        """Connect to the broker and wait up to ``config.timeout`` for CONNACK.

        Raises ConnectTimeout if no CONNACK arrives in time and ConnectError
        if the transport fails or the broker refuses the connection.
        """
        url = broker_url(config)
        logger.info("Connecting to MQTT broker at %s", url)
        self._timeout = config.timeout
        self._state = SessionState.CONNECTING
        self._connected.clear()
        self._connect_failure = None

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id(),
            clean_session=False,
        )
        if config.user:
            client.username_pw_set(config.user, config.password or None)
        if config.secure:
            client.tls_set()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        client.reconnect_delay_set(RECONNECT_MIN_DELAY, RECONNECT_MAX_DELAY)
        client.connect_timeout = config.timeout
        self._client = client

        try:
            client.connect(config.host, config.port, config.keepalive)
        except socket.timeout as exc:
            self._state = SessionState.DISCONNECTED
            raise ConnectTimeout(f"MQTT connect to {url} timed out") from exc
        except (OSError, ValueError) as exc:
            self._state = SessionState.DISCONNECTED
            raise ConnectError(f"MQTT connect to {url} failed: {exc}") from exc

        client.loop_start()

        if not self._connected.wait(config.timeout):
            self._state = SessionState.DISCONNECTED
            raise ConnectTimeout(f"MQTT connect to {url} timed out after {config.timeout}s")
        if self._connect_failure is not None:
            self._state = SessionState.DISCONNECTED
            raise ConnectError(f"MQTT broker at {url} refused connection: {self._connect_failure}")

        self._state = SessionState.CONNECTED
        logger.info("Connected to MQTT broker at %s", url)

    def subscribe_all(self, rules: Iterable[SubscriptionRule], timeout: float | None = None) -> None:
        """Subscribe to every rule's filter with QoS 0, in order.

        Each subscription waits up to ``timeout`` seconds (default: the
        connect timeout) for its SUBACK. The first failure raises
        SubscribeTimeout or SubscribeError; filters acknowledged before it
        stay in the active set so teardown can unsubscribe them.
        """
        if self._client is None:
            raise SubscribeError("not connected to the MQTT broker")
        if timeout is None:
            timeout = self._timeout

        self._state = SessionState.SUBSCRIBING
        for rule in rules:
            logger.info("Subscribe to %s", rule.topic)
            self._subscribe_one(rule.topic, timeout)
            with self._lock:
                self._subscribed.append(rule.topic)

        self._state = SessionState.ACTIVE

    def unsubscribe_all(self) -> None:
        """Unsubscribe from all active filters, newest first. Never raises."""
        with self._lock:
            topics = list(reversed(self._subscribed))
            self._subscribed.clear()

        client = self._client
        if client is None:
            return
        for topic in topics:
            logger.info("Unsubscribe from %s", topic)
            try:
                result, _mid = client.unsubscribe(topic)
            except Exception as exc:
                logger.warning("Failed to unsubscribe from %s: %s", topic, exc)
                continue
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.warning(
                    "Failed to unsubscribe from %s: %s", topic, mqtt.error_string(result)
                )

    def disconnect(self) -> None:
        """Disconnect and stop the network loop. Safe to call more than once."""
        client = self._client
        if client is None:
            return
        self._client = None
        self._state = SessionState.DISCONNECTING

        was_connected = client.is_connected()
        try:
            client.disconnect()
        except Exception as exc:
            logger.warning("Error while disconnecting from MQTT: %s", exc)
        try:
            client.loop_stop()
        except Exception as exc:
            logger.warning("Error while stopping MQTT network loop: %s", exc)

        self._state = SessionState.DISCONNECTED
        if was_connected:
            logger.info("Disconnected from MQTT")

    # -- subscription helpers ------------------------------------------------

    def _subscribe_one(self, topic: str, timeout: float) -> None:
        result, mid = self._client.subscribe(topic, qos=QOS)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(
                f"MQTT subscribe to {topic} failed: {mqtt.error_string(result)}"
            )

        # The SUBACK may be processed before subscribe() returned the mid,
        # in which case _on_subscribe has already filed it under that mid.
        with self._lock:
            ack = self._acks.setdefault(mid, _Ack())
        try:
            if not ack.event.wait(timeout):
                raise SubscribeTimeout(f"MQTT subscribe to {topic} timed out after {timeout}s")
        finally:
            with self._lock:
                self._acks.pop(mid, None)
                if not ack.event.is_set():
                    self._abandoned.add(mid)

        failures = _failures(ack.reason_codes)
        if failures:
            raise SubscribeError(f"MQTT broker rejected subscription to {topic}: {failures[0]}")

    # -- paho callbacks (network thread) -------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._connect_failure = str(reason_code)
            logger.error("MQTT connection refused: %s", reason_code)
            self._connected.set()
            return

        reconnect = self._has_connected
        self._has_connected = True
        self._connected.set()
        if not reconnect:
            return

        logger.info("Reconnected to MQTT broker")
        with self._lock:
            topics = list(self._subscribed)
        if topics and not getattr(flags, "session_present", True):
            # The broker dropped our session, so the subscriptions are gone too.
            logger.warning("MQTT broker lost session state; subscribing again")
            for topic in topics:
                result, mid = client.subscribe(topic, qos=QOS)
                if result != mqtt.MQTT_ERR_SUCCESS:
                    logger.error(
                        "Failed to resubscribe to %s: %s", topic, mqtt.error_string(result)
                    )
                    continue
                # Runs on the network thread, so this SUBACK cannot arrive first.
                with self._lock:
                    self._resubscribing[mid] = topic
        if self._state is SessionState.CONNECTION_LOST:
            self._state = SessionState.ACTIVE

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if self._state is SessionState.DISCONNECTING:
            return
        logger.warning("Lost connection to MQTT broker (%s); reconnecting", reason_code)
        if self._state is SessionState.ACTIVE:
            self._state = SessionState.CONNECTION_LOST

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        reason_codes = list(reason_code_list)
        with self._lock:
            topic = self._resubscribing.pop(mid, None)
            if topic is None:
                if mid in self._abandoned:
                    self._abandoned.discard(mid)
                    return
                ack = self._acks.setdefault(mid, _Ack())
                ack.reason_codes = reason_codes
                ack.event.set()
                return

        failures = _failures(reason_codes)
        if failures:
            logger.error("MQTT broker rejected resubscription to %s: %s", topic, failures[0])
        else:
            logger.info("Resubscribed to %s", topic)

    def _on_message(self, client, userdata, message) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        if self._executor is not None:
            self._executor.submit(self._dispatch, message.topic, payload)
        else:
            self._dispatch(message.topic, payload)

    def _dispatch(self, topic: str, payload: str) -> None:
        try:
            self._handler(topic, payload)
        except Exception:
            logger.exception("Error while handling message on %s", topic)
