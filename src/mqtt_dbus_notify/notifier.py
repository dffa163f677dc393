"""Desktop notification sender using the D-Bus notifications service."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from mqtt_dbus_notify.errors import ConnectError, NotifyError

logger = logging.getLogger(__name__)

DESTINATION = "org.freedesktop.Notifications"
OBJECT_PATH = "/org/freedesktop/Notifications"


def _session_bus():
    # pydbus needs PyGObject at import time; defer it until a bus is wanted.
    from pydbus import SessionBus

    return SessionBus()


class NotificationSink:
    """Owns the session-bus proxy for ``org.freedesktop.Notifications``.

    One proxy is shared by every caller; ``notify`` calls are serialized
    with a lock.
    """

    def __init__(self, bus_factory: Callable[[], Any] = _session_bus) -> None:
        self._bus_factory = bus_factory
        self._lock = threading.Lock()
        self._bus = None
        self._proxy = None

    @property
    def connected(self) -> bool:
        return self._proxy is not None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> None:
        """Connect to the session bus and look up the notifications service."""
        logger.info("Connecting to D-Bus session bus")
        with self._lock:
            try:
                bus = self._bus_factory()
                proxy = bus.get(DESTINATION, OBJECT_PATH)
            except Exception as exc:
                raise ConnectError(f"cannot reach {DESTINATION} on the session bus: {exc}") from exc
            self._bus = bus
            self._proxy = proxy
        logger.info("Connected to D-Bus notifications service")

    def disconnect(self) -> None:
        """Release the proxy and bus. Safe to call more than once."""
        with self._lock:
            if self._bus is None:
                return
            # The session bus connection is process-shared in GIO, so it is
            # released rather than closed.
            self._bus = None
            self._proxy = None
        logger.info("Disconnected from D-Bus")

    # -- notifications -------------------------------------------------------

    def notify(self, app_name: str, title: str, body: str, icon: str, timeout_ms: int) -> int:
        """Send one desktop notification and return its id.

        Raises NotifyError when not connected or when the service call fails.
        """
        with self._lock:
            if self._proxy is None:
                raise NotifyError("not connected to the notifications service")
            try:
                notification_id = self._proxy.Notify(
                    app_name,
                    0,  # replaces_id
                    icon,
                    title,
                    body,
                    [],  # actions
                    {},  # hints
                    int(timeout_ms),
                )
            except Exception as exc:
                raise NotifyError(f"Notify call failed: {exc}") from exc

        logger.debug("Notification %s sent: title=%r icon=%r", notification_id, title, icon)
        return notification_id
