"""Entry point and message-handling pipeline for mqtt-dbus-notify."""

from __future__ import annotations

import argparse
import functools
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

from mqtt_dbus_notify.broker import BrokerSession
from mqtt_dbus_notify.config import APP_NAME, Config, load_config
from mqtt_dbus_notify.errors import BridgeError, NotifyError, TemplateError
from mqtt_dbus_notify.notifier import NotificationSink
from mqtt_dbus_notify.registry import SubscriptionRegistry
from mqtt_dbus_notify.renderer import NotificationRenderer

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Show MQTT messages as desktop notifications.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Path to config JSON/YAML (default: ~/.config/mqtt-dbus-notify.json)",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def handle_message(
    topic: str,
    payload: str,
    *,
    registry: SubscriptionRegistry,
    renderer: NotificationRenderer,
    sink: NotificationSink,
    config: Config,
) -> None:
    """Process a single MQTT message through the full pipeline.

    Steps: lookup rule → render title/body → pick icon → notify. A failure at
    any step drops this message only.
    """
    rule = registry.lookup(topic)
    if rule is None:
        logger.debug("No subscription matches %s; dropping", topic)
        return

    try:
        title, body = renderer.render(rule, topic, payload)
    except TemplateError as exc:
        logger.error("Dropped message on %s: %s", topic, exc)
        return

    icon = rule.icon or config.icon

    try:
        sink.notify(APP_NAME, title, body, icon, config.notification_timeout * 1000)
    except NotifyError as exc:
        logger.error("Failed to send notification for %s: %s", topic, exc)
        return

    logger.info("Notified (%s): %s / %r", rule.topic, topic, title)


def run(
    config: Config,
    stop_event: threading.Event,
    *,
    sink: NotificationSink | None = None,
) -> None:
    """Run the bridge until ``stop_event`` is set.

    Setup order is sink, broker connection, subscriptions; teardown runs in
    reverse and always completes. Setup errors propagate after teardown.
    """
    registry = SubscriptionRegistry()
    rules = registry.register(config.subscriptions)
    renderer = NotificationRenderer()

    if sink is None:
        sink = NotificationSink()
    sink.connect()
    try:
        executor = ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="notify")
        session = BrokerSession(
            functools.partial(
                handle_message, registry=registry, renderer=renderer, sink=sink, config=config
            ),
            executor=executor,
        )
        try:
            session.connect(config)
            session.subscribe_all(rules, config.timeout)
            logger.info("Listening on %d subscription(s)", len(rules))
            stop_event.wait()
        finally:
            session.unsubscribe_all()
            session.disconnect()
            executor.shutdown(wait=True)
    finally:
        sink.disconnect()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        level=getattr(logging, args.log_level),
    )

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        logger.error("Config file not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    logger.info("Configuration loaded successfully")

    stop_event = threading.Event()

    # Graceful shutdown on SIGTERM / SIGINT.
    def _shutdown(signum, _frame):
        sig_name = signal.Signals(signum).name
        logger.info("Received %s - shutting down", sig_name)
        stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("Starting %s", APP_NAME)
    try:
        run(config, stop_event)
    except BridgeError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        sys.exit(1)

    logger.info("Stopped")
