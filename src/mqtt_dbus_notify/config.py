"""Configuration loading and validation for mqtt-dbus-notify."""

import logging
import os
from dataclasses import dataclass, field

import yaml

from mqtt_dbus_notify.models import SubscriptionRule

logger = logging.getLogger(__name__)

APP_NAME = "mqtt-dbus-notify"

CONFIG_ENV_VAR = "MQTT_DBUS_NOTIFY_CONFIG"

DEFAULT_CONFIG_PATH = os.path.join("~", ".config", APP_NAME + ".json")

KNOWN_KEYS = {
    "host",
    "port",
    "user",
    "pass",
    "secure",
    "timeout",
    "keepalive",
    "icon",
    "notification_timeout",
    "workers",
    "subscriptions",
}

SUBSCRIPTION_KEYS = {"topic", "title", "body", "icon"}


@dataclass
class Config:
    host: str = "localhost"
    port: int = 1883
    user: str = ""
    password: str = ""
    secure: bool = False
    timeout: float = 5  # seconds, for connect and each subscribe
    keepalive: int = 60
    icon: str = "dialog-information"
    notification_timeout: int = 7  # seconds
    workers: int = 1
    subscriptions: list[SubscriptionRule] = field(default_factory=list)


def _parse_subscription(entry, index: int) -> SubscriptionRule:
    """Build a SubscriptionRule from one entry of the ``subscriptions`` list."""
    if not isinstance(entry, dict):
        raise ValueError(f"subscriptions[{index}] must be a mapping")

    for key in entry:
        if key not in SUBSCRIPTION_KEYS:
            logger.warning("Unknown key '%s' in subscriptions[%d] - ignoring", key, index)

    values = {}
    for key in SUBSCRIPTION_KEYS:
        value = entry.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"subscriptions[{index}].{key} must be a string")
        values[key] = value

    return SubscriptionRule(
        topic=values["topic"],
        title_template=values["title"],
        body_template=values["body"],
        icon=values["icon"],
    )


def _validate_config(config: Config) -> None:
    """Validate config values, raising ValueError on invalid fields."""
    if isinstance(config.port, bool) or not isinstance(config.port, int):
        raise ValueError(f"port must be an integer, got {type(config.port).__name__}")
    if not 0 < config.port < 65536:
        raise ValueError(f"port must be between 1 and 65535, got {config.port}")

    if isinstance(config.timeout, bool) or not isinstance(config.timeout, (int, float)):
        raise ValueError(f"timeout must be a number, got {type(config.timeout).__name__}")
    if config.timeout <= 0:
        raise ValueError(f"timeout must be positive, got {config.timeout}")

    if not isinstance(config.secure, bool):
        raise ValueError(f"secure must be true or false, got {config.secure!r}")

    for name in ("keepalive", "notification_timeout", "workers"):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")


def load_config(path: str | None = None) -> Config:
    """Load configuration from a JSON or YAML file.

    Config path resolution order:
    1. Explicit path argument
    2. MQTT_DBUS_NOTIFY_CONFIG environment variable
    3. ~/.config/mqtt-dbus-notify.json

    JSON is a subset of YAML, so both formats go through ``yaml.safe_load``.
    A missing file at the default location yields the defaults; a missing
    explicitly requested file raises FileNotFoundError.
    """
    explicit = True
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if path is None:
        explicit = False
        path = os.path.expanduser(DEFAULT_CONFIG_PATH)

    config = Config()

    if not explicit and not os.path.exists(path):
        logger.info("No config file found at %s, using defaults", path)
        return config

    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Cannot parse config file {path}: {exc}") from exc

    if raw is None:
        raw = {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(raw).__name__}")

    # Warn about unknown keys
    for key in raw:
        if key not in KNOWN_KEYS:
            logger.warning("Unknown config key '%s' - ignoring", key)

    # Simple scalar fields
    if "host" in raw:
        config.host = str(raw["host"])
    if "port" in raw:
        config.port = raw["port"]
    if "user" in raw:
        config.user = str(raw["user"] or "")
    if "pass" in raw:
        config.password = str(raw["pass"] or "")
    if "secure" in raw:
        config.secure = raw["secure"]
    if "timeout" in raw:
        config.timeout = raw["timeout"]
    if "keepalive" in raw:
        config.keepalive = raw["keepalive"]
    if "icon" in raw:
        config.icon = str(raw["icon"] or "")
    if "notification_timeout" in raw:
        config.notification_timeout = raw["notification_timeout"]
    if "workers" in raw:
        config.workers = raw["workers"]

    # Subscriptions keep file order, which is also the subscribe order.
    if "subscriptions" in raw:
        raw_subscriptions = raw["subscriptions"] or []
        if not isinstance(raw_subscriptions, list):
            raise ValueError("'subscriptions' must be a list")
        for i, entry in enumerate(raw_subscriptions):
            config.subscriptions.append(_parse_subscription(entry, i))

    _validate_config(config)

    return config
