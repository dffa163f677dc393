"""Configured subscription rules and topic-to-rule resolution."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import paho.mqtt.client as mqtt

from mqtt_dbus_notify.models import SubscriptionRule

logger = logging.getLogger(__name__)


def is_valid_filter(topic_filter: str) -> bool:
    """Check MQTT topic filter syntax.

    ``#`` must be the whole of the last level and ``+`` must be a whole
    level. Empty filters are invalid.
    """
    if not topic_filter:
        return False
    levels = topic_filter.split("/")
    for i, level in enumerate(levels):
        if "#" in level and (level != "#" or i != len(levels) - 1):
            return False
        if "+" in level and level != "+":
            return False
    return True


class SubscriptionRegistry:
    """Ordered set of active subscription rules.

    Lookup is first-registered-wins: when several filters match one topic,
    the rule that was registered earliest handles the message.
    """

    def __init__(self) -> None:
        self._rules: list[SubscriptionRule] = []

    @property
    def rules(self) -> list[SubscriptionRule]:
        return list(self._rules)

    def register(self, rules: Iterable[SubscriptionRule]) -> list[SubscriptionRule]:
        """Add ``rules`` in order and return the ones that were accepted.

        Rules with an empty or malformed topic filter, and rules repeating a
        filter that is already registered, are skipped with a warning.
        """
        accepted = []
        seen = {rule.topic for rule in self._rules}
        for rule in rules:
            if not rule.topic:
                logger.warning("Ignoring subscription without topic")
                continue
            if not is_valid_filter(rule.topic):
                logger.warning("Ignoring subscription with invalid topic filter '%s'", rule.topic)
                continue
            if rule.topic in seen:
                logger.warning("Ignoring duplicate subscription for '%s'", rule.topic)
                continue
            seen.add(rule.topic)
            self._rules.append(rule)
            accepted.append(rule)

        if not self._rules:
            logger.warning("No subscriptions configured")

        return accepted

    def lookup(self, topic: str) -> SubscriptionRule | None:
        """Return the first registered rule whose filter matches ``topic``."""
        for rule in self._rules:
            if mqtt.topic_matches_sub(rule.topic, topic):
                return rule
        return None
