"""Jinja2 environment and per-message context for notification templates.

Names available inside a template:

* ``this``      the message context; renders as the raw payload
* ``payload``   the raw payload string
* ``topic``     the concrete topic the message arrived on
* ``segments``  the topic split on ``/``
* ``segment(i)`` one topic segment by index

A dot at the start of an expression is shorthand for ``this``, so
``{{.}}`` renders the payload and ``{{ .payload }}`` is ``{{ this.payload }}``.
"""

from __future__ import annotations

import re

import jinja2
from jinja2.ext import Extension

from mqtt_dbus_notify.errors import InvalidTopicIndex

# "{{" with optional whitespace control, then a lone leading dot.
_LEADING_DOT = re.compile(r"(\{\{[-+]?\s*)\.(?![\d.])([A-Za-z_]\w*)?")


class TemplateContext:
    """Read-only view of one message for template evaluation."""

    def __init__(self, topic: str, payload: str) -> None:
        self._topic = topic
        self._payload = payload
        self._segments = tuple(topic.split("/"))

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def payload(self) -> str:
        return self._payload

    @property
    def segments(self) -> tuple[str, ...]:
        return self._segments

    def segment(self, index: int) -> str:
        """Return the topic segment at ``index``.

        Raises InvalidTopicIndex for negative indices and indices past the
        last segment.
        """
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidTopicIndex(f"topic segment index must be an integer, got {index!r}")
        if index < 0 or index >= len(self._segments):
            raise InvalidTopicIndex(
                f"topic segment index {index} out of range for "
                f"'{self._topic}' ({len(self._segments)} segments)"
            )
        return self._segments[index]

    def variables(self) -> dict:
        """The names exposed to a template."""
        return {
            "this": self,
            "payload": self._payload,
            "topic": self._topic,
            "segments": self._segments,
            "segment": self.segment,
        }

    def __str__(self) -> str:
        return self._payload

    def __repr__(self) -> str:
        return f"TemplateContext(topic={self._topic!r}, payload={self._payload!r})"


class DotShorthandExtension(Extension):
    """Rewrite ``{{.}}`` / ``{{ .name }}`` to ``{{this}}`` / ``{{ this.name }}``."""

    def preprocess(self, source, name, filename=None):
        return _LEADING_DOT.sub(_expand_dot, source)


def _expand_dot(match: re.Match) -> str:
    attribute = match.group(2)
    if attribute:
        return f"{match.group(1)}this.{attribute}"
    return f"{match.group(1)}this"


def create_environment() -> jinja2.Environment:
    """Build the Jinja2 environment used for every notification template."""
    return jinja2.Environment(
        autoescape=False,
        keep_trailing_newline=True,
        undefined=jinja2.StrictUndefined,
        extensions=[DotShorthandExtension],
    )
