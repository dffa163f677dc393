"""Turn an MQTT message into a notification title and body."""

from __future__ import annotations

import logging

import jinja2

from mqtt_dbus_notify.errors import (
    InvalidTopicIndex,
    TemplateEvalError,
    TemplateParseError,
)
from mqtt_dbus_notify.models import SubscriptionRule
from mqtt_dbus_notify.templating import TemplateContext, create_environment

logger = logging.getLogger(__name__)


def split_title_body(payload: str) -> tuple[str, str]:
    """Default rule: first line is the title, everything after it the body."""
    title, _, body = payload.partition("\n")
    return title, body


class NotificationRenderer:
    """Renders notifications for subscription rules.

    Compiled templates are cached on the rule itself, so a rule's templates
    are parsed once no matter how many messages it matches or how many
    threads render it concurrently.
    """

    def __init__(self, environment: jinja2.Environment | None = None) -> None:
        self._env = environment or create_environment()

    def render(self, rule: SubscriptionRule, topic: str, payload: str) -> tuple[str, str]:
        """Return ``(title, body)`` for a message that matched ``rule``.

        Raises TemplateParseError or TemplateEvalError. Title and body are
        rendered as a pair: if either fails, nothing is returned.
        """
        if not rule.uses_templates:
            return split_title_body(payload)

        title_template, body_template = rule.templates.get(lambda: self._compile(rule))

        context = TemplateContext(topic, payload)
        title = self._evaluate(title_template, context, rule, "title")
        body = self._evaluate(body_template, context, rule, "body")
        return title, body

    def _compile(self, rule: SubscriptionRule) -> tuple[jinja2.Template, jinja2.Template]:
        logger.debug("Compiling templates for %s", rule.topic)
        try:
            title = self._env.from_string(rule.title_template)
            body = self._env.from_string(rule.body_template)
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateParseError(
                f"invalid template for '{rule.topic}' (line {exc.lineno}): {exc.message}"
            ) from exc
        return title, body

    def _evaluate(
        self,
        template: jinja2.Template,
        context: TemplateContext,
        rule: SubscriptionRule,
        which: str,
    ) -> str:
        try:
            return template.render(context.variables())
        except InvalidTopicIndex:
            raise
        except Exception as exc:
            raise TemplateEvalError(
                f"failed to render {which} template for '{rule.topic}': {exc}"
            ) from exc
