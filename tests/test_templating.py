"""Tests for the template context and Jinja2 environment."""

import jinja2
import pytest

from mqtt_dbus_notify.errors import InvalidTopicIndex, TemplateEvalError
from mqtt_dbus_notify.templating import TemplateContext, create_environment


def render(source: str, topic: str = "home/kitchen/temp", payload: str = "21.5") -> str:
    context = TemplateContext(topic, payload)
    return create_environment().from_string(source).render(context.variables())


class TestTemplateContext:
    def test_segments(self):
        context = TemplateContext("home/kitchen/temp", "x")
        assert context.segments == ("home", "kitchen", "temp")

    def test_segment_by_index(self):
        context = TemplateContext("home/kitchen/temp", "x")
        assert context.segment(0) == "home"
        assert context.segment(1) == "kitchen"
        assert context.segment(2) == "temp"

    def test_segment_past_end(self):
        context = TemplateContext("home/kitchen/temp", "x")
        with pytest.raises(InvalidTopicIndex):
            context.segment(3)

    def test_negative_segment(self):
        context = TemplateContext("home/kitchen/temp", "x")
        with pytest.raises(InvalidTopicIndex):
            context.segment(-1)

    def test_non_integer_segment(self):
        context = TemplateContext("a/b", "x")
        with pytest.raises(InvalidTopicIndex):
            context.segment("1")

    def test_invalid_index_is_template_eval_error(self):
        assert issubclass(InvalidTopicIndex, TemplateEvalError)
        assert issubclass(InvalidTopicIndex, IndexError)

    def test_str_is_payload(self):
        assert str(TemplateContext("a/b", "hello\nworld")) == "hello\nworld"

    def test_empty_levels_are_kept(self):
        context = TemplateContext("/a//b", "x")
        assert context.segments == ("", "a", "", "b")

    def test_properties(self):
        context = TemplateContext("a/b", "p")
        assert context.topic == "a/b"
        assert context.payload == "p"


class TestDotShorthand:
    def test_bare_dot_renders_payload(self):
        assert render("{{.}}", payload="hello") == "hello"

    def test_bare_dot_with_spaces(self):
        assert render("{{ . }}", payload="hello") == "hello"

    def test_dot_attribute(self):
        assert render("{{ .payload }}", payload="p") == "p"

    def test_dot_method(self):
        assert render("{{ .segment(0) }}") == "home"

    def test_whitespace_control(self):
        assert render("a {{- . -}} b", payload="X") == "aXb"

    def test_dot_inside_literal_text_untouched(self):
        assert render("v1.2 {{.}}", payload="x") == "v1.2 x"

    def test_float_literal_untouched(self):
        assert render("{{ 1.5 }}") == "1.5"

    def test_payload_is_not_escaped(self):
        assert render("{{.}}", payload="<b>&</b>") == "<b>&</b>"


class TestTemplateNames:
    def test_segment_function(self):
        assert render("{{ segment(1) }}") == "kitchen"

    def test_topic_and_payload(self):
        assert render("{{ topic }}: {{ payload }}") == "home/kitchen/temp: 21.5"

    def test_segments_join(self):
        assert render("{{ segments | join('.') }}") == "home.kitchen.temp"

    def test_segment_out_of_range_propagates(self):
        with pytest.raises(InvalidTopicIndex):
            render("{{ segment(5) }}")

    def test_undefined_name_fails(self):
        with pytest.raises(jinja2.UndefinedError):
            render("{{ nope }}")
