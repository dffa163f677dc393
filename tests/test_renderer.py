"""Tests for the notification renderer."""

import threading

import pytest

from mqtt_dbus_notify.errors import (
    InvalidTopicIndex,
    TemplateError,
    TemplateEvalError,
    TemplateParseError,
)
from mqtt_dbus_notify.models import SubscriptionRule
from mqtt_dbus_notify.renderer import NotificationRenderer, split_title_body


def make_rule(**overrides) -> SubscriptionRule:
    """Create a SubscriptionRule with sensible defaults, overriding specific fields."""
    defaults = dict(topic="home/+/temp")
    defaults.update(overrides)
    return SubscriptionRule(**defaults)


# ── Default rule ───────────────────────────────────────────────────


class TestDefaultRule:
    def test_two_lines(self):
        title, body = NotificationRenderer().render(make_rule(), "a", "Meeting\nRoom 204")
        assert title == "Meeting"
        assert body == "Room 204"

    def test_single_line(self):
        title, body = NotificationRenderer().render(make_rule(), "a", "Single line")
        assert title == "Single line"
        assert body == ""

    def test_only_first_newline_splits(self):
        title, body = split_title_body("Title\nline 1\nline 2")
        assert title == "Title"
        assert body == "line 1\nline 2"

    def test_empty_payload(self):
        assert split_title_body("") == ("", "")

    def test_trailing_newline(self):
        assert split_title_body("Title\n") == ("Title", "")

    def test_default_rule_does_not_touch_cache(self):
        rule = make_rule()
        NotificationRenderer().render(rule, "a", "x")
        assert rule.templates.ready is False


# ── Template rule ──────────────────────────────────────────────────


class TestTemplateRule:
    def test_dot_title_is_raw_payload(self):
        rule = make_rule(title_template="{{.}}")
        title, body = NotificationRenderer().render(rule, "a", "line one\nline two")
        assert title == "line one\nline two"
        assert body == ""

    def test_topic_segment(self):
        rule = make_rule(title_template="{{ segment(1) }}", body_template="{{.}} C")
        title, body = NotificationRenderer().render(rule, "home/kitchen/temp", "21.5")
        assert title == "kitchen"
        assert body == "21.5 C"

    def test_body_template_only_gives_empty_title(self):
        rule = make_rule(body_template="{{ payload }}")
        title, body = NotificationRenderer().render(rule, "a", "hi")
        assert title == ""
        assert body == "hi"

    def test_out_of_range_segment(self):
        rule = make_rule(title_template="{{ segment(5) }}")
        with pytest.raises(InvalidTopicIndex):
            NotificationRenderer().render(rule, "home/kitchen/temp", "x")

    def test_failure_in_body_fails_whole_render(self):
        rule = make_rule(title_template="{{.}}", body_template="{{ segment(9) }}")
        with pytest.raises(TemplateError):
            NotificationRenderer().render(rule, "a/b", "x")

    def test_undefined_name_is_eval_error(self):
        rule = make_rule(title_template="{{ missing }}")
        with pytest.raises(TemplateEvalError, match="title"):
            NotificationRenderer().render(rule, "a", "x")

    def test_runtime_error_is_eval_error(self):
        rule = make_rule(body_template="{{ 1 / 0 }}")
        with pytest.raises(TemplateEvalError, match="body"):
            NotificationRenderer().render(rule, "a", "x")

    def test_syntax_error_is_parse_error(self):
        rule = make_rule(title_template="{{ unclosed")
        with pytest.raises(TemplateParseError):
            NotificationRenderer().render(rule, "a", "x")

    def test_trailing_newline_kept(self):
        rule = make_rule(title_template="T", body_template="line\n")
        assert NotificationRenderer().render(rule, "a", "x") == ("T", "line\n")

    def test_failure_does_not_affect_next_message(self):
        renderer = NotificationRenderer()
        rule = make_rule(title_template="{{ segment(2) }}")
        with pytest.raises(InvalidTopicIndex):
            renderer.render(rule, "a/b", "x")
        assert renderer.render(rule, "a/b/c", "x") == ("c", "")


# ── Template caching ───────────────────────────────────────────────


class TestTemplateCache:
    def test_parse_failure_compiled_once(self, mocker):
        renderer = NotificationRenderer()
        spy = mocker.spy(renderer._env, "from_string")
        rule = make_rule(title_template="{{ unclosed")

        for _ in range(3):
            with pytest.raises(TemplateParseError):
                renderer.render(rule, "a", "x")

        assert spy.call_count == 1

    def test_templates_compiled_once(self, mocker):
        renderer = NotificationRenderer()
        spy = mocker.spy(renderer, "_compile")
        rule = make_rule(title_template="{{.}}")

        for payload in ("a", "b", "c"):
            renderer.render(rule, "t", payload)

        assert spy.call_count == 1
        assert rule.templates.ready is True

    def test_cache_is_per_rule(self, mocker):
        renderer = NotificationRenderer()
        spy = mocker.spy(renderer, "_compile")
        first = make_rule(title_template="one")
        second = make_rule(title_template="two")

        assert renderer.render(first, "t", "x") == ("one", "")
        assert renderer.render(second, "t", "x") == ("two", "")
        assert spy.call_count == 2

    def test_concurrent_first_use_compiles_once(self, mocker):
        renderer = NotificationRenderer()
        spy = mocker.spy(renderer, "_compile")
        rule = make_rule(title_template="{{ segment(0) }}", body_template="{{.}}")
        start = threading.Barrier(6)
        results = []

        def worker(i):
            start.wait()
            results.append(renderer.render(rule, f"room{i}/x", str(i)))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert spy.call_count == 1
        assert sorted(results) == [(f"room{i}", str(i)) for i in range(6)]
