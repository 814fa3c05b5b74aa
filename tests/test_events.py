"""ProcessEvent 与 TerminationPolicy 测试。"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from root_relay.runtime.events import (
    PROCESS_EVENT_ADAPTER,
    Exit,
    StderrLine,
    StdoutLine,
    TerminationPolicy,
)


class TestProcessEvents:
    """事件模型测试。"""

    def test_events_are_immutable(self):
        event = StdoutLine(text="hello")
        with pytest.raises(ValidationError):
            event.text = "changed"

    def test_events_compare_by_value(self):
        assert StdoutLine(text="a") == StdoutLine(text="a")
        assert StdoutLine(text="a") != StderrLine(text="a")
        assert len({Exit(code=0), Exit(code=0), Exit(code=1)}) == 2

    def test_kind_discriminator(self):
        assert StdoutLine(text="").kind == "stdout"
        assert StderrLine(text="").kind == "stderr"
        assert Exit(code=-9).kind == "exit"

    def test_parse_from_json(self):
        """JSON 行可按 kind 还原为具体事件类型。"""
        event = PROCESS_EVENT_ADAPTER.validate_json('{"kind": "stderr", "text": "oops"}')
        assert isinstance(event, StderrLine)
        assert event.text == "oops"

        event = PROCESS_EVENT_ADAPTER.validate_json(Exit(code=3).model_dump_json())
        assert event == Exit(code=3)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            PROCESS_EVENT_ADAPTER.validate_python({"kind": "signal", "code": 9})

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError):
            StdoutLine(text="x", pid=1)


class TestTerminationPolicy:
    """终止策略测试。"""

    def test_empty_pattern_never_matches(self):
        policy = TerminationPolicy()
        assert policy.enabled is False
        assert policy.matches("") is False
        assert policy.matches("anything") is False
        assert TerminationPolicy.never() == policy

    def test_search_not_fullmatch(self):
        policy = TerminationPolicy(pattern="ready")
        assert policy.enabled is True
        assert policy.matches("server is ready now") is True
        assert policy.matches("not yet") is False

    def test_regex_pattern(self):
        policy = TerminationPolicy(pattern=r"^inet6? \d")
        assert policy.matches("inet 10.0.0.1") is True
        assert policy.matches("inet6 2001:db8::1") is False
        assert policy.matches("  inet 1") is False

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ValidationError, match="Invalid termination pattern"):
            TerminationPolicy(pattern="(unclosed")
