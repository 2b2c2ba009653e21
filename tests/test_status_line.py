"""Tests for :mod:`agentbridge.engine.status_line` and the shared models."""

from __future__ import annotations

import pytest

from agentbridge.engine.models import (
    ActivityEntry,
    ActivityKind,
    StreamingState,
    TurnStatus,
    make_conversation_key,
)
from agentbridge.engine.status_line import StatusLine, format_token_count


class TestStatusLine:
    def test_minimal_line(self) -> None:
        line = StatusLine(mode="bypassPermissions", model="test-model", session_id="thr_1")
        assert line.render() == "_bypass | test-model | thr_1_"

    def test_defaults_and_new_session(self) -> None:
        assert StatusLine().render() == "_ask | n/a | n/a_"
        line = StatusLine(mode="plan", model="m", session_id="s", is_new_session=True, reasoning_effort="high")
        assert line.render() == "_plan | m [high] | [new] s_"

    def test_stats_line(self) -> None:
        line = StatusLine(
            model="m",
            session_id="s",
            working_dir="/srv/repo",
            input_tokens=12_500,
            output_tokens=800,
            cost=0.1234,
            duration_ms=4_200,
            rate_limit_hits=2,
        )
        assert line.render().splitlines() == [
            "_ask | m | s_",
            "_/srv/repo_",
            "_12.5k/800 | $0.12 | 4.2s | :warning: 2 limits_",
        ]

    @pytest.mark.parametrize(
        ("count", "expected"),
        [(999, "999"), (1_000, "1.0k"), (2_500_000, "2.5M")],
    )
    def test_format_token_count(self, count: int, expected: str) -> None:
        assert format_token_count(count) == expected


class TestModels:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("completed", TurnStatus.COMPLETED),
            ("Failed", TurnStatus.FAILED),
            ("cancelled", TurnStatus.INTERRUPTED),
            ("something-new", TurnStatus.FAILED),
        ],
    )
    def test_status_parse(self, raw: str, expected: TurnStatus) -> None:
        assert TurnStatus.parse(raw) is expected
        assert expected.is_terminal

    def test_conversation_key(self) -> None:
        assert make_conversation_key("C1", "171.2") == "C1_171.2"
        assert make_conversation_key("C1") == "C1"

    def test_segments_keep_arrival_order(self) -> None:
        state = StreamingState()
        state.append_text("msg-1", "Hello ")
        state.append_text("msg-2", "there")
        state.append_text("msg-1", "world ")
        assert state.segment_text("msg-1") == "Hello world "
        assert state.response_text == "Hello world there"

    def test_entries_are_immutable(self) -> None:
        entry = ActivityEntry(kind=ActivityKind.ERROR, message="boom")
        linked = entry.with_link("https://chat/p1")
        assert entry.link is None
        assert linked.link == "https://chat/p1"
        assert linked.message == "boom"
