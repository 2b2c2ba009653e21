"""Tests for :mod:`agentbridge.engine.tools`."""

from __future__ import annotations

import pytest

from agentbridge.engine.tools import (
    format_tool_input_summary,
    get_tool_emoji,
    normalize_tool_name,
    truncate_path,
    truncate_text,
    truncate_url,
)


class TestNormalizeToolName:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Read", "Read"),
            ("mcp__files__Read", "Read"),
            ("a__b__Grep", "Grep"),
            ("commandExecution", "Bash"),
            ("web_search", "WebSearch"),
            ("CustomTool", "CustomTool"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_tool_name(raw) == expected


class TestToolEmoji:
    def test_known_tools(self) -> None:
        assert get_tool_emoji("Read") == ":mag:"
        assert get_tool_emoji("Edit") == ":memo:"
        assert get_tool_emoji("Bash") == ":computer:"
        assert get_tool_emoji("mcp__srv__WebFetch") == ":globe_with_meridians:"

    def test_substring_fallback_and_default(self) -> None:
        assert get_tool_emoji("notebook_read_cells") == ":mag:"
        assert get_tool_emoji("mystery") == ":gear:"
        assert get_tool_emoji(None) == ":gear:"


class TestTruncation:
    def test_truncate_text(self) -> None:
        assert truncate_text("short", 10) == "short"
        assert truncate_text("abcdefghij", 8) == "abcde..."

    def test_truncate_path_keeps_last_segments(self) -> None:
        assert truncate_path("/a/b/c.py", 40) == "/a/b/c.py"
        assert truncate_path("/very/long/directory/structure/pkg/module.py", 20) == "pkg/module.py"

    def test_truncate_url(self) -> None:
        assert truncate_url("https://example.com/docs") == "example.com/docs"
        assert truncate_url("https://example.com/a/very/long/path/segment") == "example.com/a/very/long/path..."


class TestInputSummary:
    def test_string_input(self) -> None:
        assert format_tool_input_summary("Bash", "ls -la") == " `ls -la`"

    def test_file_tools_show_path(self) -> None:
        assert format_tool_input_summary("Edit", {"file_path": "/src/app.py"}) == " `/src/app.py`"

    def test_grep_pattern_is_quoted(self) -> None:
        assert format_tool_input_summary("Grep", {"pattern": "TODO"}) == ' `"TODO"`'

    def test_bash_command_truncated(self) -> None:
        command = "python -m pytest tests/test_activity_log.py -k budget"
        assert format_tool_input_summary("commandExecution", {"command": command}) == (
            " `" + command[:32] + "...`"
        )

    def test_web_search_query(self) -> None:
        assert format_tool_input_summary("WebSearch", {"query": "asyncio lock"}) == ' "asyncio lock"'

    def test_unknown_tool_uses_first_short_string(self) -> None:
        summary = format_tool_input_summary("Custom", {"_private": "x", "count": 3, "name": "alpha"})
        assert summary == " `alpha`"

    def test_missing_input(self) -> None:
        assert format_tool_input_summary("Read", None) == ""
        assert format_tool_input_summary("Read", {}) == ""
