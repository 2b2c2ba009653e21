"""Per-conversation activity log with budgeted rendering.

The log is append-only: entries are immutable once committed. The
thinking/response line that is still streaming is held separately as the
conversation's *live* entry, replaced on every update and committed when its
segment closes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, Sequence

from .models import ActivityEntry, ActivityKind
from .tools import format_tool_input_summary, get_tool_emoji, normalize_tool_name

LOGGER = logging.getLogger(__name__)

STARTING_SENTINEL = ":brain: Analyzing request..."
TOO_LONG_SENTINEL = "_... activity too long ..._"
MAX_LIVE_ENTRIES = 300
ROLLING_WINDOW_SIZE = 20
THINKING_TRUNCATE_LENGTH = 500
PREVIEW_LENGTH = 300
OUTPUT_HINT_LENGTH = 50

_WHITESPACE = re.compile(r"\s+")


def hidden_marker(count: int) -> str:
    return f"_... {count} earlier entries hidden ..._"


def linkify(label: str, link: str | None) -> str:
    """Wrap ``label`` in a chat link, escaping the pipe the link syntax reserves."""

    if not link:
        return label
    return f"<{link}|{label.replace('|', chr(0xA6))}>"


def _duration(entry: ActivityEntry) -> str:
    return f" [{entry.duration_ms / 1000:.1f}s]" if entry.duration_ms else ""


def _flatten(text: str) -> str:
    return text.replace("\n", " ").strip()


def render_entry(entry: ActivityEntry) -> str:
    """Render one entry as one or more newline-joined lines."""

    kind = entry.kind
    link = entry.link
    lines: list[str] = []

    if kind is ActivityKind.STARTING:
        lines.append(f":brain: *{linkify('Analyzing request...', link)}*")

    elif kind is ActivityKind.THINKING:
        text = entry.content or ""
        chars = entry.char_count if entry.char_count is not None else len(text)
        display = _flatten(text)
        if entry.in_progress:
            indicator = f" _[{chars} chars]_" if chars > 0 else ""
            lines.append(f":brain: *{linkify('Thinking...', link)}*{_duration(entry)}{indicator}")
            preview = display[-PREVIEW_LENGTH:]
        else:
            indicator = f" _[{chars} chars]_" if chars > THINKING_TRUNCATE_LENGTH else ""
            lines.append(f":brain: *{linkify('Thinking', link)}*{_duration(entry)}{indicator}")
            preview = display
            if len(display) > THINKING_TRUNCATE_LENGTH:
                preview = "..." + display[-THINKING_TRUNCATE_LENGTH:]
        if preview:
            lines.append(f"> {preview}")

    elif kind is ActivityKind.TOOL_START:
        tool = entry.tool or "Unknown"
        summary = format_tool_input_summary(tool, entry.tool_input)
        label = linkify(normalize_tool_name(tool), link)
        lines.append(f"{get_tool_emoji(tool)} *{label}*{summary} [in progress]")

    elif kind is ActivityKind.TOOL_COMPLETE:
        tool = entry.tool or "Unknown"
        summary = format_tool_input_summary(tool, entry.tool_input)
        hint = ""
        if not entry.tool_is_error and entry.tool_output:
            output = _WHITESPACE.sub(" ", entry.tool_output)
            suffix = "..." if len(entry.tool_output) > OUTPUT_HINT_LENGTH else ""
            hint = f" → `{output[:OUTPUT_HINT_LENGTH]}{suffix}`"
        warning = " :warning:" if entry.tool_is_error else ""
        label = linkify(normalize_tool_name(tool), link)
        lines.append(f":white_check_mark: *{label}*{summary}{hint}{_duration(entry)}{warning}")

    elif kind is ActivityKind.GENERATING:
        text = entry.content or ""
        chars = entry.char_count if entry.char_count is not None else len(text)
        info = f" _[{chars:,} chars]_" if chars > 0 else ""
        label = "Generating..." if entry.in_progress else "Response"
        lines.append(f":pencil: *{linkify(label, link)}*{_duration(entry)}{info}")
        display = _flatten(text)
        if len(display) > PREVIEW_LENGTH:
            display = display[:PREVIEW_LENGTH] + "..."
        if display:
            lines.append(f"> {display}")

    elif kind is ActivityKind.ERROR:
        lines.append(f":x: {linkify('Error', link)}: {entry.message or 'Unknown error'}")

    elif kind is ActivityKind.ABORTED:
        lines.append(f":octagonal_sign: *{linkify('Aborted by user', link)}*")

    elif kind is ActivityKind.SESSION_CHANGED:
        if entry.previous_session_id:
            lines.append(f":bookmark: Previous: `{entry.previous_session_id}`")
        if entry.message:
            lines.append(f":arrow_forward: Resumed: `{entry.message}`")

    return "\n".join(lines)


class ActivityLog:
    """Ordered activity entries per conversation key.

    Rendering never mutates the stored entries; the character budget is
    applied to a rendered copy each time.
    """

    def __init__(
        self,
        *,
        max_live_entries: int = MAX_LIVE_ENTRIES,
        rolling_window_size: int = ROLLING_WINDOW_SIZE,
    ) -> None:
        if rolling_window_size <= 0:
            raise ValueError("rolling_window_size must be positive")
        self._max_live_entries = max_live_entries
        self._window = rolling_window_size
        self._entries: dict[str, list[ActivityEntry]] = {}
        self._live: dict[str, ActivityEntry] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def append(self, key: str, entry: ActivityEntry) -> int:
        """Append ``entry`` and return its index."""

        entries = self._entries.setdefault(key, [])
        entries.append(entry)
        return len(entries) - 1

    def set_live(self, key: str, entry: ActivityEntry) -> None:
        self._live[key] = entry

    def live(self, key: str) -> ActivityEntry | None:
        return self._live.get(key)

    def commit_live(self, key: str, **changes: object) -> ActivityEntry | None:
        """Append the live entry (closed, unless ``in_progress`` is passed) and clear it."""

        entry = self._live.pop(key, None)
        if entry is None:
            return None
        changes.setdefault("in_progress", False)
        committed = replace(entry, **changes)
        self.append(key, committed)
        return committed

    def discard_live(self, key: str) -> None:
        self._live.pop(key, None)

    def attach_link(self, key: str, index: int, link: str) -> ActivityEntry:
        """Replace entry ``index`` with a copy carrying ``link``.

        Raises:
            IndexError: If ``index`` does not address a committed entry.
        """

        entries = self._entries.get(key)
        if not entries or not 0 <= index < len(entries):
            raise IndexError(f"No activity entry {index} for {key}")
        linked = entries[index].with_link(link)
        entries[index] = linked
        return linked

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)
        self._live.pop(key, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def entries(self, key: str) -> tuple[ActivityEntry, ...]:
        return tuple(self._entries.get(key, ()))

    def __contains__(self, key: object) -> bool:
        return key in self._entries or key in self._live

    def render(self, key: str, max_chars: int) -> str:
        """Render the conversation's log within ``max_chars`` characters."""

        entries = list(self._entries.get(key, ()))
        live = self._live.get(key)
        if live is not None:
            entries.append(live)
        return render_entries(
            entries,
            max_chars,
            max_live_entries=self._max_live_entries,
            rolling_window_size=self._window,
        )


def render_entries(
    entries: Sequence[ActivityEntry],
    max_chars: int,
    *,
    max_live_entries: int = MAX_LIVE_ENTRIES,
    rolling_window_size: int = ROLLING_WINDOW_SIZE,
) -> str:
    """Render ``entries`` applying window, tool pairing and the character budget."""

    if not entries:
        return STARTING_SENTINEL

    retained = list(entries)
    hidden = 0
    if len(retained) > max_live_entries:
        retained = _rolling_window(retained, rolling_window_size)
        hidden = len(entries) - len(retained)

    completed_ids = {
        entry.call_id
        for entry in retained
        if entry.kind is ActivityKind.TOOL_COMPLETE and entry.call_id
    }
    retained = [
        entry
        for entry in retained
        if not (entry.kind is ActivityKind.TOOL_START and entry.call_id in completed_ids)
    ]
    if not retained:
        return STARTING_SENTINEL

    blocks = [render_entry(entry) for entry in retained]
    kept = [index for index, block in enumerate(blocks) if block]
    hidden += len(blocks) - len(kept)

    for drop_index in [None, *_drop_order(retained, kept)]:
        if drop_index is not None:
            kept.remove(drop_index)
            hidden += 1
        if not kept:
            break
        lines = [hidden_marker(hidden)] if hidden else []
        lines.extend(blocks[index] for index in kept)
        text = "\n".join(lines)
        if len(text) <= max_chars:
            return text

    LOGGER.debug("Activity log of %d entries does not fit %d chars", len(entries), max_chars)
    return TOO_LONG_SENTINEL


def _rolling_window(entries: list[ActivityEntry], size: int) -> list[ActivityEntry]:
    cutoff = len(entries) - size
    return [
        entry
        for position, entry in enumerate(entries)
        if position >= cutoff or entry.is_thought_or_response
    ]


def _drop_order(entries: Sequence[ActivityEntry], kept: Iterable[int]) -> list[int]:
    """Oldest-first drop order, with the latest thinking, response and tool entries last."""

    kept = list(kept)
    protected: dict[str, int] = {}
    for index in kept:
        entry = entries[index]
        if entry.kind is ActivityKind.THINKING:
            protected["thinking"] = index
        elif entry.kind is ActivityKind.GENERATING:
            protected["generating"] = index
        elif entry.is_tool:
            protected["tool"] = index
    protected_indices = set(protected.values())
    ordinary = [index for index in kept if index not in protected_indices]
    return ordinary + sorted(protected_indices)


__all__ = [
    "ActivityLog",
    "render_entry",
    "render_entries",
    "hidden_marker",
    "linkify",
    "STARTING_SENTINEL",
    "TOO_LONG_SENTINEL",
    "MAX_LIVE_ENTRIES",
    "ROLLING_WINDOW_SIZE",
    "THINKING_TRUNCATE_LENGTH",
]
