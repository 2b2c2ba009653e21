"""Tool-name normalization and compact display helpers for activity entries."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlsplit

_TOOL_EMOJI: Mapping[str, str] = {
    "Read": ":mag:",
    "Glob": ":mag:",
    "Grep": ":mag:",
    "Edit": ":memo:",
    "Write": ":memo:",
    "FileChange": ":memo:",
    "Bash": ":computer:",
    "WebFetch": ":globe_with_meridians:",
    "WebSearch": ":globe_with_meridians:",
    "Task": ":robot_face:",
    "TodoWrite": ":clipboard:",
    "NotebookEdit": ":notebook:",
    "Skill": ":zap:",
}

_TOOL_NAME_ALIASES: Mapping[str, str] = {
    "commandexecution": "Bash",
    "shell": "Bash",
    "fileread": "Read",
    "filewrite": "Write",
    "filechange": "FileChange",
    "file_change": "FileChange",
    "websearch": "WebSearch",
    "web_search": "WebSearch",
}

_SUBSTRING_EMOJI: tuple[tuple[tuple[str, ...], str], ...] = (
    (("read", "glob", "grep"), ":mag:"),
    (("edit", "write"), ":memo:"),
    (("bash", "shell", "command"), ":computer:"),
    (("web", "fetch"), ":globe_with_meridians:"),
    (("task",), ":robot_face:"),
    (("todo",), ":clipboard:"),
)


def normalize_tool_name(tool_name: str) -> str:
    """Strip MCP-style prefixes (``mcp__server__Read`` -> ``Read``) and resolve aliases."""

    name = tool_name.rsplit("__", 1)[-1] if "__" in tool_name else tool_name
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


def get_tool_emoji(tool_name: str | None) -> str:
    if not tool_name:
        return ":gear:"
    emoji = _TOOL_EMOJI.get(normalize_tool_name(tool_name))
    if emoji:
        return emoji
    lower = tool_name.lower()
    for needles, candidate in _SUBSTRING_EMOJI:
        if any(needle in lower for needle in needles):
            return candidate
    return ":gear:"


def truncate_text(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."


def truncate_path(path: str, max_len: int) -> str:
    """Shorten ``path`` keeping its last two segments where possible."""

    if len(path) <= max_len:
        return path
    parts = path.split("/")
    if len(parts) <= 2:
        return path[-max_len:]
    last_two = "/".join(parts[-2:])
    if len(last_two) <= max_len:
        return last_two
    return "..." + path[-(max_len - 3):]


def truncate_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return truncate_text(url, 35)
    path = parts.path if len(parts.path) <= 20 else parts.path[:17] + "..."
    return parts.netloc + path


def format_tool_input_summary(tool_name: str, tool_input: Any) -> str:
    """Return a short inline summary of the key tool parameter, or ``""``."""

    if not tool_input:
        return ""
    if isinstance(tool_input, str):
        return f" `{truncate_text(tool_input, 80)}`"
    if not isinstance(tool_input, Mapping):
        return ""

    tool = normalize_tool_name(tool_name).lower()
    if tool in {"read", "edit", "write", "filechange"}:
        path = tool_input.get("file_path") or tool_input.get("path")
        return f" `{truncate_path(str(path), 40)}`" if path else ""
    if tool == "grep":
        pattern = tool_input.get("pattern")
        return f' `"{truncate_text(str(pattern), 25)}"`' if pattern else ""
    if tool == "glob":
        pattern = tool_input.get("pattern")
        return f" `{truncate_text(str(pattern), 30)}`" if pattern else ""
    if tool == "bash":
        command = tool_input.get("command")
        if isinstance(command, (list, tuple)):
            command = " ".join(str(part) for part in command)
        return f" `{truncate_text(str(command), 35)}`" if command else ""
    if tool == "task":
        subtype = f":{tool_input['subagent_type']}" if tool_input.get("subagent_type") else ""
        description = tool_input.get("description")
        desc = f' "{truncate_text(str(description), 25)}"' if description else ""
        return f"{subtype}{desc}"
    if tool in {"webfetch", "websearch"}:
        if tool_input.get("query"):
            return f' "{truncate_text(str(tool_input["query"]), 30)}"'
        url = tool_input.get("url")
        return f" `{truncate_url(str(url))}`" if url else ""

    for key, value in tool_input.items():
        if isinstance(value, str) and 0 < len(value) < 50 and not str(key).startswith("_"):
            return f" `{truncate_text(value, 30)}`"
    return ""


__all__ = [
    "normalize_tool_name",
    "get_tool_emoji",
    "truncate_text",
    "truncate_path",
    "truncate_url",
    "format_tool_input_summary",
]
