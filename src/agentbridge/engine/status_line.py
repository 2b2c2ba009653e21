"""Status line shown beneath a streaming conversation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

_MODE_LABELS: Mapping[str, str] = {
    "plan": "plan",
    "default": "ask",
    "ask": "ask",
    "bypassPermissions": "bypass",
    "bypass": "bypass",
}


def format_token_count(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}k"
    return str(count)


@dataclass(slots=True)
class StatusLine:
    """Inputs for ``mode | model | session [| title]`` plus an optional stats line."""

    mode: str = "default"
    model: str | None = None
    session_id: str | None = None
    reasoning_effort: str | None = None
    is_new_session: bool = False
    session_title: str | None = None
    working_dir: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost: float | None = None
    duration_ms: float | None = None
    rate_limit_hits: int = 0

    def render(self) -> str:
        parts = [_MODE_LABELS.get(self.mode, self.mode)]

        model = self.model or "n/a"
        if self.reasoning_effort:
            model = f"{model} [{self.reasoning_effort}]"
        parts.append(model)

        session = self.session_id or "n/a"
        if self.session_id and self.is_new_session:
            session = f"[new] {self.session_id}"
        parts.append(session)
        if self.session_title:
            parts.append(self.session_title)

        stats: list[str] = []
        if self.input_tokens is not None or self.output_tokens is not None:
            stats.append(
                f"{format_token_count(self.input_tokens or 0)}/{format_token_count(self.output_tokens or 0)}"
            )
        if self.cost is not None:
            stats.append(f"${self.cost:.2f}")
        if self.duration_ms is not None:
            stats.append(f"{self.duration_ms / 1000:.1f}s")
        if self.rate_limit_hits > 0:
            stats.append(f":warning: {self.rate_limit_hits} limits")

        lines = [f"_{' | '.join(parts)}_"]
        if self.working_dir:
            lines.append(f"_{self.working_dir}_")
        if stats:
            lines.append(f"_{' | '.join(stats)}_")
        return "\n".join(lines)


__all__ = ["StatusLine", "format_token_count"]
