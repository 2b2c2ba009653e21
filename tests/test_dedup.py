"""Tests for :mod:`agentbridge.engine.dedup`."""

from __future__ import annotations

import pytest

from agentbridge.engine.dedup import DeltaDeduplicator

from tests.helpers import (
    CONTENT_DELTA,
    ITEM_DELTA,
    LEGACY_DELTA,
    REPEATED_TOKEN_TEXT,
    REPEATED_TOKENS,
    delta,
    live_delta_replay,
)


class TestLiveReplay:
    """Replays a captured stream where every token arrives three times."""

    def test_reconstructs_text_without_loss(self) -> None:
        """Each genuine token is accepted exactly once, repeats included."""
        dedup = DeltaDeduplicator()
        accepted = [
            content
            for index, (method, item_id, content) in enumerate(live_delta_replay())
            if dedup.accept(delta(method, content, item_id=item_id, at=index * 0.001))
        ]

        assert len(accepted) == len(REPEATED_TOKENS) == 13
        assert "".join(accepted) == REPEATED_TOKEN_TEXT
        assert dedup.dropped == 26

    def test_content_only_filter_loses_repeated_tokens(self) -> None:
        """A filter keyed on content alone drops the second ``" ="``."""
        seen: set[str] = set()
        accepted: list[str] = []
        for _method, _item_id, content in live_delta_replay():
            if content[:100] in seen:
                continue
            seen.add(content[:100])
            accepted.append(content)

        assert len(accepted) < len(REPEATED_TOKENS)
        assert "".join(accepted) != REPEATED_TOKEN_TEXT


class TestAcceptRules:
    """Tests for the per-fingerprint decision table."""

    def test_same_method_repeat_is_accepted(self) -> None:
        dedup = DeltaDeduplicator()
        assert dedup.accept(delta(ITEM_DELTA, " =", at=0.0))
        assert dedup.accept(delta(ITEM_DELTA, " =", at=0.01))

    def test_cross_method_duplicate_is_dropped(self) -> None:
        dedup = DeltaDeduplicator()
        assert dedup.accept(delta(CONTENT_DELTA, "hello", at=0.0))
        assert not dedup.accept(delta(ITEM_DELTA, "hello", at=0.05))
        assert not dedup.accept(delta(LEGACY_DELTA, "hello", item_id="", at=0.1))

    def test_expired_fingerprint_is_accepted_from_any_method(self) -> None:
        dedup = DeltaDeduplicator(ttl_seconds=0.2)
        assert dedup.accept(delta(CONTENT_DELTA, "x", at=0.0))
        assert dedup.accept(delta(ITEM_DELTA, "x", at=0.5))

    def test_same_method_refreshes_the_window(self) -> None:
        """A genuine repeat keeps later cross-channel copies suppressed."""
        dedup = DeltaDeduplicator(ttl_seconds=0.2)
        assert dedup.accept(delta(CONTENT_DELTA, "tok", at=0.0))
        assert dedup.accept(delta(CONTENT_DELTA, "tok", at=0.15))
        assert not dedup.accept(delta(ITEM_DELTA, "tok", at=0.3))

    def test_empty_content_is_ignored(self) -> None:
        dedup = DeltaDeduplicator()
        assert not dedup.accept(delta(ITEM_DELTA, "", at=0.0))
        assert len(dedup) == 0

    def test_fingerprint_uses_prefix(self) -> None:
        dedup = DeltaDeduplicator(prefix_chars=4)
        assert dedup.fingerprint("abcdefgh") == "abcd"
        assert dedup.accept(delta(CONTENT_DELTA, "abcdXXXX", at=0.0))
        assert not dedup.accept(delta(ITEM_DELTA, "abcdYYYY", at=0.01))


class TestBookkeeping:
    """Tests for counters, pruning and reset."""

    def test_reset_clears_state(self) -> None:
        dedup = DeltaDeduplicator()
        dedup.accept(delta(CONTENT_DELTA, "a", at=0.0))
        dedup.accept(delta(ITEM_DELTA, "a", at=0.0))
        dedup.reset()
        assert len(dedup) == 0
        assert dedup.accepted == 0
        assert dedup.dropped == 0
        assert dedup.accept(delta(ITEM_DELTA, "a", at=0.0))

    def test_expired_entries_are_pruned(self) -> None:
        dedup = DeltaDeduplicator(ttl_seconds=0.2)
        for index in range(300):
            dedup.accept(delta(ITEM_DELTA, f"token-{index}", at=float(index)))
        assert len(dedup) < 300

    @pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"prefix_chars": 0}])
    def test_rejects_non_positive_configuration(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            DeltaDeduplicator(**kwargs)
