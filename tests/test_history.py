"""Tests for the generation history ledger."""

import logging

import pytest

from dialogforge.history import HistoryLedger, estimate_token_count
from dialogforge.types import HistoryType


def record(ledger, node_id="node-1", result="Hello there.", success=True):
    return ledger.record(
        node_id=node_id,
        prompt="Write a greeting.",
        result=result,
        success=success,
        type=HistoryType.RECREATE,
        execution_time_ms=12.5,
    )


def test_estimate_token_count():
    assert estimate_token_count("") == 0
    assert estimate_token_count("one two three") == 4


class TestHistoryLedger:
    """Newest-first, bounded, observable."""

    def test_newest_first(self):
        ledger = HistoryLedger()
        first = record(ledger, result="first")
        second = record(ledger, result="second")

        assert ledger.items() == [second, first]
        assert second.metadata.execution_time_ms == 12.5
        assert second.metadata.tokens_used == estimate_token_count("Write a greeting.") + 2

    def test_limit_drops_oldest(self):
        ledger = HistoryLedger(limit=2)
        for i in range(3):
            record(ledger, result=f"line {i}")

        assert [item.result for item in ledger.items()] == ["line 2", "line 1"]

    def test_for_node(self):
        ledger = HistoryLedger()
        record(ledger, node_id="a")
        record(ledger, node_id="b")

        assert [item.node_id for item in ledger.for_node("a")] == ["a"]

    def test_missing_node_id_is_recorded_as_unknown(self):
        ledger = HistoryLedger()
        assert record(ledger, node_id="").node_id == "unknown"

    def test_subscribe_and_unsubscribe(self):
        ledger = HistoryLedger()
        snapshots = []
        unsubscribe = ledger.subscribe(snapshots.append)

        record(ledger)
        unsubscribe()
        record(ledger)

        assert len(snapshots) == 1
        assert len(snapshots[0]) == 1

    def test_failing_listener_does_not_break_recording(self, caplog):
        ledger = HistoryLedger()

        def broken(items):
            raise RuntimeError("listener down")

        ledger.subscribe(broken)
        with caplog.at_level(logging.WARNING):
            record(ledger)

        assert len(ledger) == 1
        assert "listener down" in caplog.text

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            HistoryLedger(limit=0)
