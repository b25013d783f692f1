"""Bounded generation-history ledger with change subscriptions."""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import Callable, List

from dialogforge.types import AIHistoryItem, HistoryMetadata, HistoryType

logger = logging.getLogger(__name__)

HistoryListener = Callable[[List[AIHistoryItem]], None]


def estimate_token_count(text: str) -> int:
    """Rough token estimate: 1.3 tokens per whitespace-separated word."""
    if not text:
        return 0
    return math.ceil(len(text.split()) * 1.3)


class HistoryLedger:
    """Newest-first record of generation calls, capped at ``limit`` items.

    Listeners receive a snapshot of the items after every change. A failing
    listener is logged and skipped so it cannot break generation.
    """

    def __init__(self, limit: int = 1000) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self._limit = limit
        self._items: List[AIHistoryItem] = []
        self._listeners: List[HistoryListener] = []

    def record(
        self,
        *,
        node_id: str,
        prompt: str,
        result: str,
        success: bool,
        type: HistoryType,
        execution_time_ms: float = 0.0,
    ) -> AIHistoryItem:
        item = AIHistoryItem(
            id=uuid.uuid4().hex[:12],
            node_id=node_id or "unknown",
            prompt=prompt,
            result=result,
            success=success,
            type=type,
            timestamp=time.time(),
            metadata=HistoryMetadata(
                execution_time_ms=execution_time_ms,
                tokens_used=estimate_token_count(prompt) + estimate_token_count(result),
            ),
        )
        self.append(item)
        return item

    def append(self, item: AIHistoryItem) -> None:
        self._items.insert(0, item)
        del self._items[self._limit :]
        self._notify()

    def items(self) -> List[AIHistoryItem]:
        return list(self._items)

    def for_node(self, node_id: str) -> List[AIHistoryItem]:
        return [item for item in self._items if item.node_id == node_id]

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()
        self._notify()

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.items()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("History listener %r failed: %s", listener, e)
