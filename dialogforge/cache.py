"""Process-local caches: validation results and rendered tag blocks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from dialogforge.types import NodeValidationResult

logger = logging.getLogger(__name__)

DEFAULT_VALIDATION_TTL_S = 3600.0


def compute_content_hash(content: str) -> str:
    """Cheap 32-bit rolling hash of node text, used only for cache invalidation."""
    h = 0
    for ch in content:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


@dataclass
class _ValidationEntry:
    result: NodeValidationResult
    content_hash: str
    stored_at: float


class ValidationCache:
    """Per-node validation results, invalidated by content hash and age.

    Lookups with changed text or an expired entry evict the entry and miss.
    """

    def __init__(
        self,
        ttl_s: float = DEFAULT_VALIDATION_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: Dict[str, _ValidationEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._entries

    def get(self, node_id: str, text: str) -> Optional[NodeValidationResult]:
        entry = self._entries.get(node_id)
        if entry is None:
            return None

        if entry.content_hash != compute_content_hash(text):
            logger.debug("Validation cache: text changed for node %s, evicting", node_id)
            del self._entries[node_id]
            return None

        if self._clock() - entry.stored_at >= self._ttl_s:
            logger.debug("Validation cache: entry for node %s expired", node_id)
            del self._entries[node_id]
            return None

        return entry.result

    def put(self, node_id: str, text: str, result: NodeValidationResult) -> None:
        if not node_id:
            return
        self._entries[node_id] = _ValidationEntry(
            result=result,
            content_hash=compute_content_hash(text),
            stored_at=self._clock(),
        )
        self.prune()

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= self._ttl_s]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()


class TagFormattingCache:
    """Rendered tag blocks keyed by the sorted set of tag ids. Never expires."""

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    @staticmethod
    def key_for(tag_ids: Iterable[str]) -> str:
        return "|".join(sorted(tag_ids))

    def get(self, tag_ids: Iterable[str]) -> Optional[str]:
        return self._entries.get(self.key_for(tag_ids))

    def put(self, tag_ids: Iterable[str], rendered: str) -> None:
        self._entries[self.key_for(tag_ids)] = rendered

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
