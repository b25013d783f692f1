"""Tests for the validation and tag-formatting caches."""

from dialogforge.cache import TagFormattingCache, ValidationCache, compute_content_hash
from dialogforge.types import NodeValidationResult, ValidationScores

from tests.fakes import FakeClock


def make_result(voice=0.8, coherence=0.5):
    return NodeValidationResult(scores=ValidationScores.from_components(voice, coherence))


def test_content_hash_is_stable_and_text_sensitive():
    assert compute_content_hash("The gate opens.") == compute_content_hash("The gate opens.")
    assert compute_content_hash("The gate opens.") != compute_content_hash("The gate closes.")
    assert compute_content_hash("") == "0"


class TestValidationCache:
    """Entries are invalidated by text changes and by age."""

    def test_repeated_reads_return_same_result(self):
        cache = ValidationCache(clock=FakeClock())
        result = make_result()
        cache.put("node-1", "The gate opens.", result)

        assert cache.get("node-1", "The gate opens.") is result
        assert cache.get("node-1", "The gate opens.") is result

    def test_changed_text_misses_and_evicts(self):
        cache = ValidationCache(clock=FakeClock())
        cache.put("node-1", "The gate opens.", make_result())

        assert cache.get("node-1", "The gate closes.") is None
        assert "node-1" not in cache

    def test_expired_entry_misses(self):
        clock = FakeClock()
        cache = ValidationCache(ttl_s=3600, clock=clock)
        cache.put("node-1", "text", make_result())

        clock.advance(3599)
        assert cache.get("node-1", "text") is not None
        clock.advance(1)
        assert cache.get("node-1", "text") is None

    def test_put_prunes_expired_entries(self):
        clock = FakeClock()
        cache = ValidationCache(ttl_s=10, clock=clock)
        cache.put("old", "text", make_result())
        clock.advance(11)
        cache.put("new", "text", make_result())

        assert "old" not in cache
        assert len(cache) == 1

    def test_put_without_node_id_is_ignored(self):
        cache = ValidationCache(clock=FakeClock())
        cache.put("", "text", make_result())
        assert len(cache) == 0


class TestTagFormattingCache:
    def test_key_ignores_order(self):
        cache = TagFormattingCache()
        cache.put(["b", "a"], "rendered")

        assert cache.get(["a", "b"]) == "rendered"
        assert cache.get(["a"]) is None
        assert len(cache) == 1
