"""Unit tests for ParseResultCache and its use by providers."""

import pytest
from conftest import ScriptedVisionProvider, make_part, parts_json

from cutlist_intake.models.extraction import ParseOptions, ProviderParseResult
from cutlist_intake.services.vision.result_cache import ParseResultCache


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def result(confidence: float = 0.95, parts: int = 1) -> ProviderParseResult:
    return ProviderParseResult(parts=[make_part() for _ in range(parts)], confidence=confidence)


class TestParseResultCache:
    """Storage rules, expiry and eviction."""

    def test_key_depends_on_content_and_options(self):
        key = ParseResultCache.key_for(b"photo", "image/jpeg", ParseOptions())

        assert key == ParseResultCache.key_for(b"photo", "image/jpeg", ParseOptions())
        assert key != ParseResultCache.key_for(b"photo2", "image/jpeg", ParseOptions())
        assert key != ParseResultCache.key_for(b"photo", "image/jpeg", ParseOptions(template_id="CAI-acme-v1.0"))

    def test_low_confidence_and_empty_results_are_not_stored(self):
        cache = ParseResultCache(min_confidence=0.7)

        assert cache.put("a", result(confidence=0.5)) is False
        assert cache.put("b", result(parts=0)) is False
        assert len(cache) == 0

    def test_entries_expire(self):
        clock = FakeClock()
        cache = ParseResultCache(ttl_seconds=60, clock=clock)
        cache.put("a", result())

        clock.now = 59
        assert cache.get("a") is not None
        clock.now = 121
        assert cache.get("a") is None
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1

    def test_least_recently_used_entry_is_evicted(self):
        cache = ParseResultCache(max_entries=2)
        cache.put("a", result())
        cache.put("b", result())
        cache.get("a")
        cache.put("c", result())

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.stats.evictions == 1


class TestProviderCaching:
    """Providers answer repeated uploads from the cache."""

    @pytest.mark.asyncio
    async def test_identical_image_is_parsed_once(self):
        provider = ScriptedVisionProvider(
            lambda prompt, attachment: parts_json(("Side", 720, 560, 2)), result_cache=ParseResultCache()
        )

        first = await provider.parse_image(b"jpeg", "image/jpeg", ParseOptions())
        second = await provider.parse_image(b"jpeg", "image/jpeg", ParseOptions())
        await provider.parse_image(b"other", "image/jpeg", ParseOptions())

        assert len(provider.calls) == 2
        assert second.parts == first.parts
        assert provider.result_cache.stats.hits == 1
