"""Content-addressed cache of provider parse results.

Re-uploads of the same photo or PDF with the same options are answered
without a model call. Keys combine the SHA-256 of the content with a hash
of the parse options, so a different template or page hint is a miss.
"""

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from cutlist_intake.models.extraction import ParseOptions, ProviderParseResult
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ParseResultCache:
    """LRU cache with a TTL, holding only confident, non-empty results."""

    def __init__(
        self,
        max_entries: int = 100,
        ttl_seconds: float = 24 * 3600,
        min_confidence: float = 0.7,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.min_confidence = min_confidence
        self.stats = CacheStats()
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, ProviderParseResult]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key_for(content: bytes, mime_type: str, options: ParseOptions) -> str:
        content_hash = hashlib.sha256(content).hexdigest()
        options_json = options.model_dump_json()
        options_hash = hashlib.sha256(f"{mime_type}|{options_json}".encode("utf-8")).hexdigest()[:16]
        return f"{content_hash}:{options_hash}"

    def get(self, key: str) -> Optional[ProviderParseResult]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None

        stored_at, result = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.stats.misses += 1
            return None

        self._entries.move_to_end(key)
        self.stats.hits += 1
        LOGGER.info("Parse result served from cache", extra={"key": key[:16], "parts": len(result.parts)})
        return result.model_copy(deep=True)

    def put(self, key: str, result: ProviderParseResult) -> bool:
        """Store ``result`` if it is worth reusing.

        Returns:
            bool: Whether the result was stored
        """
        if self.max_entries <= 0 or not result.parts or result.truncated:
            return False
        if result.confidence < self.min_confidence:
            return False

        self._entries[key] = (self._clock(), result.model_copy(deep=True))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.stats.evictions += 1
        return True
