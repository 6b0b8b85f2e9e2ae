"""
Content-addressed cache of classification suggestions.

Entries are keyed by pattern fingerprint. A cache outage never makes
classification unavailable: every backend failure degrades to a miss (reads)
or a logged no-op (writes, counters).
"""

import json
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import CacheDegraded
from ..llm.schemas import ClassificationSuggestion
from ..models import CacheStatistics
from .backends import CacheBackend

logger = logging.getLogger(__name__)

KEY_PREFIX = "bim:classification:suggestion:"
STATS_KEY = "bim:classification:stats"
HIT_FIELD = "hits"
MISS_FIELD = "misses"
DEFAULT_TTL = timedelta(hours=24)
STATS_DOCUMENT_TTL = timedelta(days=7)

# Backend failures that degrade to a miss
_DEGRADED = (CacheDegraded, ConnectionError, TimeoutError, OSError)


def _ttl_seconds(ttl: Union[timedelta, int, float, None], default: timedelta) -> int:
    if ttl is None:
        ttl = default
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
    return max(1, int(seconds))


class ClassificationCache:
    """
    Cache of ClassificationSuggestion objects by fingerprint.

    Features:
    - Single round-trip batch lookups via the backend's multi-get
    - Silent fallback to sequential lookups when multi-get is unavailable
    - Hit/miss counters through atomic backend increments
    - Degrade-to-miss on backend outage
    """

    def __init__(
        self,
        backend: CacheBackend,
        default_ttl: timedelta = DEFAULT_TTL,
        key_prefix: str = KEY_PREFIX,
        stats_key: str = STATS_KEY,
    ) -> None:
        """
        Initialize the cache.

        Args:
            backend: Backing store
            default_ttl: Expiry horizon used when set() receives no ttl
            key_prefix: Namespace for suggestion entries
            stats_key: Key of the shared counter hash
        """
        self.backend = backend
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix
        self.stats_key = stats_key

    def _key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    def _deserialize(self, fingerprint: str, raw: Optional[str]) -> Optional[ClassificationSuggestion]:
        if raw is None:
            return None
        try:
            return ClassificationSuggestion.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(
                "Discarding unreadable cache entry for %s: %s", fingerprint, e
            )
            return None

    async def get(self, fingerprint: str) -> Optional[ClassificationSuggestion]:
        """
        Look up a single suggestion.

        Args:
            fingerprint: Pattern fingerprint

        Returns:
            The cached suggestion, or None when absent, expired or unreachable
        """
        try:
            raw = await self.backend.get(self._key(fingerprint))
        except _DEGRADED as e:
            logger.warning("Cache get degraded to miss for %s: %s", fingerprint, e)
            raw = None

        suggestion = self._deserialize(fingerprint, raw)
        if suggestion is None:
            logger.debug("Cache miss for pattern %s", fingerprint)
            await self._record(hits=0, misses=1)
        else:
            logger.debug("Cache hit for pattern %s", fingerprint)
            await self._record(hits=1, misses=0)
        return suggestion

    async def get_many(
        self, fingerprints: Iterable[str]
    ) -> Dict[str, ClassificationSuggestion]:
        """
        Look up many suggestions, returning only those present.

        Uses one multi-get round trip when the backend supports it and falls
        back to sequential lookups otherwise. Absent entries are omitted.

        Args:
            fingerprints: Pattern fingerprints

        Returns:
            Mapping of fingerprint to cached suggestion
        """
        unique = list(dict.fromkeys(fingerprints))
        if not unique:
            return {}

        raw_values = await self._multi_get(unique)
        if raw_values is None:
            return await self._get_sequential(unique)

        found: Dict[str, ClassificationSuggestion] = {}
        for fingerprint, raw in zip(unique, raw_values):
            suggestion = self._deserialize(fingerprint, raw)
            if suggestion is not None:
                found[fingerprint] = suggestion

        await self._record(hits=len(found), misses=len(unique) - len(found))
        logger.debug("Cache batch lookup: %d/%d hits", len(found), len(unique))
        return found

    async def _multi_get(self, fingerprints: List[str]) -> Optional[List[Optional[str]]]:
        """Single round trip read; None means the caller should fall back."""
        if not getattr(self.backend, "supports_multi_get", False):
            return None
        try:
            values = await self.backend.mget([self._key(f) for f in fingerprints])
        except NotImplementedError:
            return None
        except _DEGRADED as e:
            logger.warning("Cache multi-get failed, falling back to single gets: %s", e)
            return None

        if len(values) != len(fingerprints):
            logger.warning(
                "Cache multi-get returned %d values for %d keys, falling back",
                len(values),
                len(fingerprints),
            )
            return None
        return list(values)

    async def _get_sequential(self, fingerprints: List[str]) -> Dict[str, ClassificationSuggestion]:
        found: Dict[str, ClassificationSuggestion] = {}
        for fingerprint in fingerprints:
            suggestion = await self.get(fingerprint)
            if suggestion is not None:
                found[fingerprint] = suggestion
        return found

    async def set(
        self,
        fingerprint: str,
        suggestion: ClassificationSuggestion,
        ttl: Union[timedelta, int, float, None] = None,
    ) -> bool:
        """
        Store a suggestion, replacing any previous value for the fingerprint.

        Args:
            fingerprint: Pattern fingerprint
            suggestion: Suggestion to cache
            ttl: Expiry as timedelta or seconds (defaults to 24 hours)

        Returns:
            True if the write reached the backend
        """
        try:
            await self.backend.set(
                self._key(fingerprint),
                suggestion.model_dump_json(),
                _ttl_seconds(ttl, self.default_ttl),
            )
        except _DEGRADED as e:
            logger.warning("Cache write skipped for %s: %s", fingerprint, e)
            return False

        logger.info("Cached classification for pattern %s", fingerprint)
        return True

    async def invalidate(self, fingerprint: str) -> bool:
        """Remove the cached suggestion for a fingerprint."""
        try:
            await self.backend.delete(self._key(fingerprint))
        except _DEGRADED as e:
            logger.warning("Cache invalidation skipped for %s: %s", fingerprint, e)
            return False

        logger.info("Invalidated cache for pattern %s", fingerprint)
        return True

    async def get_statistics(self) -> CacheStatistics:
        """Hit/miss counters and number of live entries."""
        hits, misses = await self._read_counters()

        try:
            total_items = await self.backend.count_keys(self.key_prefix)
        except (NotImplementedError, AttributeError):
            total_items = 0
        except _DEGRADED as e:
            logger.warning("Cache size unavailable: %s", e)
            total_items = 0

        return CacheStatistics(hit_count=hits, miss_count=misses, total_items=total_items)

    async def _read_counters(self):
        try:
            if getattr(self.backend, "supports_counters", False):
                counters = await self.backend.get_counters(self.stats_key)
                return counters.get(HIT_FIELD, 0), counters.get(MISS_FIELD, 0)

            document = await self.backend.get(self.stats_key)
        except _DEGRADED as e:
            logger.warning("Cache statistics unavailable: %s", e)
            return 0, 0

        if not document:
            return 0, 0
        try:
            stats = json.loads(document)
            return int(stats.get(HIT_FIELD, 0)), int(stats.get(MISS_FIELD, 0))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable statistics document: %s", e)
            return 0, 0

    async def _record(self, hits: int, misses: int) -> None:
        """Update the shared counters; failures are logged and swallowed."""
        if hits == 0 and misses == 0:
            return

        try:
            if getattr(self.backend, "supports_counters", False):
                if hits:
                    await self.backend.incr_counter(self.stats_key, HIT_FIELD, hits)
                if misses:
                    await self.backend.incr_counter(self.stats_key, MISS_FIELD, misses)
                return

            # Stores without counters keep a JSON document; concurrent
            # writers can lose updates here.
            current_hits, current_misses = await self._read_counters()
            await self.backend.set(
                self.stats_key,
                json.dumps(
                    {HIT_FIELD: current_hits + hits, MISS_FIELD: current_misses + misses}
                ),
                _ttl_seconds(STATS_DOCUMENT_TTL, STATS_DOCUMENT_TTL),
            )
        except _DEGRADED as e:
            logger.warning("Failed to update cache statistics: %s", e)
