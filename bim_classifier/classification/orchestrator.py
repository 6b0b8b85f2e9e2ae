"""
Batch classification orchestrator.

Aggregates elements into patterns, serves known patterns from the cache in
one batch lookup and classifies the rest individually with bounded
concurrency. One failing pattern never aborts the batch.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Union

from ..aggregation.pattern_aggregator import PatternAggregator
from ..cache.classification_cache import ClassificationCache
from ..exceptions import NotFoundError, ValidationError
from ..llm.schemas import ClassificationSuggestion
from ..models import (
    BatchResult,
    BatchState,
    CacheStatistics,
    ExecutionContext,
    Pattern,
)
from .classifier import PatternClassifier

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """
    Coordinates aggregation, cache lookup and classifier fan-out.

    Features:
    - One aggregation call and one cache round trip per batch
    - Semaphore-bounded classification (sequential by default)
    - Immediate cache write-back of each new suggestion
    - Cooperative cancellation through the execution context
    """

    def __init__(
        self,
        aggregator: PatternAggregator,
        cache: ClassificationCache,
        classifier: PatternClassifier,
        max_concurrency: int = 1,
        sample_size: Optional[int] = None,
        cache_ttl: Union[timedelta, int, None] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            aggregator: Pattern aggregator over the element store
            cache: Classification cache
            classifier: Single-pattern classifier
            max_concurrency: Maximum simultaneous classifier calls
            sample_size: Per-pattern sample bound passed to the aggregator
            cache_ttl: Expiry of newly cached suggestions (cache default if None)
        """
        if max_concurrency < 1:
            raise ValidationError(
                "max_concurrency must be at least 1",
                field="max_concurrency",
                value=max_concurrency,
            )
        if sample_size is not None and sample_size < 1:
            raise ValidationError(
                "sample_size must be positive", field="sample_size", value=sample_size
            )

        self.aggregator = aggregator
        self.cache = cache
        self.classifier = classifier
        self.max_concurrency = max_concurrency
        self.sample_size = sample_size
        self.cache_ttl = cache_ttl

    @staticmethod
    def _validate_request(element_ids: Iterable[int]) -> List[int]:
        if element_ids is None or isinstance(element_ids, (str, bytes)):
            raise ValidationError(
                "element_ids must be a collection of integers", field="element_ids"
            )

        ids = list(element_ids)
        if not ids:
            raise ValidationError("element_ids cannot be empty", field="element_ids")

        for element_id in ids:
            if isinstance(element_id, bool) or not isinstance(element_id, int):
                raise ValidationError(
                    "element ids must be integers",
                    field="element_ids",
                    value=repr(element_id),
                )
            if element_id < 0:
                raise ValidationError(
                    "element ids cannot be negative",
                    field="element_ids",
                    value=element_id,
                )

        unique = list(dict.fromkeys(ids))
        if len(unique) != len(ids):
            logger.debug(f"Dropped {len(ids) - len(unique)} duplicate element ids")
        return unique

    @staticmethod
    def _enter(state: BatchState, context: ExecutionContext) -> None:
        context.metadata["batch_state"] = state.value
        logger.debug(f"Batch {context.execution_id} -> {state.value}")

    async def batch_classify(
        self,
        element_ids: Iterable[int],
        context: Optional[ExecutionContext] = None,
        force_refresh: bool = False,
    ) -> BatchResult:
        """
        Classify a batch of elements by pattern.

        Args:
            element_ids: Elements to classify
            context: Execution context (a new one is created if None)
            force_refresh: Skip the cache lookup and reclassify every pattern

        Returns:
            BatchResult with suggestions, pattern mapping and failures

        Raises:
            ValidationError: If the request is malformed
            NotFoundError: If none of the ids resolve to an element
            ElementStoreError: If the element store cannot be queried
        """
        context = context or ExecutionContext()
        self._enter(BatchState.RECEIVED, context)
        ids = self._validate_request(element_ids)

        if context.cancelled:
            logger.warning(f"Batch {context.execution_id} cancelled before aggregation")
            return BatchResult(
                total_elements=0,
                total_patterns=0,
                cached_patterns=0,
                newly_classified_patterns=0,
                cancelled=True,
            )

        logger.info(
            f"Starting batch classification of {len(ids)} elements "
            f"[execution {context.execution_id}]"
        )

        patterns = await self.aggregator.aggregate(
            ids, sample_size=self.sample_size, context=context
        )
        if not patterns:
            raise NotFoundError("No elements found for the requested ids", element_ids=ids)
        self._enter(BatchState.AGGREGATED, context)

        if force_refresh:
            cached: Dict[str, ClassificationSuggestion] = {}
            logger.info("Force refresh requested, skipping cache lookup")
        else:
            cached = await self.cache.get_many([p.fingerprint for p in patterns])
        self._enter(BatchState.CACHE_CHECKED, context)

        uncached = [p for p in patterns if p.fingerprint not in cached]
        logger.info(
            f"Found {len(cached)} cached patterns, classifying {len(uncached)} new patterns"
        )

        self._enter(BatchState.DISPATCHING, context)
        classified, failures, skipped = await self._dispatch(uncached, context)

        self._enter(BatchState.MERGED, context)
        suggestions: Dict[str, ClassificationSuggestion] = {}
        for pattern in patterns:
            suggestion = cached.get(pattern.fingerprint) or classified.get(pattern.fingerprint)
            if suggestion is not None:
                suggestions[pattern.fingerprint] = suggestion

        result = BatchResult(
            total_elements=sum(p.element_count for p in patterns),
            total_patterns=len(patterns),
            cached_patterns=len(cached),
            newly_classified_patterns=len(classified),
            suggestions_by_fingerprint=suggestions,
            pattern_mapping={p.fingerprint: list(p.element_ids) for p in patterns},
            failures=failures,
            cancelled=skipped > 0,
        )

        self._enter(BatchState.COMPLETED, context)
        logger.info(
            f"Batch classification complete: {result.total_patterns} patterns, "
            f"{result.cached_patterns} cached, {result.newly_classified_patterns} new, "
            f"{result.failed_patterns} failed"
            + (f", {skipped} skipped after cancellation" if skipped else "")
        )
        return result

    async def _dispatch(self, patterns: List[Pattern], context: ExecutionContext):
        """Classify patterns under the concurrency bound.

        Returns (classified suggestions, failures, number skipped).
        """
        classified: Dict[str, ClassificationSuggestion] = {}
        failures: Dict[str, str] = {}
        skipped = 0
        if not patterns:
            return classified, failures, skipped

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def classify_one(pattern: Pattern) -> None:
            nonlocal skipped
            async with semaphore:
                if context.cancelled:
                    skipped += 1
                    return

                try:
                    result = await self.classifier.execute(pattern, context)
                except Exception as e:
                    logger.error(
                        f"Unexpected error classifying pattern {pattern.pattern_key}: {e}",
                        exc_info=True,
                    )
                    failures[pattern.fingerprint] = str(e)
                    return

                if not result.ok:
                    failures[pattern.fingerprint] = result.message
                    return

                classified[pattern.fingerprint] = result.suggestion
                await self.cache.set(pattern.fingerprint, result.suggestion, self.cache_ttl)

        work = asyncio.gather(*(classify_one(p) for p in patterns))
        try:
            await asyncio.shield(work)
        except asyncio.CancelledError:
            # In-flight calls run to completion; queued patterns see the flag and skip.
            context.cancel()
            await asyncio.wait({work})
            logger.warning(
                f"Batch {context.execution_id} cancelled; "
                f"{len(classified)} patterns already cached"
            )
            raise

        return classified, failures, skipped

    async def get_cache_statistics(self) -> CacheStatistics:
        """Hit/miss counters and size of the classification cache."""
        return await self.cache.get_statistics()

    async def invalidate_cache(self, fingerprint: str) -> bool:
        """Drop the cached suggestion of one pattern."""
        if not fingerprint:
            raise ValidationError("fingerprint cannot be empty", field="fingerprint")
        return await self.cache.invalidate(fingerprint)
