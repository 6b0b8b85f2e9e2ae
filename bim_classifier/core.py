"""
Wiring of the concrete adapters into a ready-to-use orchestrator.
"""

import logging
from datetime import timedelta
from typing import Optional

from .aggregation.pattern_aggregator import PatternAggregator
from .cache.backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from .cache.classification_cache import ClassificationCache
from .classification.classifier import PatternClassifier
from .classification.orchestrator import ClassificationOrchestrator
from .config import BimClassifierConfig
from .database.element_store import ElementStore, SqlElementStore
from .database.engine import DatabaseManager
from .exceptions import ConfigurationError
from .llm.prompts import PromptRenderer
from .llm.provider import LLMProvider, PydanticAIProvider
from .resilience.invoker import ResilientInvoker

logger = logging.getLogger(__name__)


def build_orchestrator(
    config: Optional[BimClassifierConfig] = None,
    element_store: Optional[ElementStore] = None,
    cache_backend: Optional[CacheBackend] = None,
    provider: Optional[LLMProvider] = None,
    renderer: Optional[PromptRenderer] = None,
) -> ClassificationOrchestrator:
    """
    Build a ClassificationOrchestrator from configuration.

    Any collaborator passed explicitly replaces the adapter the configuration
    would create.

    Args:
        config: Library configuration (defaults plus BIM_* overrides if None)
        element_store: Element store (SQL store on config.database_url if None)
        cache_backend: Cache backing store (Redis if config.redis_url is set,
            otherwise process memory)
        provider: LLM provider (pydantic-ai agent on config.model_name if None)
        renderer: Prompt renderer (built-in templates if None)

    Returns:
        Configured orchestrator
    """
    config = config or BimClassifierConfig()

    if element_store is None:
        element_store = SqlElementStore(DatabaseManager(config))

    if cache_backend is None:
        if config.redis_url:
            cache_backend = RedisCacheBackend(redis_url=config.redis_url)
        else:
            logger.info("No redis_url configured, using in-process classification cache")
            cache_backend = InMemoryCacheBackend()

    if provider is None:
        provider = PydanticAIProvider(
            model=config.model_name, temperature=config.temperature
        )

    invoker = ResilientInvoker(
        max_retries=config.max_retries,
        base_delay=config.base_delay,
        max_delay=config.max_delay,
        timeout=config.timeout_seconds,
        non_retryable=(ConfigurationError,),
    )

    orchestrator = ClassificationOrchestrator(
        aggregator=PatternAggregator(element_store, sample_size=config.sample_size),
        cache=ClassificationCache(
            cache_backend, default_ttl=timedelta(seconds=config.cache_ttl_seconds)
        ),
        classifier=PatternClassifier(provider, renderer=renderer, invoker=invoker),
        max_concurrency=config.max_concurrency,
        sample_size=config.sample_size,
    )

    logger.info(
        f"Built classification orchestrator (model={config.model_name}, "
        f"max_concurrency={config.max_concurrency}, "
        f"cache={type(cache_backend).__name__})"
    )
    return orchestrator
