"""
BIM Classifier - pattern-based, cache-first classification of BIM elements.
"""

from .aggregation import PatternAggregator, compute_fingerprint
from .cache import ClassificationCache, InMemoryCacheBackend, RedisCacheBackend
from .classification import (
    ClassificationFailure,
    ClassificationOrchestrator,
    ClassificationSuccess,
    PatternClassifier,
)
from .config import BimClassifierConfig
from .core import build_orchestrator
from .database import DatabaseManager, InMemoryElementStore, SqlElementStore
from .exceptions import (
    BimClassifierError,
    CacheDegraded,
    ClassifierError,
    ConfigurationError,
    ElementStoreError,
    NotFoundError,
    PartialBatchFailure,
    ValidationError,
)
from .llm import ClassificationSuggestion, DerivedItemSuggestion, PydanticAIProvider
from .models import (
    BatchResult,
    CacheStatistics,
    DimensionRange,
    DimensionStatistics,
    Element,
    ExecutionContext,
    Pattern,
    PatternKey,
)
from .resilience import ResilientInvoker
from .security import InputSanitizer

__version__ = "0.1.0"
__all__ = [
    "build_orchestrator",
    "BimClassifierConfig",
    "ClassificationOrchestrator",
    "PatternAggregator",
    "PatternClassifier",
    "ClassificationCache",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "DatabaseManager",
    "SqlElementStore",
    "InMemoryElementStore",
    "PydanticAIProvider",
    "ResilientInvoker",
    "InputSanitizer",
    "compute_fingerprint",
    "ClassificationSuggestion",
    "DerivedItemSuggestion",
    "ClassificationSuccess",
    "ClassificationFailure",
    "BatchResult",
    "CacheStatistics",
    "DimensionRange",
    "DimensionStatistics",
    "Element",
    "ExecutionContext",
    "Pattern",
    "PatternKey",
    "BimClassifierError",
    "CacheDegraded",
    "ClassifierError",
    "ConfigurationError",
    "ElementStoreError",
    "NotFoundError",
    "PartialBatchFailure",
    "ValidationError",
]
