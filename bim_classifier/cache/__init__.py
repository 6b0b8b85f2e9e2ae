"""
Classification cache and its backing stores.
"""

from .backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from .classification_cache import ClassificationCache

__all__ = [
    "CacheBackend",
    "ClassificationCache",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
]
