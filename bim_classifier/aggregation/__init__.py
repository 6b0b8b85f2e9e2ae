"""
Pattern aggregation components.
"""

from .pattern_aggregator import (
    DEFAULT_SAMPLE_SIZE,
    PatternAggregator,
    build_pattern,
    compute_dimension_range,
    compute_dimension_statistics,
    compute_fingerprint,
    group_elements,
    sort_patterns,
)

__all__ = [
    "DEFAULT_SAMPLE_SIZE",
    "PatternAggregator",
    "build_pattern",
    "compute_dimension_range",
    "compute_dimension_statistics",
    "compute_fingerprint",
    "group_elements",
    "sort_patterns",
]
