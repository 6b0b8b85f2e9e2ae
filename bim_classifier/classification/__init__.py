"""
Pattern classification components.
"""

from .classifier import (
    ClassificationFailure,
    ClassificationResult,
    ClassificationSuccess,
    PatternClassifier,
)
from .orchestrator import ClassificationOrchestrator

__all__ = [
    "ClassificationFailure",
    "ClassificationOrchestrator",
    "ClassificationResult",
    "ClassificationSuccess",
    "PatternClassifier",
]
