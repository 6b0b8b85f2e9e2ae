"""
LLM integration: suggestion schemas, prompt templates and providers.
"""

from .prompts import (
    PATTERN_CLASSIFICATION_PROMPT,
    ChangeKind,
    PromptChange,
    PromptParameter,
    PromptRegistry,
    PromptRenderer,
    PromptTemplate,
    PromptVersionComparison,
    TemplatePromptRenderer,
    compare_templates,
    default_registry,
    suggest_next_version,
)
from .provider import LLMProvider, PydanticAIProvider
from .schemas import ClassificationSuggestion, DerivedItemSuggestion

__all__ = [
    "ClassificationSuggestion",
    "DerivedItemSuggestion",
    "PATTERN_CLASSIFICATION_PROMPT",
    "ChangeKind",
    "PromptChange",
    "PromptParameter",
    "PromptRegistry",
    "PromptRenderer",
    "PromptTemplate",
    "PromptVersionComparison",
    "TemplatePromptRenderer",
    "compare_templates",
    "default_registry",
    "suggest_next_version",
    "LLMProvider",
    "PydanticAIProvider",
]
