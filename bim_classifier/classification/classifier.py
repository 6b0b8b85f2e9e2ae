"""
Single-pattern classifier.

Turns one Pattern into a ClassificationSuggestion by rendering a bounded,
sanitized projection of the pattern into a prompt, calling the LLM provider
through the ResilientInvoker and parsing the answer strictly.
"""

import functools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import BimClassifierError, ClassifierError
from ..llm.prompts import PATTERN_CLASSIFICATION_PROMPT, PromptRenderer, TemplatePromptRenderer
from ..llm.provider import LLMProvider
from ..llm.schemas import ClassificationSuggestion
from ..models import Element, ExecutionContext, Pattern
from ..resilience.invoker import ResilientInvoker
from ..security.sanitizer import InputSanitizer

logger = logging.getLogger(__name__)

MAX_PROMPT_SAMPLES = 5
MAX_METADATA_VALUE_LENGTH = 80


@dataclass(frozen=True)
class ClassificationSuccess:
    """A pattern that was classified."""

    fingerprint: str
    suggestion: ClassificationSuggestion

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ClassificationFailure:
    """
    A pattern that could not be classified.

    ``reason`` is one of ``invocation``, ``timeout``, ``parse`` or
    ``validation``.
    """

    fingerprint: str
    reason: str
    cause: BaseException

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.cause)


ClassificationResult = Union[ClassificationSuccess, ClassificationFailure]


def logged_classification(func):
    """Log timing and outcome of each classification call."""

    @functools.wraps(func)
    async def wrapper(self, pattern: Pattern, context: Optional[ExecutionContext] = None):
        started = time.perf_counter()
        execution = f" [execution {context.execution_id}]" if context else ""
        logger.debug(f"Classifying pattern {pattern.fingerprint}{execution}")

        result = await func(self, pattern, context)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if result.ok:
            logger.info(
                f"Classified pattern {pattern.pattern_key} "
                f"({pattern.element_count} elements) in {elapsed_ms}ms{execution}"
            )
        else:
            logger.error(
                f"Failed to classify pattern {pattern.pattern_key} "
                f"({result.reason}) after {elapsed_ms}ms: {result.message}{execution}"
            )
        return result

    return wrapper


def _truncate(value: str, limit: int = MAX_METADATA_VALUE_LENGTH) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


class PatternClassifier:
    """
    Classifies one pattern at a time through an LLM provider.

    Only a bounded projection reaches the prompt: the key fields, the
    element count, dimension statistics and the first few samples with
    their spec and truncated metadata. Every interpolated text value is
    sanitized first.
    """

    def __init__(
        self,
        provider: LLMProvider,
        renderer: Optional[PromptRenderer] = None,
        invoker: Optional[ResilientInvoker] = None,
        sanitizer: Optional[InputSanitizer] = None,
        prompt_name: str = PATTERN_CLASSIFICATION_PROMPT,
    ):
        """
        Initialize the classifier.

        Args:
            provider: LLM provider returning raw text
            renderer: Prompt renderer (defaults to the built-in templates)
            invoker: Retry/timeout wrapper for provider calls
            sanitizer: Prompt input sanitizer
            prompt_name: Name of the prompt template to render
        """
        self.provider = provider
        self.renderer = renderer or TemplatePromptRenderer()
        self.invoker = invoker or ResilientInvoker()
        self.sanitizer = sanitizer or InputSanitizer()
        self.prompt_name = prompt_name
        self._output_schema = json.dumps(ClassificationSuggestion.model_json_schema())

    def _sample_projection(self, element: Element) -> Dict[str, Any]:
        metadata = {
            self.sanitizer.sanitize(str(key)): self.sanitizer.sanitize(
                _truncate(str(value))
            )
            for key, value in element.metadata.items()
            if value is not None
        }
        return {
            "id": element.id,
            "spec": self.sanitizer.sanitize(element.spec),
            "metadata": metadata,
        }

    def build_projection(self, pattern: Pattern) -> Dict[str, Any]:
        """Bounded, sanitized view of a pattern for the prompt."""
        clean = self.sanitizer.sanitize
        samples: List[Dict[str, Any]] = [
            self._sample_projection(e)
            for e in pattern.sample_elements[:MAX_PROMPT_SAMPLES]
        ]
        return {
            "pattern_key": clean(pattern.pattern_key),
            "category": clean(pattern.key.category),
            "family": clean(pattern.key.family),
            "type": clean(pattern.key.type),
            "material": clean(pattern.key.material),
            "location_type": clean(pattern.key.location_type),
            "element_count": pattern.element_count,
            "dimensions_mm": pattern.dimension_stats.to_dict(),
            "samples": samples,
        }

    def build_prompt(self, pattern: Pattern, context: Optional[ExecutionContext] = None) -> str:
        variables: Mapping[str, Any] = {
            "pattern_json": json.dumps(
                self.build_projection(pattern), ensure_ascii=False, indent=2
            ),
            "element_count": pattern.element_count,
            "output_schema": self._output_schema,
            "project_context": self.sanitizer.sanitize(
                (context.metadata.get("project_context") if context else None) or ""
            ),
        }
        return self.renderer.render(self.prompt_name, variables)

    @staticmethod
    def parse_suggestion(raw: Any) -> ClassificationSuggestion:
        """
        Parse raw model output strictly.

        Raises:
            PydanticValidationError: If the output is not exactly one valid
                suggestion document
        """
        return ClassificationSuggestion.model_validate_json(raw)

    @logged_classification
    async def execute(
        self, pattern: Pattern, context: Optional[ExecutionContext] = None
    ) -> ClassificationResult:
        """
        Classify one pattern.

        Args:
            pattern: Pattern to classify
            context: Execution context of the calling batch

        Returns:
            ClassificationSuccess, or ClassificationFailure with reason and cause
        """
        fingerprint = pattern.fingerprint

        try:
            prompt = self.build_prompt(pattern, context)
        except BimClassifierError as e:
            return ClassificationFailure(fingerprint, "validation", e)
        except Exception as e:
            error = ClassifierError(
                f"Prompt rendering failed: {e}", fingerprint=fingerprint, reason="validation"
            )
            error.__cause__ = e
            return ClassificationFailure(fingerprint, "validation", error)

        try:
            raw = await self.invoker.invoke(self.provider.complete, prompt)
        except ClassifierError as e:
            e.fingerprint = e.fingerprint or fingerprint
            return ClassificationFailure(fingerprint, e.reason or "invocation", e)
        except Exception as e:
            # Non-retryable errors pass through the invoker unwrapped.
            return ClassificationFailure(fingerprint, "invocation", e)

        if not isinstance(raw, (str, bytes)):
            return ClassificationFailure(
                fingerprint,
                "parse",
                ClassifierError(
                    f"Provider returned {type(raw).__name__} instead of text",
                    fingerprint=fingerprint,
                    reason="parse",
                ),
            )

        try:
            suggestion = self.parse_suggestion(raw)
        except PydanticValidationError as e:
            invalid_json = any(err["type"] == "json_invalid" for err in e.errors())
            reason = "parse" if invalid_json else "validation"
            error = ClassifierError(
                f"Model output rejected: {e.error_count()} error(s)",
                fingerprint=fingerprint,
                reason=reason,
            )
            error.__cause__ = e
            return ClassificationFailure(fingerprint, reason, error)

        return ClassificationSuccess(fingerprint, suggestion)
