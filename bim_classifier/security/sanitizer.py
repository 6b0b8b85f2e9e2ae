"""
Input sanitization for text interpolated into LLM prompts.

Element attributes come from customer BIM models and are free text. Before any
of it reaches a prompt we strip control characters and neutralise phrases that
are commonly used to steer a model away from its instructions.
"""

import logging
import re
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

DANGEROUS_PATTERNS: Sequence[str] = (
    # Markdown fences that could close the data block
    "```",
    # Role / instruction markers
    "SYSTEM:",
    "SYSTEM PROMPT:",
    "ASSISTANT:",
    "USER:",
    "INSTRUCTION:",
    "INSTRUCTIONS:",
    # Injection phrases
    "IGNORE PREVIOUS",
    "IGNORE ALL PREVIOUS",
    "DISREGARD",
    "DISREGARD ALL",
    "FORGET",
    "OVERRIDE",
    "NEW INSTRUCTIONS:",
    # Role manipulation
    "YOU ARE NOW",
    "ACT AS",
    "PRETEND TO BE",
    "ROLEPLAY AS",
    # Script injection
    "<script",
    "</script>",
    "javascript:",
    "onerror=",
    "onclick=",
    "onload=",
    # Code execution
    "eval(",
    "__import__",
    "exec(",
)

_CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_EXCESS_NEWLINES = re.compile(r"\n{4,}")


class InputSanitizer:
    """Strips and escapes text that could manipulate a downstream prompt."""

    def __init__(self, patterns: Optional[Sequence[str]] = None) -> None:
        self.patterns = tuple(patterns if patterns is not None else DANGEROUS_PATTERNS)
        # Longest first so "SYSTEM PROMPT:" wins over "SYSTEM" style prefixes
        ordered = sorted(self.patterns, key=len, reverse=True)
        self._pattern_regex = re.compile(
            "|".join(re.escape(p) for p in ordered), re.IGNORECASE
        )

    def sanitize(self, text: Optional[str]) -> Optional[str]:
        """
        Sanitize a single text field.

        Args:
            text: Raw text, possibly None

        Returns:
            Sanitized text; None and "" are returned unchanged
        """
        if not text:
            return text

        sanitized = _CONTROL_CHARACTERS.sub("", text)

        # Escape every match with a leading backslash in a single pass
        escaped = self._pattern_regex.sub(lambda m: "\\" + m.group(0), sanitized)
        if escaped != sanitized:
            logger.debug("Escaped injection patterns in prompt input")
        sanitized = escaped

        sanitized = _EXCESS_NEWLINES.sub("\n\n\n", sanitized)

        return sanitized.strip()

    def contains_injection_patterns(self, text: Optional[str]) -> bool:
        """Check whether text contains any known injection pattern."""
        if not text:
            return False
        return self._pattern_regex.search(text) is not None
