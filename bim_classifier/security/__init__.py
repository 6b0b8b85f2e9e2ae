"""
Prompt input sanitization.
"""

from .sanitizer import DANGEROUS_PATTERNS, InputSanitizer

__all__ = ["DANGEROUS_PATTERNS", "InputSanitizer"]
