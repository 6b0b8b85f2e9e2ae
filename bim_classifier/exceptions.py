"""
Custom exceptions for the BIM classifier library.
"""

from typing import Any, Dict, List, Optional


class BimClassifierError(Exception):
    """Base exception for all BIM classifier errors."""

    pass


class ConfigurationError(BimClassifierError):
    """Raised when configuration parameters are invalid."""

    def __init__(self, message: str, parameter: str = None, suggested_fix: str = None):
        self.parameter = parameter
        self.suggested_fix = suggested_fix

        full_message = f"Configuration Error: {message}"
        if parameter:
            full_message += f" (Parameter: {parameter})"
        if suggested_fix:
            full_message += f" Suggested fix: {suggested_fix}"

        super().__init__(full_message)


class ValidationError(BimClassifierError):
    """Raised when a batch request or prompt input is malformed."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        self.field = field
        self.value = value

        full_message = f"Validation Error: {message}"
        if field:
            full_message += f" (Field: {field})"
        if value is not None:
            full_message += f" (Value: {value})"

        super().__init__(full_message)


class NotFoundError(BimClassifierError):
    """Raised when requested element ids resolve to nothing."""

    def __init__(self, message: str, element_ids: Optional[List[int]] = None):
        self.element_ids = list(element_ids or [])

        full_message = f"Not Found: {message}"
        if self.element_ids:
            preview = ", ".join(str(i) for i in self.element_ids[:10])
            if len(self.element_ids) > 10:
                preview += ", ..."
            full_message += f" (Element IDs: {preview})"

        super().__init__(full_message)


class ClassifierError(BimClassifierError):
    """Raised when an LLM call exhausts retries or its output fails validation."""

    def __init__(
        self,
        message: str,
        fingerprint: str = None,
        retry_count: int = 0,
        reason: str = None,
    ):
        self.fingerprint = fingerprint
        self.retry_count = retry_count
        self.reason = reason

        full_message = f"Classifier Error: {message}"
        if fingerprint:
            full_message += f" (Fingerprint: {fingerprint})"
        if reason:
            full_message += f" (Reason: {reason})"
        if retry_count > 0:
            full_message += f" (Retries: {retry_count})"

        super().__init__(full_message)


class CacheDegraded(BimClassifierError):
    """Raised by cache backends when the backing store is unreachable.

    Never propagates past ClassificationCache; it becomes a miss there.
    """

    def __init__(self, message: str, operation: str = None):
        self.operation = operation

        full_message = f"Cache Degraded: {message}"
        if operation:
            full_message += f" (Operation: {operation})"

        super().__init__(full_message)


class ElementStoreError(BimClassifierError):
    """Raised when the element store cannot be queried."""

    def __init__(self, message: str, operation: str = None, table: str = None):
        self.operation = operation
        self.table = table

        full_message = f"Element Store Error: {message}"
        if operation:
            full_message += f" (Operation: {operation})"
        if table:
            full_message += f" (Table: {table})"

        super().__init__(full_message)


class PartialBatchFailure(BimClassifierError):
    """Raised on request when some patterns of a completed batch failed."""

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None):
        self.failures = dict(failures or {})

        full_message = f"Partial Batch Failure: {message}"
        if self.failures:
            full_message += f" (Failed patterns: {len(self.failures)})"

        super().__init__(full_message)
