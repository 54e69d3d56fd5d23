"""Memoria exception hierarchy.

All memoria-specific exceptions inherit from MemoriaError so callers can
catch one base class and still inspect ``retryable`` for transient faults.
"""


class MemoriaError(Exception):
    """Base exception for all memoria errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(MemoriaError):
    """Error communicating with the language model provider."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class EmbeddingError(MemoriaError):
    """Embedding backend unavailable or returned an unusable vector."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class ExtractionError(MemoriaError):
    """Structured extraction failed or produced output that does not match its schema."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class SummarizationError(MemoriaError):
    """Summarization gave up after exhausting its attempts."""


class StoreError(MemoriaError):
    """Persistent store unavailable or a write was rejected."""


class ConfigError(MemoriaError):
    """Invalid or missing configuration."""
