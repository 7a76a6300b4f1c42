"""
Error taxonomy for generation, credits and regeneration limits.

User-facing errors (``InsufficientCredits``, ``RegenerationLimitReached``,
``RateLimitExceeded``) are raised before any credit is consumed. Everything
raised after a credit has been consumed goes through the orchestrator's
refund path first.
"""

from typing import Optional


class AdventureForgeError(Exception):
    """Base class for all errors raised by this package."""


class InsufficientCredits(AdventureForgeError):
    """Raised when a user cannot pay for an operation."""
    def __init__(self, user_id: str, required: int, available: Optional[int]):
        shown = "unknown" if available is None else available
        super().__init__(
            f"Insufficient credits: {required} required, {shown} available"
        )
        self.user_id = user_id
        self.required = required
        self.available = available


class RegenerationLimitReached(AdventureForgeError):
    """Raised when an adventure has used its whole regeneration budget."""
    def __init__(self, limit_type: str, used: int, limit: int, message: str):
        super().__init__(message)
        self.limit_type = limit_type
        self.used = used
        self.limit = limit


class RateLimitExceeded(AdventureForgeError):
    """Raised when a user sends too many requests of one kind in a window."""
    def __init__(self, operation: str, retry_after: int):
        super().__init__(
            f"Rate limit exceeded for {operation}. Try again in {retry_after} seconds."
        )
        self.operation = operation
        self.retry_after = retry_after


class AdventureNotFound(AdventureForgeError):
    """Raised when an adventure has no regeneration counters."""
    def __init__(self, adventure_id: str):
        super().__init__(f"Adventure not found: {adventure_id}")
        self.adventure_id = adventure_id


class StorageError(AdventureForgeError):
    """Unexpected failure of the backing store."""


class LedgerWriteConflict(StorageError):
    """A concurrent writer held the ledger; safe to retry once."""


class LedgerStorageError(StorageError):
    """The ledger could not be read or written."""


class CacheStorageError(StorageError):
    """The response cache could not be read or written."""


class CounterStorageError(StorageError):
    """The regeneration counters could not be read or written."""


class UpstreamGenerationError(AdventureForgeError):
    """The LLM or content-retrieval collaborator failed.

    ``reason`` is one of ``rate_limit``, ``auth``, ``timeout``,
    ``connection`` or ``upstream``.
    """
    def __init__(self, message: str, reason: str = "upstream", status_code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class MalformedResponseError(AdventureForgeError):
    """The LLM returned content that does not decode into the expected result."""
