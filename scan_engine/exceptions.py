"""
Exception hierarchy for the scan engine.

Only ScanEngineError subclasses are raised deliberately by scan code.
Provider failures are contained inside the search client and never
reach the orchestrator; they exist here so callers that talk to the
provider directly can catch them.
"""


class ScanEngineError(Exception):
    """Base class for scan engine errors."""


class ProviderError(ScanEngineError):
    """A search provider call failed or timed out."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class TimeoutExceeded(ScanEngineError):
    """The wall-clock deadline of a scan run has passed."""

    def __init__(self, stage: str, elapsed: float, limit: float):
        super().__init__(
            f"Deadline exceeded before {stage}: {elapsed:.1f}s elapsed, limit {limit:.0f}s"
        )
        self.stage = stage
        self.elapsed = elapsed
        self.limit = limit


class PersistenceError(ScanEngineError):
    """A write to the persistent store failed."""


class InvalidTransition(ScanEngineError):
    """A progress event is not legal in the current run state."""


class ProductNotFound(ScanEngineError):
    """The product requested for scanning does not exist."""
