"""Exception types that cross the core's public boundary."""


class RagError(Exception):
    """Base class for errors raised by the content-to-answer core."""


class ContractViolation(RagError, ValueError):
    """Caller supplied invalid input (empty text, unknown tenant, ...). Never retried."""


class ExternalServiceError(RagError):
    """An embedding, completion or cache-update call still failed after all retries."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class CrawlSetupError(RagError):
    """A crawl job could not start (no domains configured, target unreachable)."""
