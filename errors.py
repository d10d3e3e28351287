"""Exception types shared by the ingestors, engines and store."""


class MonitorError(Exception):
    """Base class for monitor errors."""


class TransientUpstreamError(MonitorError):
    """An upstream fetch failed; callers fall back to their last good cache."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class PersistenceError(MonitorError):
    """A durable write or read failed; in-memory state stays authoritative."""


class ValidationError(MonitorError):
    """Invalid input at a mutation boundary. Nothing was changed."""
