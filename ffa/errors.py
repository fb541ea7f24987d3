"""Error types shared across the league engine.

Provider failures are recoverable (callers fall back to last-known-good
data), identifier problems exclude a single entry/player, and validation
failures are rejected synchronously with a specific message.
"""

from typing import Optional


class FFAError(Exception):
    """Base class for league engine errors."""


class ProviderUnavailable(FFAError):
    """Raised when the live feed is unreachable or keeps erroring."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        self.endpoint = endpoint
        super().__init__(message)


class RateLimited(ProviderUnavailable):
    """Raised when the provider throttles us (HTTP 429) past our retries."""

    def __init__(self, message: str, retry_after: Optional[float] = None, endpoint: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, endpoint=endpoint)


class IdentifierMismatch(FFAError):
    """Raised when an entry/player reference cannot be resolved."""

    def __init__(self, namespace: str, value: object, detail: str = ""):
        self.namespace = namespace
        self.value = value
        msg = f"Unknown {namespace} identifier: {value!r}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class ValidationFailure(FFAError):
    """Raised for malformed input (e.g. invalid captain selection)."""


class IncompleteData(FFAError):
    """Raised only when a caller insists on finalizing unfinished periods.

    Normal control flow reports incompleteness as a status value instead.
    """

    def __init__(self, missing_periods: list[int]):
        self.missing_periods = missing_periods
        super().__init__(f"Periods not finalized: {missing_periods}")
