"""
Error taxonomy for the forwarder.

Categories:
- LabelError          - a routing label could not be parsed (fatal for a fetch)
- InvalidSpecError    - the query-spec payload is not a list of spec objects
- RetrievalError      - the monitoring provider failed while paging results
- MackerelError       - the ingestion API answered with a non-2xx status
- SerializationError  - a batch could not be encoded as JSON (never retried)
- ApiKeyNotFoundError - no API key source is configured
- DeadlineExceeded    - the invocation ran out of time
"""

from typing import Optional


class ForwarderError(Exception):
    """Base class for all forwarder errors."""


class LabelError(ForwarderError, ValueError):
    """Invalid label format."""

    def __init__(self, reason: str, label: str):
        super().__init__(f"invalid label format, {reason}: {label}")
        self.reason = reason
        self.label = label


class InvalidSpecError(ForwarderError, ValueError):
    """The metric spec payload could not be decoded."""


class RetrievalError(ForwarderError):
    """Fetching metric data from the monitoring provider failed."""


class SerializationError(ForwarderError):
    """A metric batch could not be serialized."""


class ApiKeyNotFoundError(ForwarderError):
    """No Mackerel API key source is configured."""


class DeadlineExceeded(ForwarderError):
    """The invocation deadline expired before the work finished."""


class MackerelError(ForwarderError):
    """An error response from the Mackerel API."""

    def __init__(self, status_code: int, message: str = "", path: Optional[str] = None):
        super().__init__(status_code, message)
        self.status_code = status_code
        self.message = message
        self.path = path

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429

    def __str__(self) -> str:
        return f"status: {self.status_code}, {self.message}"
