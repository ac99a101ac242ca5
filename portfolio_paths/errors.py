"""Failure taxonomy for calls to the remote compute service."""

from typing import Optional


class ComputeServiceError(Exception):
    """A call to the simulation or allocation service did not produce a result."""


class TransportError(ComputeServiceError):
    """Network unreachable, timeout, or circuit breaker open."""


class ServiceError(ComputeServiceError):
    """Non-success status or a service-reported error message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(ComputeServiceError):
    """Response body does not parse to the expected shape."""


class PreconditionSkipped(Exception):
    """Operation not attempted because its required input was absent.

    Not a failure of a call: callers treat it as a guarded no-op.
    """
