"""Error taxonomy for the bridge.

``VerifyError`` is caller-facing and maps to an HTTP rejection. Everything
else lives on the delivery path and is retried internally before a task is
dead-lettered.
"""

from __future__ import annotations


class VerifyError(Exception):
    """Inbound webhook rejected."""

    status_code = 400


class Unauthenticated(VerifyError):
    status_code = 401


class Malformed(VerifyError):
    status_code = 400


class StoreError(Exception):
    """Dedup, binding or database store unavailable. Always retryable."""

    retryable = True


class ResolveError(Exception):
    """A thread could not be resolved for an incident."""

    retryable = True


class RemoteCreateFailed(ResolveError):
    def __init__(self, incident_key: str, cause: Exception | None = None) -> None:
        super().__init__(f"thread creation failed for {incident_key}: {cause}")
        self.incident_key = incident_key
        self.cause = cause


class SinkError(Exception):
    """Twist API call failed."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimited(SinkError):
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class ServerError(SinkError):
    retryable = True


class ClientError(SinkError):
    retryable = False


class NetworkError(SinkError):
    retryable = True


class PipelineClosed(RuntimeError):
    """Raised by ``enqueue`` once shutdown has begun."""


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))
