"""
Custom exceptions for the Crate client.

Failures are carried inside ``ShipResult`` rather than raised, so callers can
drive retry decisions from a value.
"""

from __future__ import annotations


class CrateOperationalError(Exception):
    """Base operational error for the Crate client."""

    pass


class RetryableError(CrateOperationalError):
    """Temporary errors that should be retried with backoff."""

    pass


class TimeoutExceeded(RetryableError):
    """Request did not complete within the configured timeout."""

    pass


class ConnectionFailed(RetryableError):
    """Connection refused, reset, or otherwise broken at the transport level."""

    pass


class StatusError(RetryableError):
    """The store answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"response code = {status_code}, body = {body}")
        self.status_code = status_code
        self.body = body


def map_transport_error(e: Exception) -> CrateOperationalError:
    import httpx

    if isinstance(e, httpx.TimeoutException):
        return TimeoutExceeded(str(e) or type(e).__name__)
    if isinstance(e, httpx.TransportError):
        return ConnectionFailed(str(e) or type(e).__name__)
    return CrateOperationalError(str(e))
