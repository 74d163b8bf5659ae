"""Dashboard exception hierarchy.

Each failure mode of the metrics pipeline has its own type so the HTTP layer
can decide between degrading (drop a point, zero a series) and rejecting.
"""


class DashboardError(Exception):
    """Base exception for dashboard pipeline failures."""

    status_code = 500


class MalformedDateError(DashboardError, ValueError):
    """Raised when a single timestamp cannot be parsed."""

    status_code = 400


class InvalidRequestRangeError(DashboardError):
    """Raised when the request-level from/to bounds are unusable."""

    status_code = 400


class InvalidRequestError(DashboardError):
    """Raised for structurally invalid request parameters or bodies."""

    status_code = 400


class SourceUnavailableError(DashboardError):
    """Raised when an upstream analytics source cannot be read."""

    status_code = 502

    def __init__(self, source: str, detail: str, retryable: bool = True) -> None:
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail
        self.retryable = retryable


class AllSourcesUnavailableError(DashboardError):
    """Raised when every requested upstream source failed."""

    status_code = 502
