"""Error taxonomy shared by the dashboard components.

Fetch failures are always contained at the component that issued them: the
KPI orchestrator turns them into ``failed`` results, chart loaders into an
inline error (or a synthetic placeholder), the drill-down navigator into a
recorded error. Only the HTTP layer converts anything into a response status.
"""

from __future__ import annotations

from typing import Any, Optional

DEFAULT_FAILURE_MESSAGE = "Failed to load"


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""


class ValidationGap(DashboardError):
    """Required filter fields are missing; the fetch is suppressed.

    Never shown to the user as an error. Components catch it and simply skip
    the work.
    """


class HierarchyViolation(DashboardError, ValueError):
    """A filter level was set while its parent level is unset."""


class NetworkFailure(DashboardError):
    """Timeout, connection failure or an HTTP error status from upstream."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Any = None,
    ):
        self.status_code = status_code
        self.detail = detail
        super().__init__(_human_message(detail, message))

    @property
    def message(self) -> str:
        return str(self)


class MalformedResponse(NetworkFailure):
    """Upstream answered, but not in the expected shape."""


class NotFound(NetworkFailure):
    """Upstream no longer knows the requested scope (HTTP 404).

    Callers re-initialise instead of surfacing this to the user.
    """


def _human_message(detail: Any, message: Optional[str]) -> str:
    # Prefer the backend's own explanation, then the transport message.
    if isinstance(detail, str) and detail.strip():
        return detail.strip()
    if message and message.strip():
        return message.strip()
    return DEFAULT_FAILURE_MESSAGE


__all__ = [
    "DEFAULT_FAILURE_MESSAGE",
    "DashboardError",
    "HierarchyViolation",
    "MalformedResponse",
    "NetworkFailure",
    "NotFound",
    "ValidationGap",
]
