"""Exception taxonomy for uiforge.

Validation failures are not exceptions: they travel as
``ValidationResult`` values and are recovered by the refinement loop.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for all uiforge errors."""


class RequestRejected(ForgeError):
    """The request was refused before any stream was opened.

    Raised for unknown models, unknown or disabled providers and
    refinement requests that have no accepted artifact to work on.
    Never retried.
    """


class LineageBusy(RequestRejected):
    """A generation is already in flight for this artifact lineage."""


class TransportFailure(ForgeError):
    """The backend call failed (connect, auth, HTTP status, protocol)."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{self.provider}: {base} (status {self.status_code})"
        if self.provider:
            return f"{self.provider}: {base}"
        return base


class AnalyticsFailure(ForgeError):
    """Token analytics could not be computed. Never fatal to a generation."""
