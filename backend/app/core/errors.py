"""Error taxonomy shared by the search and registration paths.

``NoResolvedMedicines`` and ``NoAvailability`` are not exceptions: they are
reported as :class:`~app.services.search.SearchStatus` values on the search
outcome.
"""
from __future__ import annotations


class AptekaError(Exception):
    """Base class for every error raised by the apteka services."""


class InputTooLarge(AptekaError):
    """Raw query exceeds the duration, length or token bound."""

    def __init__(self, message: str, *, limit: float, actual: float) -> None:
        super().__init__(message)
        self.limit = limit
        self.actual = actual


class TranscriptionFailure(AptekaError):
    """The speech-to-text collaborator could not produce text."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class PersistenceFailure(AptekaError):
    """Transaction-level failure (connectivity, constraint violation)."""


class ValidationFailure(AptekaError):
    """Registration payload failed schema or field checks."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class DeliveryFailure(AptekaError):
    """The messaging collaborator could not deliver one message."""
