"""Failure taxonomy for the inventory ledger.

Every exception raised by the ledger, the status engine or the analytics
layer derives from :class:`LedgerError`; ``app.main`` maps each one onto an
HTTP response. None of them is retried automatically.
"""


class LedgerError(Exception):
    """Base class for ledger failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Input has the wrong shape (empty name, malformed month key, ...)."""


class InvalidDate(ValidationError):
    """A date could not be parsed into a calendar day."""


class NotFound(LedgerError):
    """A batch, category, location or tenant is missing or out of scope."""


class ConflictOrTransient(LedgerError):
    """The store rejected the write (contention, integrity, lost connection).

    Safe to retry with backoff at the caller's discretion.
    """


class BackfillPartialFailure(LedgerError):
    """A rename/re-unit was committed but rewriting historical events failed.

    ``batch`` is the already-updated batch, so callers can confirm the edit
    while warning that history may be inconsistent.
    """

    def __init__(self, message: str, batch=None, cause: Exception = None):
        super().__init__(message)
        self.batch = batch
        self.cause = cause
