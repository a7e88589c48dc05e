# backoffice/exceptions.py
"""
Error taxonomy of the ledger core.

Every error carries the HTTP status the JSON layer answers with, so views
never need to know which operation raised it.
"""


class LedgerError(Exception):
    status_code = 500

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class LedgerValidationError(LedgerError):
    """Bad input: missing field, amount over the available balance, mismatch."""

    status_code = 400


class StateConflictError(LedgerError):
    """The stored state no longer allows the operation (stale or repeated)."""

    status_code = 409


class RecordNotFoundError(LedgerError):
    status_code = 404
