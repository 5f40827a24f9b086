"""Error kinds raised by the ledger core.

The HTTP layer maps each kind to a status code; the core never returns
sentinel values for failures.
"""


class LedgerError(Exception):
    """Base class for ledger errors."""


class ValidationError(LedgerError, ValueError):
    """Malformed input reached the core."""


class FormatError(ValidationError):
    """A money amount could not be parsed."""


class CurrencyMismatch(ValidationError):
    """A mutation's currency differs from the account's and the policy rejects it."""


class NotFound(LedgerError, LookupError):
    """The record does not exist or belongs to another client."""


class Conflict(LedgerError):
    """The record would duplicate an existing one."""


class InsufficientBalance(LedgerError):
    def __init__(self, account_id: int, balance, amount) -> None:
        super().__init__("Insufficient account balance.")
        self.account_id = account_id
        self.balance = balance
        self.amount = amount


class StorageError(LedgerError):
    """The persistence layer failed."""


class ConcurrencyConflict(StorageError):
    """A row changed between read and write; the unit was rolled back."""


class Unauthorized(LedgerError):
    """The request carries no client identity."""
