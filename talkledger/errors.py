class LedgerError(Exception):
    """Base class for errors surfaced by the intent pipeline."""


class UnparseableInput(LedgerError):
    """No amount could be determined by either parser."""


class ProviderUnavailable(LedgerError):
    """Every candidate model / provider call failed."""


class ValidationFailure(LedgerError):
    """A record failed the transaction invariants."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class StoreFailure(LedgerError):
    """The ledger store could not complete the operation."""
