"""
Error taxonomy for the ingestion pipeline.

Oversold sales are deliberately absent: they are a logged warning carried on
SaleResult, not an exception.
"""


class LedgerError(Exception):
    """Base class for holder ledger errors."""


class EventValidationError(LedgerError):
    """A feed event is malformed or incomplete. Dropped and logged."""

    def __init__(self, message, signature=None):
        super().__init__(message)
        self.signature = signature


class DuplicateTransaction(LedgerError):
    """The signature is already committed. Treated as a no-op."""

    def __init__(self, signature):
        super().__init__(f"transaction {signature} already committed")
        self.signature = signature


class PersistenceError(LedgerError):
    """The store failed mid-unit. The unit was rolled back."""
