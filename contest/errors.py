"""Exceptions raised by the contest ledger and its collaborators."""
from typing import Optional


class LedgerServiceError(Exception):
    """Base exception for all ledger errors."""
    pass


class InvalidEntryError(LedgerServiceError):
    """Raised when input is rejected before any store call."""
    pass


class DuplicateEmailError(LedgerServiceError):
    """Raised when an email has already entered the contest."""
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"{email} has already entered the contest")


class DuplicatePaymentError(LedgerServiceError):
    """Raised when a payment confirmation is reused for a second entry."""
    def __init__(self, confirmation_id: str):
        self.confirmation_id = confirmation_id
        super().__init__(f"Payment {confirmation_id} is already linked to an entry")


class EntryNotFoundError(LedgerServiceError):
    """Raised when a lookup that requires an existing entry misses."""
    def __init__(self, key: str, kind: str = "id"):
        self.key = key
        self.kind = kind
        super().__init__(f"No contest entry with {kind} {key}")


class StoreUnavailableError(LedgerServiceError):
    """Raised when the entry store could not be reached or timed out."""
    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class LedgerInternalError(LedgerServiceError):
    """Raised on unexpected failures the caller cannot act on."""
    pass


class DuplicateKeyError(Exception):
    """Raised by a store when an insert violates a unique field."""
    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Duplicate value for unique field {field}")


class PaymentGatewayError(Exception):
    """Raised when the payment processor rejects or fails a request."""
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
