"""Exception hierarchy for lending operations."""


class LendingError(Exception):
    """Base exception for all lending core errors."""


class ValidationError(LendingError, ValueError):
    """Raised for malformed input: non-positive amounts, unknown currencies, bad dates."""


class CurrencyMismatchError(LendingError, ValueError):
    """Raised when two amounts, or a payment and its loan, use different currencies."""


class AlreadySettledError(LendingError):
    """Raised when a payment arrives for a loan with nothing left outstanding."""


class NotFoundError(LendingError):
    """Raised when a referenced record does not exist."""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan id is unknown."""


class DebitCardNotFoundError(NotFoundError):
    """Raised when a debit card id is unknown or the card was deleted."""


class DebitCardTransactionNotFoundError(NotFoundError):
    """Raised when a debit card transaction id is unknown."""


class DebitCardInUseError(LendingError):
    """Raised when deleting a debit card that already has transactions."""
