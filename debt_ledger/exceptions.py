"""Exception hierarchy for the debt ledger.

All ledger errors derive from ``ValueError`` so callers that treat bad
input generically keep working.
"""


class LedgerError(ValueError):
    """Base exception for all ledger errors."""


class NotFoundError(LedgerError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class LedgerValidationError(LedgerError):
    """Raised when a request is rejected; nothing has been committed."""


class InsufficientCreditError(LedgerValidationError):
    """Raised when a draw exceeds a customer's available credit."""


class CreditLimitExceededError(LedgerValidationError):
    """Raised when a card transaction would push the balance over the limit."""


class AllocationExceedsPaymentError(LedgerValidationError):
    """Raised when allocations add up to more than the payment amount."""


class PolicyInUseError(LedgerValidationError):
    """Raised when deleting an interest policy that loans still reference."""


class InvalidStateError(LedgerValidationError):
    """Raised when an entity is in the wrong state for the operation."""
