"""Domain-specific exceptions"""

from decimal import Decimal


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class SettlementValidationError(DomainException):
    """Checkout rejected before any write was issued"""

    pass


class InvalidCartError(SettlementValidationError):
    """Cart is empty or contains malformed lines"""

    pass


class InsufficientStockError(SettlementValidationError):
    """An inventory line requests more units than are on hand"""

    def __init__(self, item_id: int, available: int, requested: int, name: str | None = None):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        label = name or f"item {item_id}"
        super().__init__(f"Insufficient stock for {label}. Available: {available}, Requested: {requested}")


class InventoryItemNotFoundError(SettlementValidationError):
    """Inventory item referenced by the cart no longer exists"""

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Inventory item {item_id} not found")


class NoActiveShiftError(SettlementValidationError):
    """Cash settlement requires an open shift"""

    pass


class SplitMismatchError(SettlementValidationError):
    """Split tender amounts do not add up to the final total"""

    def __init__(self, expected: Decimal, actual: Decimal):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Split payment amounts ({actual}) do not match the final total ({expected})")


class GiftCardNotFoundError(SettlementValidationError):
    """Gift card does not exist"""

    pass


class GiftCardInactiveError(SettlementValidationError):
    """Gift card exists but is deactivated"""

    pass


class InsufficientGiftCardBalanceError(SettlementValidationError):
    """Redemption exceeds the ledger-resolved balance"""

    def __init__(self, available: Decimal, required: Decimal):
        self.available = available
        self.required = required
        super().__init__(f"Insufficient gift card balance. Available: {available:.2f}, Required: {required:.2f}")


class DuplicateSubmissionError(SettlementValidationError):
    """Redemption looks like a resubmission of one already posted"""

    pass


class LoyaltyProgramUnavailableError(SettlementValidationError):
    """Points redemption requested with no active loyalty program"""

    pass


class GatewayError(DomainException):
    """Payment gateway or card terminal failed or declined"""

    pass


class NoReaderAvailableError(GatewayError):
    """No online card reader could be resolved for the register"""

    pass


class ConcurrencyError(DomainException):
    """Balance dropped between validation and the first write"""

    pass


class PartialWriteError(DomainException):
    """A step after the transaction row was committed failed"""

    def __init__(self, step: str, transaction_id: int | None, message: str):
        self.step = step
        self.transaction_id = transaction_id
        super().__init__(message)


class LoyaltyRedemptionError(PartialWriteError):
    """Points redemption could not be posted for a sale that claimed the discount"""

    pass


class InvalidStateTransition(DomainException):
    """Settlement state machine was driven out of order"""

    pass


class PendingTransactionNotFound(DomainException):
    """Pending card transaction expired or was never created"""

    pass
