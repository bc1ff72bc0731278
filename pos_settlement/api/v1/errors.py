"""Domain exception to HTTP error mapping shared by the v1 routers"""

from fastapi import HTTPException

from pos_settlement.domain.exceptions import (
    ConcurrencyError,
    DomainException,
    DuplicateSubmissionError,
    GatewayError,
    GiftCardNotFoundError,
    InvalidStateTransition,
    NoReaderAvailableError,
    PartialWriteError,
    PendingTransactionNotFound,
    SettlementValidationError,
)


def http_error_for(error: DomainException) -> HTTPException:
    """
    Validation and gateway errors leave the cart untouched and are safe to
    retry. A fatal partial write carries the transaction id so the sale can
    be followed up.
    """
    if isinstance(error, DuplicateSubmissionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, GiftCardNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, SettlementValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NoReaderAvailableError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, GatewayError):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, (ConcurrencyError, InvalidStateTransition)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, PendingTransactionNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PartialWriteError):
        return HTTPException(
            status_code=500,
            detail={"message": str(error), "step": error.step, "transaction_id": error.transaction_id},
        )
    return HTTPException(status_code=400, detail=str(error))
