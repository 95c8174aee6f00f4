from fastapi import HTTPException, status

from exceptions import (
    InsufficientStock, NotFound, PermissionDenied, QuotationEngineError,
    ReservationContention, StateConflict, ValidationError,
)

STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    StateConflict: status.HTTP_409_CONFLICT,
    InsufficientStock: status.HTTP_409_CONFLICT,
    ReservationContention: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Seconds a client should wait before retrying a contended reservation
RETRY_AFTER_SECONDS = "1"


def to_http_exception(error: QuotationEngineError) -> HTTPException:
    """Translate an engine error into the HTTPException the routers raise."""
    status_code = STATUS_CODES.get(type(error), status.HTTP_400_BAD_REQUEST)
    detail = {"code": error.code, "message": error.message}
    if isinstance(error, ValidationError):
        detail.update(field=error.field, line_index=error.line_index)
    elif isinstance(error, InsufficientStock):
        detail.update(part_id=error.part_id, requested=error.requested, available=error.available)
    elif isinstance(error, StateConflict):
        detail.update(current=error.current, requested=error.requested)

    headers = None
    if error.retryable:
        headers = {"Retry-After": RETRY_AFTER_SECONDS}
    return HTTPException(status_code=status_code, detail=detail, headers=headers)
