"""
Typed errors raised by the quotation engine.

Every error carries a machine-readable ``code`` and the structured data the
caller needs to retry or correct its input. Routers map them to HTTP status
codes; nothing below the router layer deals with HTTP.

    QuotationEngineError
    +-- ValidationError        bad quantity, discount out of range, ...
    +-- PermissionDenied       role may not perform the action
    +-- NotFound               unknown quotation / part / unit / invoice
    +-- StateConflict          illegal status transition
    +-- InsufficientStock      fewer available units than requested
    +-- ReservationContention  row locks not acquired in time (retryable)
"""


class QuotationEngineError(Exception):
    code: str = "QUOTATION_ENGINE_ERROR"
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(QuotationEngineError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str = None, line_index: int = None):
        self.field = field
        self.line_index = line_index
        super().__init__(message)


class PermissionDenied(QuotationEngineError):
    code = "PERMISSION_DENIED"

    def __init__(self, action: str, role: str):
        self.action = action
        self.role = role
        super().__init__(f"Role '{role}' is not allowed to {action}")


class NotFound(QuotationEngineError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class StateConflict(QuotationEngineError):
    code = "STATE_CONFLICT"

    def __init__(self, current, requested=None, detail: str = None):
        self.current = getattr(current, "value", current)
        self.requested = getattr(requested, "value", requested)
        if requested is None:
            message = f"Quotation is '{self.current}'"
        else:
            message = f"Cannot move quotation from '{self.current}' to '{self.requested}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InsufficientStock(QuotationEngineError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, part_id: int, requested: int, available: int):
        self.part_id = part_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for part {part_id}. Available: {available}, Requested: {requested}"
        )


class ReservationContention(QuotationEngineError):
    code = "RESERVATION_CONTENTION"
    retryable = True

    def __init__(self, part_id: int = None, detail: str = None):
        self.part_id = part_id
        message = "Inventory is locked by another request"
        if part_id is not None:
            message = f"Inventory for part {part_id} is locked by another request"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
