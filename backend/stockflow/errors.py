# Overview: Typed failures raised by the workflow and ledger services.

"""
Error taxonomy shared by every service.

Services raise these; routes translate them into JSON responses using
``http_status`` and ``code``. A raised error always means the unit of work
was rolled back.
"""


class StockFlowError(Exception):
    """Base class for expected, typed failures."""
    http_status = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(StockFlowError):
    """Missing or inactive reference, or malformed input."""
    http_status = 400
    code = "validation_error"


class RangeError(StockFlowError):
    """Quantity or price outside its allowed bound."""
    http_status = 400
    code = "range_error"


class StateError(StockFlowError):
    """Operation is illegal for the current order or item state."""
    http_status = 409
    code = "state_error"


class AuthorizationError(StockFlowError):
    """Missing, inactive or ineligible actor."""
    http_status = 403
    code = "authorization_error"


class NotFoundError(StockFlowError):
    """Order or item absent or inactive."""
    http_status = 404
    code = "not_found"
