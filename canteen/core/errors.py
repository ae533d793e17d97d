"""
Order Service: Domain errors

Raised by the lifecycle engine and the store; mapped to HTTP responses by the
exception handlers registered in canteen.main.
"""


class OrderError(Exception):
    """Base class. Subclasses pin the HTTP status and a machine-readable code."""

    status_code = 400
    code = "order_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(OrderError):
    """Malformed or missing input, or an unresolvable menu item reference."""

    code = "validation_error"


class InvalidOtp(ValidationError):
    code = "invalid_otp"


class InvalidTransition(OrderError):
    """The order exists but its current state fails the transition guard."""

    code = "invalid_transition"


class Forbidden(OrderError):
    status_code = 403
    code = "forbidden"


class NotFound(OrderError):
    status_code = 404
    code = "not_found"
