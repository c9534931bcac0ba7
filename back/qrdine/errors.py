"""Service-level errors.

Core operations raise these; the HTTP layer maps ``status_code`` onto the
response and never needs to know which module raised.
"""


class ServiceError(Exception):
    status_code = 400
    code = "service_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(ServiceError):
    """Entity absent, or not owned by the tenant that asked for it."""
    status_code = 404
    code = "not_found"


class InvalidTransition(ServiceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change status from {_value(current)} to {_value(requested)}"
        )


class InvalidSignature(ServiceError):
    status_code = 400
    code = "invalid_signature"


class PaymentNotConfigured(ServiceError):
    status_code = 400
    code = "payment_not_configured"


class PaymentGatewayError(ServiceError):
    """The external gateway rejected a call or could not be reached."""
    status_code = 502
    code = "payment_gateway_error"


class ValidationError(ServiceError):
    status_code = 422
    code = "validation_error"


def _value(status) -> str:
    return getattr(status, "value", str(status))
