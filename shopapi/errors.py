from typing import Iterable, List, Optional, Union


class ApiError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {"message": self.message}


class ValidationFailed(ApiError):
    """Collects every failing field and reports them as one joined message."""

    status_code = 400
    default_message = "Invalid data"

    def __init__(self, errors: Union[str, Iterable[str], None] = None):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = [str(error) for error in (errors or []) if error]
        super().__init__(", ".join(self.errors) or None)


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Not authorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class RefreshExpired(Forbidden):
    default_message = "Refresh token expired"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class InternalError(ApiError):
    status_code = 500
    default_message = "Server error"


class GatewayFailure(ApiError):
    status_code = 500
    default_message = "Payment gateway failure"


class GatewayAuthFailed(GatewayFailure):
    default_message = "Authentication failed"


class GatewayOrderFailed(GatewayFailure):
    default_message = "Order creation failed"


class GatewayKeyFailed(GatewayFailure):
    default_message = "Payment key generation failed"


class InvalidBillingData(GatewayFailure):
    status_code = 400
    default_message = "Street and city are required in billing data"


def require_json_object(payload) -> dict:
    """Return a JSON request body as a dict; an absent body counts as empty."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid request body")
    return payload
