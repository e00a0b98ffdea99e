from fastapi import status


class BudgetTrackerError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(BudgetTrackerError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidAmount(InvalidRequest):
    default_message = "Valid amount is required"


class Conflict(BudgetTrackerError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class NotFound(BudgetTrackerError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class SignatureMismatch(BudgetTrackerError):
    # 400 rather than 401: clients of the checkout flow rely on it.
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment verification failed - Invalid signature"


class GatewayUnavailable(BudgetTrackerError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment gateway unavailable"


class InternalError(BudgetTrackerError):
    pass
