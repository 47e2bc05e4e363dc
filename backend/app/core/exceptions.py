"""Domain exceptions raised by services and translated to HTTP by the routers."""

from fastapi import status


class BillingError(Exception):
    """Base class for domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ForbiddenError(BillingError):
    """Authenticated but not allowed."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BillingError):
    """Subscription, order, referral or submission does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BillingError):
    """Illegal state transition (e.g. cancelling a subscription that is not active)."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidSignatureError(BillingError):
    """Gateway signature did not match. Terminal, never retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamFailure(BillingError):
    """Payment gateway or LLM call failed or timed out."""

    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidPayloadError(BillingError):
    """Request body could not be parsed into the expected shape."""

    status_code = status.HTTP_400_BAD_REQUEST
