"""Exception hierarchy shared by the services and the HTTP layer.

Messages are written for the end user: the API returns them verbatim.
"""

from __future__ import annotations


class CoreflowError(Exception):
    """Base class for every error raised on purpose by this package."""

    code = "COREFLOW_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class ValidationError(CoreflowError):
    code = "VALIDATION_ERROR"
    http_status = 400


class TransitionRejected(ValidationError):
    """A stage transition refused by the guard."""

    code = "TRANSITION_REJECTED"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidOfferState(ValidationError):
    code = "INVALID_OFFER_STATE"


class NotFoundError(CoreflowError):
    code = "NOT_FOUND"
    http_status = 404


class TokenExpiredError(CoreflowError):
    code = "TOKEN_EXPIRED"
    http_status = 410


class AlreadyRespondedError(CoreflowError):
    """The offer behind a token has already been accepted or declined."""

    code = "ALREADY_RESPONDED"
    http_status = 409


class DeliveryError(CoreflowError):
    code = "DELIVERY_FAILED"
    http_status = 502
