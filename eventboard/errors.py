"""Exceptions raised by eventboard's domain helpers.

The API layer maps each class onto an HTTP status via ``status_code``; the
helpers themselves never import FastAPI.
"""

from __future__ import annotations


class EventboardError(Exception):
    status_code = 400
    error = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(EventboardError):
    """Missing or malformed input, caught before any write."""

    status_code = 400
    error = "ValidationError"


class AuthenticationRequired(EventboardError):
    status_code = 401
    error = "AuthenticationRequired"

    def __init__(self, message: str = "Please log in to continue", *, login_url=None):
        super().__init__(message)
        self.login_url = login_url

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.login_url:
            payload["login_url"] = self.login_url
        return payload


class PermissionDenied(EventboardError):
    status_code = 403
    error = "PermissionDenied"


class NotFound(EventboardError):
    status_code = 404
    error = "NotFound"


class BusinessRuleError(EventboardError):
    status_code = 409
    error = "BusinessRuleViolation"


class CapacityExceeded(BusinessRuleError):
    error = "EventFull"

    def __init__(
        self,
        message: str = (
            'Sorry, this event is at full capacity for "Going" RSVPs. '
            'Try "Interested" instead!'
        ),
    ):
        super().__init__(message)


class CapacityBelowGoingCount(BusinessRuleError):
    error = "CapacityBelowGoingCount"


class InvalidTransition(BusinessRuleError):
    error = "InvalidTransition"


class StaleState(BusinessRuleError):
    """A conditional update matched no row; the record changed underneath us."""

    error = "StaleState"


class CancellationAlreadyRequested(BusinessRuleError):
    error = "CancellationAlreadyRequested"
