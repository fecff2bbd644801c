"""
Error taxonomy
--------------
Every failure the service reports carries a stable machine-readable `code`,
an HTTP `status_code`, a `kind` tag callers can branch on without isinstance
chains, and a `retryable` hint:

- client errors (bad transition, malformed webhook, mismatched ids): 4xx, not retryable
- partner errors (timeout, unavailable, structured rejection): 502
- invariant violations: 500, fatal for the request
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class ErrorKind:
    INVALID_TRANSITION = "invalid_transition"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    EXTERNAL_API = "external_api"
    BAD_GATEWAY = "bad_gateway"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    BAD_REQUEST = "bad_request"
    INVARIANT = "invariant"


class OnboardingError(Exception):
    kind: str = ErrorKind.BAD_REQUEST
    status_code: int = 400
    default_code: str = "BAD_REQUEST"
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            err["details"] = self.details
        return {"success": False, "error": err}


class BadRequestError(OnboardingError):
    pass


class InvalidTransitionError(OnboardingError):
    kind = ErrorKind.INVALID_TRANSITION
    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class ApplicationIdMismatchError(BadRequestError):
    default_code = "APPLICATION_ID_MISMATCH"


class UnauthorizedError(OnboardingError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(OnboardingError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(OnboardingError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(OnboardingError):
    kind = ErrorKind.CONFLICT
    status_code = 409
    default_code = "CONFLICT"


class ValidationError(OnboardingError):
    kind = ErrorKind.VALIDATION
    status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, items: Optional[List[Dict[str, str]]] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.items = items or []

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        if self.items:
            out["error"]["fields"] = self.items
        return out


class ExternalApiError(OnboardingError):
    """The partner answered with a structured rejection. Needs operator remediation."""
    kind = ErrorKind.EXTERNAL_API
    status_code = 502
    default_code = "EXTERNAL_API_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, partner_status: int = 0,
                 partner_message: Optional[str] = None):
        super().__init__(message, code=code)
        self.partner_status = partner_status
        # Logged for operators, never rendered to callers
        self.partner_message = partner_message


class BadGatewayError(OnboardingError):
    """Transport-level partner failure; safe to retry with backoff."""
    kind = ErrorKind.BAD_GATEWAY
    status_code = 502
    default_code = "BAD_GATEWAY"
    retryable = True

    def __init__(self, message: str, code: Optional[str] = None, outcome_unknown: bool = False):
        super().__init__(message, code=code)
        # True when the request may have reached the partner (timeouts, dropped responses)
        self.outcome_unknown = outcome_unknown


class InvariantViolationError(OnboardingError):
    kind = ErrorKind.INVARIANT
    status_code = 500
    default_code = "INVARIANT_VIOLATION"
