import pytest

from onboarding.errors import (
    ApplicationIdMismatchError,
    BadGatewayError,
    ConflictError,
    ErrorKind,
    ExternalApiError,
    ForbiddenError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)


@pytest.mark.parametrize("err,kind,status,retryable", [
    (InvalidTransitionError("draft", "approved"), ErrorKind.INVALID_TRANSITION, 400, False),
    (ApplicationIdMismatchError("Application ID mismatch"), ErrorKind.BAD_REQUEST, 400, False),
    (UnauthorizedError("no"), ErrorKind.UNAUTHORIZED, 401, False),
    (ForbiddenError("no"), ErrorKind.FORBIDDEN, 403, False),
    (NotFoundError("gone"), ErrorKind.NOT_FOUND, 404, False),
    (ConflictError("busy"), ErrorKind.CONFLICT, 409, False),
    (ValidationError("bad"), ErrorKind.VALIDATION, 422, False),
    (ExternalApiError("Bank API request failed", code="X"), ErrorKind.EXTERNAL_API, 502, False),
    (BadGatewayError("down"), ErrorKind.BAD_GATEWAY, 502, True),
    (InvariantViolationError("corrupt"), ErrorKind.INVARIANT, 500, False),
])
def test_taxonomy(err, kind, status, retryable):
    assert err.kind == kind
    assert err.status_code == status
    assert err.retryable is retryable
    body = err.to_dict()
    assert body["success"] is False
    assert body["error"]["code"] == err.code


def test_invalid_transition_message():
    err = InvalidTransitionError("draft", "approved")
    assert err.to_dict()["error"] == {
        "code": "INVALID_STATUS_TRANSITION",
        "message": "Invalid status transition from draft to approved",
    }


def test_details_rendered_only_when_present():
    assert "details" not in NotFoundError("gone").to_dict()["error"]
    assert NotFoundError("gone", details="merchant m-1").to_dict()["error"]["details"] == "merchant m-1"


def test_bad_gateway_outcome_flag_defaults_false():
    assert BadGatewayError("down").outcome_unknown is False
