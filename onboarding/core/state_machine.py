from typing import Dict, FrozenSet

from onboarding.errors import InvalidTransitionError, InvariantViolationError

# Owner is still editing the application
DRAFT = "draft"

# Owner submitted for review; waiting on an admin
SUBMITTED = "submitted"

# Admin accepted the profile; bank submission in progress (or failed and awaiting retry)
VALIDATING = "validating"

# Bank holds the application; decision arrives by webhook or reconciliation
PENDING_BANK_APPROVAL = "pending_bank_approval"

# Terminal. A new application is needed to change anything after this.
APPROVED = "approved"

# Only state with a re-entry edge (fix and resubmit)
REJECTED = "rejected"

ALL_STATUSES = (DRAFT, SUBMITTED, VALIDATING, PENDING_BANK_APPROVAL, APPROVED, REJECTED)

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DRAFT: frozenset({SUBMITTED}),
    SUBMITTED: frozenset({VALIDATING, REJECTED}),
    VALIDATING: frozenset({PENDING_BANK_APPROVAL, REJECTED}),
    PENDING_BANK_APPROVAL: frozenset({APPROVED, REJECTED}),
    APPROVED: frozenset(),
    REJECTED: frozenset({SUBMITTED}),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# Status -> audit timestamp field written on entry
TIMESTAMP_FIELDS = {
    SUBMITTED: "submittedAt",
    VALIDATING: "validatedAt",
    PENDING_BANK_APPROVAL: "bankSubmittedAt",
    APPROVED: "decisionAt",
    REJECTED: "decisionAt",
}


def ensure_known_status(status: str) -> str:
    if status not in TRANSITIONS:
        raise InvariantViolationError(f"Unknown merchant status: {status!r}", code="UNKNOWN_STATUS")
    return status


def is_allowed(current: str, requested: str) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, requested: str) -> None:
    """Raise InvalidTransitionError unless current -> requested is an allowed edge."""
    ensure_known_status(current)
    if requested not in TRANSITIONS:
        raise InvalidTransitionError(current, requested, f"Unknown target status: {requested!r}")
    if not is_allowed(current, requested):
        raise InvalidTransitionError(current, requested)
