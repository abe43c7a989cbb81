"""
Feedback lifecycle guard.

Pure validation of status transitions. Must be consulted before any
status write and before any notification job is produced, so that a
refused transition never triggers a notification.
"""

import enum
from dataclasses import dataclass


class FeedbackStatus(str, enum.Enum):
    """Lifecycle states of a feedback record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


REJECTED_TO_APPROVED = (
    "Rejected feedback cannot be approved. Delete it and resubmit instead."
)
APPROVED_TO_REJECTED = (
    "Approved feedback cannot be rejected. Delete it instead."
)


@dataclass(frozen=True)
class TransitionDecision:
    """
    Outcome of a transition check.

    Attributes:
        allowed: Whether the caller may proceed
        noop: The requested status equals the current one; the caller
            should skip both the write and job production
        reason: Human-readable refusal message when not allowed
    """

    allowed: bool
    noop: bool = False
    reason: str | None = None

    @classmethod
    def allow(cls) -> "TransitionDecision":
        return cls(allowed=True)

    @classmethod
    def unchanged(cls) -> "TransitionDecision":
        return cls(allowed=True, noop=True)

    @classmethod
    def deny(cls, reason: str) -> "TransitionDecision":
        return cls(allowed=False, reason=reason)


def can_transition(
    current: FeedbackStatus | str,
    requested: FeedbackStatus | str,
) -> TransitionDecision:
    """
    Decide whether a feedback record may move between two statuses.

    Args:
        current: Status currently persisted
        requested: Status the caller wants to write

    Returns:
        TransitionDecision (allow, unchanged no-op, or deny with reason)

    Raises:
        ValueError: If either value is not a known status
    """
    current = FeedbackStatus(current)
    requested = FeedbackStatus(requested)

    if current == requested:
        return TransitionDecision.unchanged()

    if current == FeedbackStatus.REJECTED and requested == FeedbackStatus.APPROVED:
        return TransitionDecision.deny(REJECTED_TO_APPROVED)

    if current == FeedbackStatus.APPROVED and requested == FeedbackStatus.REJECTED:
        return TransitionDecision.deny(APPROVED_TO_REJECTED)

    return TransitionDecision.allow()
