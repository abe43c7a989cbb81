"""Feedback lifecycle: transition guard and storage collaborator contract.

Components:
- FeedbackStatus: Lifecycle states
- can_transition / TransitionDecision: Pure transition guard
- FeedbackRecord / UserContact: Data seen by the pipeline
- FeedbackStore / InMemoryFeedbackStore: Storage collaborator

FeedbackLifecycleService lives in echoboard.lifecycle.service.
"""

from echoboard.lifecycle.guard import FeedbackStatus, TransitionDecision, can_transition
from echoboard.lifecycle.store import (
    FeedbackRecord,
    FeedbackStore,
    InMemoryFeedbackStore,
    UserContact,
)

__all__ = [
    "FeedbackRecord",
    "FeedbackStatus",
    "FeedbackStore",
    "InMemoryFeedbackStore",
    "TransitionDecision",
    "UserContact",
    "can_transition",
]
