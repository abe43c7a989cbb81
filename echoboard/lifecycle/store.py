"""
Storage collaborator contract for feedback records.

The surrounding application owns persistence; the pipeline only reads
and writes status through this interface. An in-memory implementation
is provided for development and tests.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from echoboard.errors import FeedbackNotFoundError
from echoboard.lifecycle.guard import FeedbackStatus


@dataclass
class FeedbackRecord:
    """A feedback submission as seen by the notification pipeline."""

    id: str
    title: str
    message: str
    rating: int
    user_id: str
    status: FeedbackStatus = FeedbackStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.rating <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {self.rating}")
        self.status = FeedbackStatus(self.status)


@dataclass(frozen=True)
class UserContact:
    """Where to send a user's notifications."""

    user_id: str
    email: str
    name: str


@runtime_checkable
class FeedbackStore(Protocol):
    """Feedback persistence owned by the surrounding application."""

    async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
        """Return the record, or None if it does not exist."""
        ...

    async def get_feedback_status(self, feedback_id: str) -> FeedbackStatus:
        """Return the persisted status. Raises FeedbackNotFoundError."""
        ...

    async def set_feedback_status(
        self, feedback_id: str, status: FeedbackStatus
    ) -> FeedbackRecord:
        """Persist a new status and return the updated record."""
        ...

    async def get_user_contact(self, user_id: str) -> UserContact | None:
        """Return the owner's contact details, or None if unknown."""
        ...


class InMemoryFeedbackStore:
    """Dict-backed FeedbackStore for development and tests."""

    def __init__(self) -> None:
        self._feedback: dict[str, FeedbackRecord] = {}
        self._users: dict[str, UserContact] = {}
        self._lock = asyncio.Lock()

    def add_feedback(self, record: FeedbackRecord) -> None:
        self._feedback[record.id] = record

    def add_user(self, contact: UserContact) -> None:
        self._users[contact.user_id] = contact

    async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
        record = self._feedback.get(feedback_id)
        return replace(record) if record else None

    async def get_feedback_status(self, feedback_id: str) -> FeedbackStatus:
        record = self._feedback.get(feedback_id)
        if record is None:
            raise FeedbackNotFoundError(f"Feedback {feedback_id} not found")
        return record.status

    async def set_feedback_status(
        self, feedback_id: str, status: FeedbackStatus
    ) -> FeedbackRecord:
        async with self._lock:
            record = self._feedback.get(feedback_id)
            if record is None:
                raise FeedbackNotFoundError(f"Feedback {feedback_id} not found")
            record.status = FeedbackStatus(status)
            record.updated_at = datetime.now(timezone.utc)
            return replace(record)

    async def get_user_contact(self, user_id: str) -> UserContact | None:
        return self._users.get(user_id)
