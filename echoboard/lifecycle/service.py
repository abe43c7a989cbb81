"""
Feedback status updates with notification side effects.

The lifecycle guard runs before any write. Only a persisted, real
status change to approved or rejected produces a notification job, and
that job is handed to the fire-and-forget producer after the write.
"""

import asyncio

import structlog

from echoboard.errors import FeedbackNotFoundError, InvalidTransitionError
from echoboard.lifecycle.guard import FeedbackStatus, can_transition
from echoboard.lifecycle.store import FeedbackRecord, FeedbackStore
from echoboard.queues.producer import NotificationProducer

logger = structlog.get_logger(__name__)


class FeedbackLifecycleService:
    """
    Applies status transitions to feedback records.

    Usage:
        service = FeedbackLifecycleService(store, producer)
        record = await service.update_status("fb-1", FeedbackStatus.APPROVED)
    """

    def __init__(self, store: FeedbackStore, producer: NotificationProducer):
        self._store = store
        self._producer = producer

    async def update_status(
        self,
        feedback_id: str,
        requested: FeedbackStatus | str,
    ) -> FeedbackRecord:
        """
        Move a feedback record to a new status.

        Args:
            feedback_id: Feedback to update
            requested: Target status

        Returns:
            The record after the update (unchanged for a no-op)

        Raises:
            FeedbackNotFoundError: No such feedback
            InvalidTransitionError: The guard refused the transition
        """
        requested = FeedbackStatus(requested)
        current = await self._store.get_feedback_status(feedback_id)

        decision = can_transition(current, requested)
        if not decision.allowed:
            logger.info(
                "Status transition refused",
                feedback_id=feedback_id,
                current=current.value,
                requested=requested.value,
            )
            raise InvalidTransitionError(current.value, requested.value, decision.reason or "")

        if decision.noop:
            record = await self._store.get_feedback(feedback_id)
            if record is None:
                raise FeedbackNotFoundError(f"Feedback {feedback_id} not found")
            return record

        record = await self._store.set_feedback_status(feedback_id, requested)
        logger.info(
            "Feedback status changed",
            feedback_id=feedback_id,
            previous=current.value,
            status=requested.value,
        )

        await self._notify_status_change(record)
        return record

    async def _notify_status_change(self, record: FeedbackRecord) -> "asyncio.Task | None":
        if record.status not in (FeedbackStatus.APPROVED, FeedbackStatus.REJECTED):
            return None

        contact = await self._store.get_user_contact(record.user_id)
        if contact is None:
            logger.warning(
                "No contact for feedback owner, skipping notification",
                feedback_id=record.id,
                user_id=record.user_id,
            )
            return None

        if record.status == FeedbackStatus.APPROVED:
            return self._producer.send_feedback_approved_email(contact, record)
        return self._producer.send_feedback_rejected_email(contact, record)
