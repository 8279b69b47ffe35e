"""Notification service storing appointment lifecycle events for delivery."""

from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

import structlog
from sqlalchemy import desc, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vetcare.models.notifications import notifications
from vetcare.schemas.notifications import LifecycleEvent, LifecycleEventType

logger = structlog.get_logger(__name__)

MESSAGES: dict[LifecycleEventType, tuple[str, str]] = {
    LifecycleEventType.APPOINTMENT_CREATED: (
        "New Appointment Request",
        "A pet parent has requested an appointment with you.",
    ),
    LifecycleEventType.APPOINTMENT_APPROVED: (
        "Appointment Approved",
        "Your appointment was approved. Please confirm it.",
    ),
    LifecycleEventType.APPOINTMENT_CONFIRMED: (
        "Appointment Confirmed",
        "The pet parent confirmed the appointment.",
    ),
    LifecycleEventType.APPOINTMENT_COMPLETED: (
        "Appointment Completed",
        "Your visit is complete. You can now rate it.",
    ),
    LifecycleEventType.APPOINTMENT_CANCELLED: (
        "Appointment Cancelled",
        "An appointment was cancelled.",
    ),
    LifecycleEventType.APPOINTMENT_REJECTED: (
        "Appointment Rejected",
        "The veterinarian could not accept your appointment request.",
    ),
    LifecycleEventType.APPOINTMENT_RESCHEDULED: (
        "Appointment Rescheduled",
        "An appointment was moved to a new time slot.",
    ),
    LifecycleEventType.APPOINTMENT_RATED: (
        "New Rating",
        "A pet parent rated a completed appointment.",
    ),
}


class LifecycleNotifier(Protocol):
    """Receives an event after every committed transition."""

    async def notify(self, event: LifecycleEvent) -> None: ...


class NotificationService:
    """Persists lifecycle events as pending notifications, in a session of its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize service with a session factory."""
        self.session_factory = session_factory

    async def notify(self, event: LifecycleEvent) -> None:
        """
        Store a notification for the event's recipient.

        Args:
            event: Lifecycle event
        """
        title, body = MESSAGES[event.type]
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    insert(notifications).values(
                        id=uuid4(),
                        user_id=event.recipient_id,
                        appointment_id=event.appointment_id,
                        title=title,
                        body=body,
                        notification_type=event.type.value,
                        data={"appointment_id": str(event.appointment_id)},
                        status="pending",
                        created_at=datetime.now(UTC),
                    )
                )

        logger.info(
            "notification_queued",
            notification_type=event.type.value,
            appointment_id=str(event.appointment_id),
            recipient_id=str(event.recipient_id),
        )

    async def get_user_notifications(self, user_id: UUID, limit: int = 20) -> list[dict]:
        """
        Get the most recent notifications for a user.

        Args:
            user_id: Recipient ID
            limit: Maximum number of rows

        Returns:
            Notification rows as dicts, newest first
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(notifications)
                .where(notifications.c.user_id == user_id)
                .order_by(desc(notifications.c.created_at))
                .limit(limit)
            )
            return [dict(row._mapping) for row in result.fetchall()]
