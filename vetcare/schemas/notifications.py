"""Lifecycle event schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LifecycleEventType(str, Enum):
    """Event emitted after a committed transition."""

    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_APPROVED = "appointment_approved"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_REJECTED = "appointment_rejected"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_RATED = "appointment_rated"


class LifecycleEvent(BaseModel):
    """Notification collaborator input."""

    model_config = ConfigDict(frozen=True)

    type: LifecycleEventType
    appointment_id: UUID
    recipient_id: UUID
