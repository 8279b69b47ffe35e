"""Appointment schemas for record and transition payload validation."""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.APPROVED, AppointmentStatus.CONFIRMED}
)
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED}
)
FEE_STATUSES = frozenset(
    {AppointmentStatus.APPROVED, AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED}
)


class AppointmentCategory(str, Enum):
    """Kind of visit, selects the pricing strategy."""

    CONSULTATION = "consultation"
    SURGERY = "surgery"


class ActorRole(str, Enum):
    """Role of the authenticated caller."""

    PET_PARENT = "pet_parent"
    VETERINARIAN = "veterinarian"
    ADMIN = "admin"


class AppointmentAction(str, Enum):
    """Transitions a caller may request."""

    APPROVE = "approve"
    REJECT = "reject"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    RATE = "rate"


def normalize_time(value: str) -> str:
    """Validate an ``H:MM``/``HH:MM`` string and return it zero-padded."""
    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError("Please enter a valid time in HH:MM format")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


class Prescription(BaseModel):
    """Medication prescribed on completion."""

    medication: str = Field(..., min_length=1, max_length=200)
    dosage: str = Field(..., min_length=1, max_length=200)
    frequency: str = Field(..., min_length=1, max_length=200)
    duration: str = Field(..., min_length=1, max_length=200)
    instructions: str | None = Field(None, max_length=1000)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    owner_id: UUID
    veterinarian_id: UUID
    pet_id: UUID
    appointment_date: date
    appointment_time: str
    reason: str = Field(..., min_length=1, max_length=500)
    category: AppointmentCategory = AppointmentCategory.CONSULTATION
    comments: str | None = Field(None, max_length=1000)

    @field_validator("appointment_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        """Validate time format."""
        return normalize_time(v)

    @field_validator("reason", "comments")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        """Trim surrounding whitespace and reject blank text."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v


class ApprovePayload(BaseModel):
    """Schema for approving a pending appointment."""

    fee: Decimal = Field(..., gt=0, le=10000, decimal_places=2)
    veterinarian_notes: str | None = Field(None, max_length=2000)
    factors: dict[str, Any] = Field(default_factory=dict)


class RejectPayload(BaseModel):
    """Schema for rejecting a pending appointment."""

    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Reject blank reasons."""
        v = v.strip()
        if not v:
            raise ValueError("Reason is required to reject an appointment")
        return v


class ConfirmPayload(BaseModel):
    """Confirmation carries no data."""


class CancelPayload(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class ReschedulePayload(BaseModel):
    """Schema for moving an appointment to a new slot."""

    appointment_date: date
    appointment_time: str
    reason: str | None = Field(None, max_length=500)

    @field_validator("appointment_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        """Validate time format."""
        return normalize_time(v)


class CompletePayload(BaseModel):
    """Schema for completing a confirmed appointment."""

    diagnosis: str = Field(..., min_length=1, max_length=1000)
    treatment: str = Field(..., min_length=1, max_length=1000)
    prescriptions: list[Prescription] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: date | None = None
    veterinarian_notes: str | None = Field(None, max_length=2000)

    @field_validator("diagnosis", "treatment")
    @classmethod
    def validate_clinical_text(cls, v: str) -> str:
        """Diagnosis and treatment are required to complete."""
        v = v.strip()
        if not v:
            raise ValueError("Diagnosis and treatment are required to complete the appointment")
        return v

    @model_validator(mode="after")
    def validate_follow_up(self) -> "CompletePayload":
        """A follow-up date is needed when a follow-up is required."""
        if self.follow_up_required and self.follow_up_date is None:
            raise ValueError("Follow-up date is required when follow-up is required")
        return self


class RatePayload(BaseModel):
    """Schema for rating a completed appointment."""

    stars: int = Field(..., ge=1, le=5)
    review: str | None = None

    @field_validator("review")
    @classmethod
    def clip_review(cls, v: str | None) -> str:
        """Trim and cap the review at 500 characters."""
        return (v or "").strip()[:500]


TRANSITION_PAYLOADS: dict[AppointmentAction, type[BaseModel]] = {
    AppointmentAction.APPROVE: ApprovePayload,
    AppointmentAction.REJECT: RejectPayload,
    AppointmentAction.CONFIRM: ConfirmPayload,
    AppointmentAction.CANCEL: CancelPayload,
    AppointmentAction.RESCHEDULE: ReschedulePayload,
    AppointmentAction.COMPLETE: CompletePayload,
    AppointmentAction.RATE: RatePayload,
}


class Appointment(BaseModel):
    """Appointment record as returned to callers."""

    id: UUID
    owner_id: UUID
    veterinarian_id: UUID
    pet_id: UUID
    appointment_date: date
    appointment_time: str
    category: AppointmentCategory
    status: AppointmentStatus
    reason: str
    comments: str | None = None
    fee: Decimal | None = None
    fee_breakdown: dict[str, Any] | None = None
    veterinarian_notes: str | None = None
    diagnosis: str | None = None
    treatment: str | None = None
    prescriptions: list[Prescription] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: date | None = None
    rating: int | None = None
    review: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("prescriptions", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        """Stored NULL means no prescriptions."""
        return v or []


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[Appointment]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    pet_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class TimeSlot(BaseModel):
    """One bookable slot in a veterinarian's day."""

    start_time: str
    end_time: str
    available: bool
