"""Tests for the appointment state handlers."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from vetcare.core.exceptions import (
    AlreadyRatedException,
    InvalidDateException,
    InvalidTransitionException,
    ValidationFailedException,
)
from vetcare.schemas.appointments import (
    Appointment,
    AppointmentAction,
    AppointmentStatus,
    ApprovePayload,
    CancelPayload,
    CompletePayload,
    ConfirmPayload,
    RatePayload,
    RejectPayload,
    ReschedulePayload,
)
from vetcare.schemas.notifications import LifecycleEventType
from vetcare.services.appointment_states import (
    TransitionContext,
    allowed_actions,
    apply_transition,
    resolve_state,
)
from vetcare.services.pricing_service import PricingService

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def make_appointment(status: AppointmentStatus, **fields) -> Appointment:
    data = {
        "id": uuid4(),
        "owner_id": uuid4(),
        "veterinarian_id": uuid4(),
        "pet_id": uuid4(),
        "appointment_date": date(2026, 3, 10),
        "appointment_time": "09:00",
        "category": "consultation",
        "status": status,
        "reason": "Limping",
        "version": 1,
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(fields)
    return Appointment(**data)


def ctx(pricing: PricingService | None = None) -> TransitionContext:
    return TransitionContext(now=NOW, pricing=pricing)


def test_allowed_actions_per_status() -> None:
    """Test each status exposes exactly its legal actions."""
    assert allowed_actions(AppointmentStatus.PENDING) == {
        AppointmentAction.APPROVE,
        AppointmentAction.REJECT,
        AppointmentAction.RESCHEDULE,
    }
    assert allowed_actions(AppointmentStatus.APPROVED) == {
        AppointmentAction.CONFIRM,
        AppointmentAction.CANCEL,
    }
    assert allowed_actions(AppointmentStatus.CONFIRMED) == {
        AppointmentAction.COMPLETE,
        AppointmentAction.CANCEL,
        AppointmentAction.RESCHEDULE,
    }
    assert allowed_actions(AppointmentStatus.COMPLETED) == {AppointmentAction.RATE}
    assert allowed_actions(AppointmentStatus.CANCELLED) == frozenset()
    assert allowed_actions(AppointmentStatus.REJECTED) == frozenset()


def test_resolve_state_accepts_raw_value() -> None:
    """Test handlers resolve from stored status strings."""
    assert resolve_state("CONFIRMED").status == AppointmentStatus.CONFIRMED


def test_confirm_pending_is_invalid() -> None:
    """Test confirm is not legal before approval."""
    appointment = make_appointment(AppointmentStatus.PENDING)

    with pytest.raises(InvalidTransitionException) as exc:
        apply_transition(appointment, AppointmentAction.CONFIRM, ConfirmPayload(), ctx())

    assert "PENDING" in exc.value.message


@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED],
)
@pytest.mark.parametrize(
    "action",
    [AppointmentAction.APPROVE, AppointmentAction.CANCEL, AppointmentAction.RESCHEDULE],
)
def test_terminal_statuses_reject_lifecycle_actions(
    status: AppointmentStatus, action: AppointmentAction
) -> None:
    """Test terminal statuses accept nothing but a first rating."""
    appointment = make_appointment(status)

    with pytest.raises(InvalidTransitionException):
        apply_transition(appointment, action, None, ctx())


def test_approve_prices_with_strategy() -> None:
    """Test approval writes fee and breakdown from the pricing result."""
    appointment = make_appointment(AppointmentStatus.PENDING)
    payload = ApprovePayload(fee=Decimal("80"), factors={"emergency": True})

    result = apply_transition(
        appointment,
        AppointmentAction.APPROVE,
        payload,
        ctx(PricingService.for_category("consultation")),
    )

    assert result.status == AppointmentStatus.APPROVED
    assert result.event_type == LifecycleEventType.APPOINTMENT_APPROVED
    assert result.changes["fee"] == Decimal("120.00")
    assert result.changes["fee_breakdown"]["total_cost"] == "120.00"


def test_approve_derives_time_of_day_from_slot() -> None:
    """Test an evening slot is priced with the evening fee."""
    appointment = make_appointment(AppointmentStatus.PENDING, appointment_time="17:30")

    result = apply_transition(
        appointment,
        AppointmentAction.APPROVE,
        ApprovePayload(fee=Decimal("80")),
        ctx(PricingService.for_category("consultation")),
    )

    assert result.changes["fee"] == Decimal("105.00")


def test_approve_without_notes_keeps_existing_notes() -> None:
    """Test approval with blank notes leaves the stored notes in place."""
    appointment = make_appointment(
        AppointmentStatus.PENDING, veterinarian_notes="Moved to the afternoon"
    )
    pricing = PricingService.for_category("consultation")

    kept = apply_transition(
        appointment,
        AppointmentAction.APPROVE,
        ApprovePayload(fee=Decimal("80"), veterinarian_notes="   "),
        ctx(pricing),
    )
    replaced = apply_transition(
        appointment,
        AppointmentAction.APPROVE,
        ApprovePayload(fee=Decimal("80"), veterinarian_notes=" Bring records "),
        ctx(pricing),
    )

    assert kept.changes["veterinarian_notes"] == "Moved to the afternoon"
    assert replaced.changes["veterinarian_notes"] == "Bring records"


def test_approve_without_pricing_fails() -> None:
    """Test approval needs a pricing service."""
    appointment = make_appointment(AppointmentStatus.PENDING)

    with pytest.raises(ValidationFailedException):
        apply_transition(
            appointment, AppointmentAction.APPROVE, ApprovePayload(fee=Decimal("80")), ctx()
        )


def test_reject_records_reason() -> None:
    """Test rejection keeps the reason in the notes."""
    appointment = make_appointment(AppointmentStatus.PENDING)

    result = apply_transition(
        appointment, AppointmentAction.REJECT, RejectPayload(reason="Fully booked"), ctx()
    )

    assert result.status == AppointmentStatus.REJECTED
    assert result.changes["veterinarian_notes"] == "Rejected: Fully booked"


def test_cancel_clears_fee() -> None:
    """Test a cancelled appointment carries no fee."""
    appointment = make_appointment(AppointmentStatus.APPROVED, fee=Decimal("80"))

    result = apply_transition(
        appointment, AppointmentAction.CANCEL, CancelPayload(reason="Pet recovered"), ctx()
    )

    assert result.status == AppointmentStatus.CANCELLED
    assert result.changes["fee"] is None
    assert result.changes["veterinarian_notes"] == "Cancelled: Pet recovered"


def test_reschedule_confirmed_returns_to_pending() -> None:
    """Test rescheduling a confirmed visit needs fresh approval."""
    appointment = make_appointment(AppointmentStatus.CONFIRMED, fee=Decimal("80"))
    payload = ReschedulePayload(appointment_date=date(2026, 3, 11), appointment_time="10:00")

    result = apply_transition(appointment, AppointmentAction.RESCHEDULE, payload, ctx())

    assert result.status == AppointmentStatus.PENDING
    assert result.new_slot == (date(2026, 3, 11), "10:00")
    assert result.changes["fee"] is None


def test_reschedule_into_past_fails() -> None:
    """Test the new slot must be in the future."""
    appointment = make_appointment(AppointmentStatus.PENDING)
    payload = ReschedulePayload(appointment_date=date(2026, 3, 1), appointment_time="10:00")

    with pytest.raises(InvalidDateException):
        apply_transition(appointment, AppointmentAction.RESCHEDULE, payload, ctx())


def test_complete_sets_clinical_fields() -> None:
    """Test completion stamps completed_at and keeps the outcome."""
    appointment = make_appointment(AppointmentStatus.CONFIRMED)
    payload = CompletePayload(
        diagnosis="Sprain",
        treatment="Rest",
        prescriptions=[
            {
                "medication": "Meloxicam",
                "dosage": "0.1 mg/kg",
                "frequency": "daily",
                "duration": "5 days",
            }
        ],
    )

    result = apply_transition(appointment, AppointmentAction.COMPLETE, payload, ctx())

    assert result.status == AppointmentStatus.COMPLETED
    assert result.changes["completed_at"] == NOW
    assert result.changes["diagnosis"] == "Sprain"
    assert result.changes["prescriptions"][0]["medication"] == "Meloxicam"


def test_complete_follow_up_must_be_future() -> None:
    """Test a required follow-up cannot be dated today or earlier."""
    appointment = make_appointment(AppointmentStatus.CONFIRMED)
    payload = CompletePayload(
        diagnosis="Sprain",
        treatment="Rest",
        follow_up_required=True,
        follow_up_date=NOW.date(),
    )

    with pytest.raises(ValidationFailedException):
        apply_transition(appointment, AppointmentAction.COMPLETE, payload, ctx())


def test_rate_only_once() -> None:
    """Test a second rating is refused."""
    fresh = make_appointment(AppointmentStatus.COMPLETED)
    result = apply_transition(fresh, AppointmentAction.RATE, RatePayload(stars=5), ctx())
    assert result.status == AppointmentStatus.COMPLETED
    assert result.changes["rating"] == 5

    rated = make_appointment(AppointmentStatus.COMPLETED, rating=4)
    with pytest.raises(AlreadyRatedException):
        apply_transition(rated, AppointmentAction.RATE, RatePayload(stars=5), ctx())
