"""
Appointment lifecycle state machine.

Each status has one handler value. A handler's ``transitions`` mapping is
the full set of actions legal from that status; anything else is an
``InvalidTransitionException``. Handlers never touch the database: they
take the current record, a validated payload and a ``TransitionContext``
and return the column changes for the service to persist.

    PENDING   --approve-->    APPROVED
    PENDING   --reject-->     REJECTED
    PENDING   --reschedule--> PENDING
    APPROVED  --confirm-->    CONFIRMED
    APPROVED  --cancel-->     CANCELLED
    CONFIRMED --complete-->   COMPLETED
    CONFIRMED --cancel-->     CANCELLED
    CONFIRMED --reschedule--> PENDING
    COMPLETED --rate-->       COMPLETED (once)
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

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
from vetcare.services.pricing_service import PricingService, time_of_day_bucket
from vetcare.services.slot_ledger import slot_start


@dataclass(frozen=True)
class TransitionContext:
    """Inputs a handler may read besides the record and payload."""

    now: datetime
    pricing: PricingService | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a handler: target status and the columns it writes."""

    status: AppointmentStatus
    event_type: LifecycleEventType
    changes: dict[str, Any] = field(default_factory=dict)
    new_slot: tuple[date, str] | None = None


Transition = Callable[[Appointment, Any, TransitionContext], TransitionResult]

_NO_FEE = {"fee": None, "fee_breakdown": None}


def _prefixed_note(prefix: str, reason: str | None, current: str | None) -> str | None:
    reason = (reason or "").strip()
    return f"{prefix}: {reason}" if reason else current


def _reschedule_changes(
    appointment: Appointment,
    payload: ReschedulePayload,
    ctx: TransitionContext,
) -> dict[str, Any]:
    if slot_start(payload.appointment_date, payload.appointment_time) <= ctx.now:
        raise InvalidDateException("Rescheduled slot must be in the future")
    return {
        "appointment_date": payload.appointment_date,
        "appointment_time": payload.appointment_time,
        "veterinarian_notes": _prefixed_note(
            "Rescheduled", payload.reason, appointment.veterinarian_notes
        ),
    }


def _cancel(
    appointment: Appointment, payload: CancelPayload, ctx: TransitionContext
) -> TransitionResult:
    return TransitionResult(
        status=AppointmentStatus.CANCELLED,
        event_type=LifecycleEventType.APPOINTMENT_CANCELLED,
        changes={
            **_NO_FEE,
            "veterinarian_notes": _prefixed_note(
                "Cancelled", payload.reason, appointment.veterinarian_notes
            ),
        },
    )


class PendingState:
    """Awaiting the veterinarian's decision."""

    status = AppointmentStatus.PENDING

    @property
    def transitions(self) -> Mapping[AppointmentAction, Transition]:
        return {
            AppointmentAction.APPROVE: self.approve,
            AppointmentAction.REJECT: self.reject,
            AppointmentAction.RESCHEDULE: self.reschedule,
        }

    def approve(
        self, appointment: Appointment, payload: ApprovePayload, ctx: TransitionContext
    ) -> TransitionResult:
        if ctx.pricing is None:
            raise ValidationFailedException("No pricing strategy for this appointment")

        factors = dict(payload.factors)
        if factors.get("time_of_day") is None:
            factors["time_of_day"] = time_of_day_bucket(appointment.appointment_time)
        calculation = ctx.pricing.calculate_price(payload.fee, factors)
        notes = (payload.veterinarian_notes or "").strip()

        return TransitionResult(
            status=AppointmentStatus.APPROVED,
            event_type=LifecycleEventType.APPOINTMENT_APPROVED,
            changes={
                "fee": calculation.total_cost,
                "fee_breakdown": calculation.model_dump(mode="json"),
                "veterinarian_notes": notes or appointment.veterinarian_notes,
            },
        )

    def reject(
        self, appointment: Appointment, payload: RejectPayload, ctx: TransitionContext
    ) -> TransitionResult:
        return TransitionResult(
            status=AppointmentStatus.REJECTED,
            event_type=LifecycleEventType.APPOINTMENT_REJECTED,
            changes={"veterinarian_notes": f"Rejected: {payload.reason}"},
        )

    def reschedule(
        self, appointment: Appointment, payload: ReschedulePayload, ctx: TransitionContext
    ) -> TransitionResult:
        return TransitionResult(
            status=AppointmentStatus.PENDING,
            event_type=LifecycleEventType.APPOINTMENT_RESCHEDULED,
            changes=_reschedule_changes(appointment, payload, ctx),
            new_slot=(payload.appointment_date, payload.appointment_time),
        )


class ApprovedState:
    """Priced by the veterinarian, waiting for the owner to confirm."""

    status = AppointmentStatus.APPROVED

    @property
    def transitions(self) -> Mapping[AppointmentAction, Transition]:
        return {
            AppointmentAction.CONFIRM: self.confirm,
            AppointmentAction.CANCEL: _cancel,
        }

    def confirm(
        self, appointment: Appointment, payload: ConfirmPayload, ctx: TransitionContext
    ) -> TransitionResult:
        return TransitionResult(
            status=AppointmentStatus.CONFIRMED,
            event_type=LifecycleEventType.APPOINTMENT_CONFIRMED,
        )


class ConfirmedState:
    """Agreed by both parties."""

    status = AppointmentStatus.CONFIRMED

    @property
    def transitions(self) -> Mapping[AppointmentAction, Transition]:
        return {
            AppointmentAction.COMPLETE: self.complete,
            AppointmentAction.CANCEL: _cancel,
            AppointmentAction.RESCHEDULE: self.reschedule,
        }

    def complete(
        self, appointment: Appointment, payload: CompletePayload, ctx: TransitionContext
    ) -> TransitionResult:
        if payload.follow_up_required and payload.follow_up_date <= ctx.now.date():
            raise ValidationFailedException(
                "Follow-up date must be in the future when follow-up is required"
            )
        notes = (payload.veterinarian_notes or "").strip()
        return TransitionResult(
            status=AppointmentStatus.COMPLETED,
            event_type=LifecycleEventType.APPOINTMENT_COMPLETED,
            changes={
                "diagnosis": payload.diagnosis,
                "treatment": payload.treatment,
                "prescriptions": [p.model_dump(mode="json") for p in payload.prescriptions],
                "follow_up_required": payload.follow_up_required,
                "follow_up_date": payload.follow_up_date if payload.follow_up_required else None,
                "veterinarian_notes": notes or appointment.veterinarian_notes,
                "completed_at": ctx.now,
            },
        )

    def reschedule(
        self, appointment: Appointment, payload: ReschedulePayload, ctx: TransitionContext
    ) -> TransitionResult:
        # Back to PENDING: the veterinarian must approve and price the new slot
        return TransitionResult(
            status=AppointmentStatus.PENDING,
            event_type=LifecycleEventType.APPOINTMENT_RESCHEDULED,
            changes={**_reschedule_changes(appointment, payload, ctx), **_NO_FEE},
            new_slot=(payload.appointment_date, payload.appointment_time),
        )


class CompletedState:
    """Visit done; only feedback remains."""

    status = AppointmentStatus.COMPLETED

    @property
    def transitions(self) -> Mapping[AppointmentAction, Transition]:
        return {AppointmentAction.RATE: self.rate}

    def rate(
        self, appointment: Appointment, payload: RatePayload, ctx: TransitionContext
    ) -> TransitionResult:
        if appointment.rating is not None:
            raise AlreadyRatedException()
        return TransitionResult(
            status=AppointmentStatus.COMPLETED,
            event_type=LifecycleEventType.APPOINTMENT_RATED,
            changes={"rating": payload.stars, "review": payload.review},
        )


class CancelledState:
    status = AppointmentStatus.CANCELLED
    transitions: Mapping[AppointmentAction, Transition] = {}


class RejectedState:
    status = AppointmentStatus.REJECTED
    transitions: Mapping[AppointmentAction, Transition] = {}


AppointmentStateHandler = (
    PendingState | ApprovedState | ConfirmedState | CompletedState | CancelledState | RejectedState
)

_PENDING = PendingState()
_APPROVED = ApprovedState()
_CONFIRMED = ConfirmedState()
_COMPLETED = CompletedState()
_CANCELLED = CancelledState()
_REJECTED = RejectedState()


def resolve_state(status: AppointmentStatus | str) -> AppointmentStateHandler:
    """Return the handler for a status."""
    match AppointmentStatus(status):
        case AppointmentStatus.PENDING:
            return _PENDING
        case AppointmentStatus.APPROVED:
            return _APPROVED
        case AppointmentStatus.CONFIRMED:
            return _CONFIRMED
        case AppointmentStatus.COMPLETED:
            return _COMPLETED
        case AppointmentStatus.CANCELLED:
            return _CANCELLED
        case AppointmentStatus.REJECTED:
            return _REJECTED


def allowed_actions(status: AppointmentStatus | str) -> frozenset[AppointmentAction]:
    """Actions legal from a status."""
    return frozenset(resolve_state(status).transitions)


def apply_transition(
    appointment: Appointment,
    action: AppointmentAction,
    payload: Any,
    ctx: TransitionContext,
) -> TransitionResult:
    """
    Run ``action`` against the handler for the appointment's current status.

    Raises:
        InvalidTransitionException: If the action is not legal from the current status
    """
    handler = resolve_state(appointment.status).transitions.get(action)
    if handler is None:
        raise InvalidTransitionException(
            f"Cannot {action.value} an appointment that is {appointment.status.value}"
        )
    return handler(appointment, payload, ctx)
