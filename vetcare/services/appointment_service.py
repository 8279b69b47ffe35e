"""Appointment service: the only entry point that mutates appointments."""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, nullcontext
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import and_, func, insert, select, true, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vetcare.config import Settings, settings as default_settings
from vetcare.core.exceptions import (
    AppException,
    ConcurrentModificationException,
    ForbiddenException,
    InvalidDateException,
    NotFoundException,
    SlotConflictException,
    StorageUnavailableException,
    ValidationFailedException,
)
from vetcare.core.locks import LockManager
from vetcare.core.metrics import (
    APPOINTMENT_FAILURES,
    APPOINTMENT_TRANSITIONS,
    NOTIFICATION_FAILURES,
)
from vetcare.models.appointments import appointments
from vetcare.schemas.appointments import (
    TRANSITION_PAYLOADS,
    ActorRole,
    Appointment,
    AppointmentAction,
    AppointmentCategory,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
    TimeSlot,
)
from vetcare.schemas.notifications import LifecycleEvent, LifecycleEventType
from vetcare.services.appointment_states import TransitionContext, apply_transition
from vetcare.services.notification_service import LifecycleNotifier
from vetcare.services.pricing_service import PricingService
from vetcare.services.slot_ledger import SlotLedger, slot_key, slot_start

logger = structlog.get_logger(__name__)

# Who may request each action; identity is checked against the record too
ACTION_ROLES: dict[AppointmentAction, frozenset[ActorRole]] = {
    AppointmentAction.APPROVE: frozenset({ActorRole.VETERINARIAN}),
    AppointmentAction.REJECT: frozenset({ActorRole.VETERINARIAN}),
    AppointmentAction.COMPLETE: frozenset({ActorRole.VETERINARIAN}),
    AppointmentAction.CONFIRM: frozenset({ActorRole.PET_PARENT}),
    AppointmentAction.RATE: frozenset({ActorRole.PET_PARENT}),
    AppointmentAction.CANCEL: frozenset({ActorRole.PET_PARENT, ActorRole.VETERINARIAN}),
    AppointmentAction.RESCHEDULE: frozenset({ActorRole.PET_PARENT, ActorRole.VETERINARIAN}),
}

_OWNER_RECIPIENT = {
    LifecycleEventType.APPOINTMENT_APPROVED,
    LifecycleEventType.APPOINTMENT_REJECTED,
    LifecycleEventType.APPOINTMENT_COMPLETED,
}
_VET_RECIPIENT = {
    LifecycleEventType.APPOINTMENT_CREATED,
    LifecycleEventType.APPOINTMENT_CONFIRMED,
    LifecycleEventType.APPOINTMENT_RATED,
}


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value").removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def _actor_role(value: ActorRole | str) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError as e:
        raise ValidationFailedException(f"Unknown actor role: {value}") from e


def _is_slot_violation(error: IntegrityError) -> bool:
    text = str(error.orig)
    return "uq_appointments_active_slot" in text or "appointments.veterinarian_id" in text


def _appointment_lock_key(appointment_id: UUID) -> str:
    return f"appointment:{appointment_id}"


class AppointmentService:
    """
    Books appointments and drives them through their lifecycle.

    Every mutation runs as: per-appointment lock, then per-slot lock when a
    slot is claimed, then one database transaction holding the conflict check
    and a version-guarded write. The notifier is called only after commit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockManager,
        notifier: LifecycleNotifier | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize service with its collaborators.

        Args:
            session_factory: Factory for database sessions
            locks: Keyed lock manager
            notifier: Receiver of lifecycle events
            settings: Application settings
            clock: Returns the current aware UTC time
        """
        self.session_factory = session_factory
        self.locks = locks
        self.notifier = notifier
        self.settings = settings or default_settings
        self.clock = clock or (lambda: datetime.now(UTC))
        self.ledger = SlotLedger(self.settings)

    # Booking

    async def book(
        self,
        owner_id: UUID,
        veterinarian_id: UUID,
        pet_id: UUID,
        appointment_date: date,
        appointment_time: str,
        reason: str,
        category: AppointmentCategory | str = AppointmentCategory.CONSULTATION,
        comments: str | None = None,
    ) -> Appointment:
        """
        Book a new appointment in PENDING.

        Args:
            owner_id: Pet parent booking the visit
            veterinarian_id: Veterinarian to see
            pet_id: Pet being seen
            appointment_date: Slot day
            appointment_time: Slot time, ``HH:MM``
            reason: Reason for the visit
            category: Pricing category
            comments: Optional comments from the owner

        Returns:
            Created appointment

        Raises:
            ValidationFailedException: If a field is missing or malformed
            InvalidDateException: If the slot is not in the future
            SlotConflictException: If the veterinarian already holds the slot
            LockTimeoutException: If the slot lock could not be acquired in time
        """
        try:
            data = AppointmentCreate(
                owner_id=owner_id,
                veterinarian_id=veterinarian_id,
                pet_id=pet_id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                reason=reason,
                category=category,
                comments=comments,
            )
        except ValidationError as e:
            raise ValidationFailedException(_validation_message(e)) from e

        time_value = self.ledger.validate_slot_time(data.appointment_time)
        now = self.clock()
        if slot_start(data.appointment_date, time_value) <= now:
            raise InvalidDateException()

        slot = (data.appointment_date, time_value)
        try:
            async with self.locks.hold(slot_key(data.veterinarian_id, *slot)):
                async with self._transaction(data.veterinarian_id, slot) as session:
                    await self.ledger.ensure_free(session, data.veterinarian_id, *slot)
                    result = await session.execute(
                        insert(appointments)
                        .values(
                            id=uuid4(),
                            owner_id=data.owner_id,
                            veterinarian_id=data.veterinarian_id,
                            pet_id=data.pet_id,
                            appointment_date=data.appointment_date,
                            appointment_time=time_value,
                            category=data.category.value,
                            status=AppointmentStatus.PENDING.value,
                            reason=data.reason,
                            comments=data.comments,
                            prescriptions=[],
                            follow_up_required=False,
                            version=1,
                            created_at=now,
                            updated_at=now,
                        )
                        .returning(appointments)
                    )
                    row = result.fetchone()
        except AppException as e:
            APPOINTMENT_FAILURES.labels(action="book", error=type(e).__name__).inc()
            raise

        appointment = Appointment.model_validate(dict(row._mapping))
        APPOINTMENT_TRANSITIONS.labels(action="book", to_status=appointment.status.value).inc()
        logger.info(
            "appointment_booked",
            appointment_id=str(appointment.id),
            veterinarian_id=str(appointment.veterinarian_id),
            appointment_date=appointment.appointment_date.isoformat(),
            appointment_time=appointment.appointment_time,
        )

        await self._notify(
            LifecycleEvent(
                type=LifecycleEventType.APPOINTMENT_CREATED,
                appointment_id=appointment.id,
                recipient_id=appointment.veterinarian_id,
            )
        )
        return appointment

    # Transitions

    async def transition(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
        action: AppointmentAction | str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> Appointment:
        """
        Apply a lifecycle action to an appointment.

        Args:
            appointment_id: Appointment ID
            actor_id: Authenticated caller
            actor_role: Caller's role
            action: Requested action
            payload: Action fields, a dict or the matching payload model

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If the appointment does not exist
            ForbiddenException: If the actor may not perform the action
            InvalidTransitionException: If the action is illegal from the current status
            SlotConflictException: If a claimed slot is taken
            ValidationFailedException: If the payload is invalid
            AlreadyRatedException: If the appointment was already rated
            LockTimeoutException: If a lock could not be acquired in time
        """
        try:
            action = AppointmentAction(action)
        except ValueError as e:
            raise ValidationFailedException(f"Unknown action: {action}") from e
        actor_role = _actor_role(actor_role)

        with structlog.contextvars.bound_contextvars(
            appointment_id=str(appointment_id),
            action=action.value,
            actor_role=actor_role.value,
        ):
            try:
                updated, event = await self._transition(
                    appointment_id, actor_id, actor_role, action, payload
                )
            except AppException as e:
                APPOINTMENT_FAILURES.labels(action=action.value, error=type(e).__name__).inc()
                logger.info("appointment_transition_rejected", error=type(e).__name__)
                raise

            APPOINTMENT_TRANSITIONS.labels(
                action=action.value, to_status=updated.status.value
            ).inc()
            logger.info("appointment_transitioned", status=updated.status.value)

        await self._notify(event)
        return updated

    async def _transition(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole,
        action: AppointmentAction,
        payload: BaseModel | dict[str, Any] | None,
    ) -> tuple[Appointment, LifecycleEvent]:
        async with self.locks.hold(_appointment_lock_key(appointment_id)):
            current = await self._load(appointment_id)
            self._authorize(current, actor_id, actor_role, action)
            data = self._parse_payload(action, payload)

            ctx = TransitionContext(
                now=self.clock(),
                pricing=(
                    PricingService.for_category(current.category)
                    if action == AppointmentAction.APPROVE
                    else None
                ),
            )
            result = apply_transition(current, action, data, ctx)

            # Reschedule claims a new slot; approval re-asserts the current one
            claimed: tuple[date, str] | None = None
            if result.new_slot is not None:
                claimed = (result.new_slot[0], self.ledger.validate_slot_time(result.new_slot[1]))
            elif action == AppointmentAction.APPROVE:
                claimed = (current.appointment_date, current.appointment_time)

            slot_lock = (
                self.locks.hold(slot_key(current.veterinarian_id, *claimed))
                if claimed is not None
                else nullcontext()
            )
            async with slot_lock:
                async with self._transaction(current.veterinarian_id, claimed) as session:
                    if claimed is not None:
                        await self.ledger.ensure_free(
                            session,
                            current.veterinarian_id,
                            *claimed,
                            excluding_appointment_id=current.id,
                        )

                    values = {
                        **result.changes,
                        "status": result.status.value,
                        "version": current.version + 1,
                        "updated_at": ctx.now,
                    }
                    if claimed is not None and result.new_slot is not None:
                        values["appointment_date"], values["appointment_time"] = claimed

                    row = (
                        await session.execute(
                            update(appointments)
                            .where(
                                and_(
                                    appointments.c.id == current.id,
                                    appointments.c.version == current.version,
                                )
                            )
                            .values(**values)
                            .returning(appointments)
                        )
                    ).fetchone()
                    if row is None:
                        raise ConcurrentModificationException()

        updated = Appointment.model_validate(dict(row._mapping))
        event = LifecycleEvent(
            type=result.event_type,
            appointment_id=updated.id,
            recipient_id=self._recipient(updated, result.event_type, actor_id),
        )
        return updated, event

    async def approve(
        self,
        appointment_id: UUID,
        veterinarian_id: UUID,
        fee: Decimal | int | str,
        veterinarian_notes: str | None = None,
        factors: dict[str, Any] | None = None,
    ) -> Appointment:
        """Approve a pending appointment and price it."""
        return await self.transition(
            appointment_id,
            veterinarian_id,
            ActorRole.VETERINARIAN,
            AppointmentAction.APPROVE,
            {"fee": fee, "veterinarian_notes": veterinarian_notes, "factors": factors or {}},
        )

    async def reject(self, appointment_id: UUID, veterinarian_id: UUID, reason: str) -> Appointment:
        """Reject a pending appointment."""
        return await self.transition(
            appointment_id,
            veterinarian_id,
            ActorRole.VETERINARIAN,
            AppointmentAction.REJECT,
            {"reason": reason},
        )

    async def confirm(self, appointment_id: UUID, owner_id: UUID) -> Appointment:
        """Confirm an approved appointment as its owner."""
        return await self.transition(
            appointment_id, owner_id, ActorRole.PET_PARENT, AppointmentAction.CONFIRM
        )

    async def cancel(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel an approved or confirmed appointment."""
        return await self.transition(
            appointment_id, actor_id, actor_role, AppointmentAction.CANCEL, {"reason": reason}
        )

    async def reschedule(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
        appointment_date: date,
        appointment_time: str,
        reason: str | None = None,
    ) -> Appointment:
        """Move a pending or confirmed appointment to a new slot."""
        return await self.transition(
            appointment_id,
            actor_id,
            actor_role,
            AppointmentAction.RESCHEDULE,
            {
                "appointment_date": appointment_date,
                "appointment_time": appointment_time,
                "reason": reason,
            },
        )

    async def complete(
        self,
        appointment_id: UUID,
        veterinarian_id: UUID,
        diagnosis: str,
        treatment: str,
        prescriptions: list[dict[str, Any]] | None = None,
        follow_up_required: bool = False,
        follow_up_date: date | None = None,
        veterinarian_notes: str | None = None,
    ) -> Appointment:
        """Complete a confirmed appointment with its clinical outcome."""
        return await self.transition(
            appointment_id,
            veterinarian_id,
            ActorRole.VETERINARIAN,
            AppointmentAction.COMPLETE,
            {
                "diagnosis": diagnosis,
                "treatment": treatment,
                "prescriptions": prescriptions or [],
                "follow_up_required": follow_up_required,
                "follow_up_date": follow_up_date,
                "veterinarian_notes": veterinarian_notes,
            },
        )

    async def rate(
        self,
        appointment_id: UUID,
        owner_id: UUID,
        stars: int,
        review: str | None = None,
    ) -> Appointment:
        """Rate a completed appointment, once."""
        return await self.transition(
            appointment_id,
            owner_id,
            ActorRole.PET_PARENT,
            AppointmentAction.RATE,
            {"stars": stars, "review": review},
        )

    # Reads

    async def get_appointment(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
    ) -> Appointment:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor is not a party to it
        """
        appointment = await self._load(appointment_id)
        role = _actor_role(actor_role)
        if role != ActorRole.ADMIN and actor_id not in (
            appointment.owner_id,
            appointment.veterinarian_id,
        ):
            raise ForbiddenException("Access denied to this appointment")
        return appointment

    async def list_appointments(
        self,
        actor_id: UUID,
        actor_role: ActorRole | str,
        filters: AppointmentFilters | None = None,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the actor, newest slot first.

        Pet parents see their own bookings, veterinarians their schedule,
        admins everything.
        """
        filters = filters or AppointmentFilters()
        role = _actor_role(actor_role)

        conditions = []
        if role == ActorRole.PET_PARENT:
            conditions.append(appointments.c.owner_id == actor_id)
        elif role == ActorRole.VETERINARIAN:
            conditions.append(appointments.c.veterinarian_id == actor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.pet_id:
            conditions.append(appointments.c.pet_id == filters.pet_id)
        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)
        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        where = and_(true(), *conditions)
        offset = (filters.page - 1) * filters.page_size

        async with self._session() as session:
            total_result = await session.execute(
                select(func.count()).select_from(appointments).where(where)
            )
            total = total_result.scalar() or 0

            result = await session.execute(
                select(appointments)
                .where(where)
                .order_by(
                    appointments.c.appointment_date.desc(),
                    appointments.c.appointment_time.desc(),
                )
                .limit(filters.page_size)
                .offset(offset)
            )
            rows = result.fetchall()

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[Appointment.model_validate(dict(row._mapping)) for row in rows],
        )

    async def get_available_slots(
        self,
        veterinarian_id: UUID,
        appointment_date: date,
    ) -> list[TimeSlot]:
        """List a veterinarian's slots for a day with their availability."""
        async with self._session() as session:
            return await self.ledger.available_slots(session, veterinarian_id, appointment_date)

    # Internals

    def _parse_payload(
        self,
        action: AppointmentAction,
        payload: BaseModel | dict[str, Any] | None,
    ) -> BaseModel:
        model = TRANSITION_PAYLOADS[action]
        if isinstance(payload, model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return model.model_validate(payload or {})
        except ValidationError as e:
            raise ValidationFailedException(_validation_message(e)) from e

    def _authorize(
        self,
        appointment: Appointment,
        actor_id: UUID,
        actor_role: ActorRole,
        action: AppointmentAction,
    ) -> None:
        if actor_role not in ACTION_ROLES[action]:
            raise ForbiddenException(f"A {actor_role.value} cannot {action.value} an appointment")

        expected = (
            appointment.owner_id
            if actor_role == ActorRole.PET_PARENT
            else appointment.veterinarian_id
        )
        if actor_id != expected:
            raise ForbiddenException("Access denied to this appointment")

    @staticmethod
    def _recipient(
        appointment: Appointment,
        event_type: LifecycleEventType,
        actor_id: UUID,
    ) -> UUID:
        if event_type in _OWNER_RECIPIENT:
            return appointment.owner_id
        if event_type in _VET_RECIPIENT:
            return appointment.veterinarian_id
        # Cancel and reschedule go to whoever did not act
        if actor_id == appointment.owner_id:
            return appointment.veterinarian_id
        return appointment.owner_id

    async def _notify(self, event: LifecycleEvent) -> None:
        if self.notifier is None:
            return
        try:
            async with asyncio.timeout(self.settings.notify_timeout_seconds):
                await self.notifier.notify(event)
        except TimeoutError:
            NOTIFICATION_FAILURES.labels(event_type=event.type.value).inc()
            logger.warning(
                "notification_timed_out",
                event_type=event.type.value,
                appointment_id=str(event.appointment_id),
                recipient_id=str(event.recipient_id),
                timeout=self.settings.notify_timeout_seconds,
            )
        except Exception as e:
            # The transition is committed; surface the failure without undoing it
            NOTIFICATION_FAILURES.labels(event_type=event.type.value).inc()
            logger.warning(
                "notification_failed",
                event_type=event.type.value,
                appointment_id=str(event.appointment_id),
                recipient_id=str(event.recipient_id),
                error=str(e),
            )

    async def _load(self, appointment_id: UUID) -> Appointment:
        async with self._session() as session:
            result = await session.execute(
                select(appointments).where(appointments.c.id == appointment_id)
            )
            row = result.fetchone()

        if not row:
            raise NotFoundException("Appointment not found")
        return Appointment.model_validate(dict(row._mapping))

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, ConnectionError) as e:
            logger.error("storage_unavailable", error=str(e))
            raise StorageUnavailableException() from e

    @asynccontextmanager
    async def _transaction(
        self,
        veterinarian_id: UUID,
        slot: tuple[date, str] | None = None,
    ) -> AsyncIterator[AsyncSession]:
        """
        One transaction; commits on clean exit, rolls back on any exception.

        A unique-index violation on a claimed slot becomes SlotConflictException.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            if slot is not None and _is_slot_violation(e):
                logger.info(
                    "slot_conflict_detected",
                    source="unique_index",
                    veterinarian_id=str(veterinarian_id),
                    appointment_date=slot[0].isoformat(),
                    appointment_time=slot[1],
                )
                raise SlotConflictException(veterinarian_id, *slot) from e
            raise
        except (OperationalError, InterfaceError, ConnectionError) as e:
            logger.error("storage_unavailable", error=str(e))
            raise StorageUnavailableException() from e
