"""Slot ledger: conflict detection over non-terminal appointments."""

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from vetcare.config import Settings, settings as default_settings
from vetcare.core.exceptions import SlotConflictException, ValidationFailedException
from vetcare.models.appointments import appointments
from vetcare.schemas.appointments import ACTIVE_STATUSES, TimeSlot, normalize_time

logger = structlog.get_logger(__name__)

ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_STATUSES)


def slot_key(veterinarian_id: UUID, appointment_date: date, appointment_time: str) -> str:
    """Lock key for one veterinarian slot."""
    return f"slot:{veterinarian_id}:{appointment_date.isoformat()}:{appointment_time}"


def slot_start(appointment_date: date, appointment_time: str) -> datetime:
    """Start of a slot as an aware UTC datetime."""
    hour, minute = (int(part) for part in appointment_time.split(":", 1))
    return datetime(
        appointment_date.year,
        appointment_date.month,
        appointment_date.day,
        hour,
        minute,
        tzinfo=UTC,
    )


def _minutes(value: str) -> int:
    hour, minute = (int(part) for part in normalize_time(value).split(":", 1))
    return hour * 60 + minute


class SlotLedger:
    """
    Answers whether a veterinarian's slot is free.

    The ledger is derived from appointment statuses: a PENDING, APPROVED or
    CONFIRMED row holds its slot. There is no reservation table; callers run
    the check and the claiming write in one transaction under the slot lock,
    and the partial unique index ``uq_appointments_active_slot`` rejects any
    write that slips past.
    """

    def __init__(self, settings: Settings | None = None):
        """Initialize with slot granularity and working hours."""
        self.settings = settings or default_settings

    def validate_slot_time(self, appointment_time: str) -> str:
        """
        Normalize ``HH:MM`` and check it sits on the slot grid.

        Raises:
            ValidationFailedException: If the format is wrong or the time is off-grid
        """
        try:
            normalized = normalize_time(appointment_time)
        except ValueError as e:
            raise ValidationFailedException(str(e)) from e
        if _minutes(normalized) % self.settings.slot_minutes:
            raise ValidationFailedException(
                f"Appointment time must align to {self.settings.slot_minutes}-minute slots"
            )
        return normalized

    async def find_conflict(
        self,
        conn: AsyncSession | AsyncConnection,
        veterinarian_id: UUID,
        appointment_date: date,
        appointment_time: str,
        excluding_appointment_id: UUID | None = None,
    ) -> Any | None:
        """
        Find a non-terminal appointment holding the slot.

        Args:
            conn: Session or connection inside the caller's transaction
            veterinarian_id: Veterinarian ID
            appointment_date: Slot day
            appointment_time: Slot time, ``HH:MM``
            excluding_appointment_id: Appointment to ignore, for reschedules

        Returns:
            The conflicting row or None
        """
        conditions = [
            appointments.c.veterinarian_id == veterinarian_id,
            appointments.c.appointment_date == appointment_date,
            appointments.c.appointment_time == appointment_time,
            appointments.c.status.in_(ACTIVE_STATUS_VALUES),
        ]
        if excluding_appointment_id is not None:
            conditions.append(appointments.c.id != excluding_appointment_id)

        stmt = select(appointments.c.id, appointments.c.status).where(and_(*conditions)).limit(1)
        result = await conn.execute(stmt)
        return result.fetchone()

    async def is_free(
        self,
        conn: AsyncSession | AsyncConnection,
        veterinarian_id: UUID,
        appointment_date: date,
        appointment_time: str,
        excluding_appointment_id: UUID | None = None,
    ) -> bool:
        """True iff no other non-terminal appointment holds the slot."""
        row = await self.find_conflict(
            conn, veterinarian_id, appointment_date, appointment_time, excluding_appointment_id
        )
        return row is None

    async def ensure_free(
        self,
        conn: AsyncSession | AsyncConnection,
        veterinarian_id: UUID,
        appointment_date: date,
        appointment_time: str,
        excluding_appointment_id: UUID | None = None,
    ) -> None:
        """
        Raise if the slot is taken.

        Raises:
            SlotConflictException: If another non-terminal appointment holds the slot
        """
        row = await self.find_conflict(
            conn, veterinarian_id, appointment_date, appointment_time, excluding_appointment_id
        )
        if row is not None:
            logger.info(
                "slot_conflict_detected",
                veterinarian_id=str(veterinarian_id),
                appointment_date=appointment_date.isoformat(),
                appointment_time=appointment_time,
                holder_id=str(row.id),
            )
            raise SlotConflictException(veterinarian_id, appointment_date, appointment_time)

    def day_slots(self) -> list[tuple[str, str]]:
        """All ``(start, end)`` pairs in the working day."""
        start = _minutes(self.settings.workday_start)
        end = _minutes(self.settings.workday_end)
        step = self.settings.slot_minutes
        base = datetime(2000, 1, 1)
        slots = []
        for minute in range(start, end - step + 1, step):
            slot_begin = base + timedelta(minutes=minute)
            slot_end = slot_begin + timedelta(minutes=step)
            slots.append((slot_begin.strftime("%H:%M"), slot_end.strftime("%H:%M")))
        return slots

    async def available_slots(
        self,
        conn: AsyncSession | AsyncConnection,
        veterinarian_id: UUID,
        appointment_date: date,
    ) -> list[TimeSlot]:
        """
        List the working-day slots of a veterinarian with their availability.

        Args:
            conn: Session or connection
            veterinarian_id: Veterinarian ID
            appointment_date: Day to list

        Returns:
            Slots in chronological order
        """
        stmt = select(appointments.c.appointment_time).where(
            and_(
                appointments.c.veterinarian_id == veterinarian_id,
                appointments.c.appointment_date == appointment_date,
                appointments.c.status.in_(ACTIVE_STATUS_VALUES),
            )
        )
        result = await conn.execute(stmt)
        booked = {row.appointment_time for row in result.fetchall()}

        return [
            TimeSlot(start_time=start, end_time=end, available=start not in booked)
            for start, end in self.day_slots()
        ]
