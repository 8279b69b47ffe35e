"""Tests for slot and appointment safety under concurrent requests."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import and_, func, insert, select
from sqlalchemy.exc import IntegrityError

from vetcare.core.exceptions import (
    AlreadyRatedException,
    LockTimeoutException,
    SlotConflictException,
)
from vetcare.core.locks import LocalLockManager
from vetcare.models.appointments import appointments
from vetcare.schemas.appointments import ActorRole, AppointmentStatus
from vetcare.services.appointment_service import AppointmentService

VISIT_DATE = date(2026, 3, 10)


async def count_active(session_factory, vet_id, appointment_time: str) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count())
            .select_from(appointments)
            .where(
                and_(
                    appointments.c.veterinarian_id == vet_id,
                    appointments.c.appointment_date == VISIT_DATE,
                    appointments.c.appointment_time == appointment_time,
                    appointments.c.status.in_(["PENDING", "APPROVED", "CONFIRMED"]),
                )
            )
        )
        return result.scalar()


@pytest.mark.asyncio
async def test_concurrent_bookings_single_winner(book, session_factory, vet_id) -> None:
    """Test racing bookings for one slot leave exactly one live row."""
    results = await asyncio.gather(
        *(book(owner_id=uuid4(), pet_id=uuid4()) for _ in range(8)),
        return_exceptions=True,
    )

    booked = [r for r in results if not isinstance(r, BaseException)]
    conflicts = [r for r in results if isinstance(r, SlotConflictException)]
    assert len(booked) == 1
    assert len(conflicts) == 7
    assert await count_active(session_factory, vet_id, "09:00") == 1


@pytest.mark.asyncio
async def test_concurrent_reschedules_into_same_slot(
    service, book, session_factory, owner_id, vet_id
) -> None:
    """Test two appointments racing for one free slot."""
    first = await book(appointment_time="09:00")
    second = await book(appointment_time="09:30")

    results = await asyncio.gather(
        *(
            service.reschedule(
                appointment.id,
                owner_id,
                ActorRole.PET_PARENT,
                appointment_date=VISIT_DATE,
                appointment_time="15:00",
            )
            for appointment in (first, second)
        ),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, SlotConflictException)) == 1
    assert await count_active(session_factory, vet_id, "15:00") == 1


@pytest.mark.asyncio
async def test_concurrent_ratings_apply_once(service, confirmed, owner_id, vet_id) -> None:
    """Test only one of two simultaneous ratings is stored."""
    appointment = await confirmed()
    await service.complete(appointment.id, vet_id, diagnosis="Healthy", treatment="None")

    results = await asyncio.gather(
        service.rate(appointment.id, owner_id, stars=5),
        service.rate(appointment.id, owner_id, stars=1),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, AlreadyRatedException)) == 1
    stored = await service.get_appointment(appointment.id, owner_id, ActorRole.PET_PARENT)
    assert stored.rating in (5, 1)
    assert stored.version == 5


@pytest.mark.asyncio
async def test_unique_index_rejects_second_active_row(book, session_factory, vet_id) -> None:
    """Test the storage layer refuses a duplicate live booking on its own."""
    appointment = await book()

    async with session_factory() as session:
        result = await session.execute(
            select(appointments).where(appointments.c.id == appointment.id)
        )
        duplicate = {**dict(result.fetchone()._mapping), "id": uuid4(), "owner_id": uuid4()}

    async with session_factory() as session:
        with pytest.raises(IntegrityError):
            async with session.begin():
                await session.execute(insert(appointments).values(**duplicate))

    assert await count_active(session_factory, vet_id, "09:00") == 1


@pytest.mark.asyncio
async def test_unique_index_conflict_surfaces_as_slot_conflict(
    service, book, monkeypatch
) -> None:
    """Test an index violation is reported as a slot conflict."""
    await book()

    async def always_free(*args, **kwargs) -> None:
        return None

    # Skip the application check so only the index guards the slot
    monkeypatch.setattr(service.ledger, "ensure_free", always_free)

    with pytest.raises(SlotConflictException) as exc:
        await book(owner_id=uuid4(), pet_id=uuid4())

    assert exc.value.appointment_time == "09:00"


@pytest.mark.asyncio
async def test_lock_timeout_is_retryable(
    session_factory, test_settings, clock, notifier, book, owner_id, vet_id
) -> None:
    """Test a held appointment lock times out without changing the record."""
    appointment = await book()
    locks = LocalLockManager(timeout=0.05)
    service = AppointmentService(
        session_factory, locks, notifier=notifier, settings=test_settings, clock=clock
    )

    async with locks.hold(f"appointment:{appointment.id}"):
        with pytest.raises(LockTimeoutException) as exc:
            await service.approve(appointment.id, vet_id, fee=80)

    assert exc.value.retryable is True
    current = await service.get_appointment(appointment.id, owner_id, ActorRole.PET_PARENT)
    assert current.status == AppointmentStatus.PENDING
