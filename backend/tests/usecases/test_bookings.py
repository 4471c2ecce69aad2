from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

import pytest
from turfconnect.domain.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from turfconnect.domain.policies import Caller
from turfconnect.models import (
    Booking,
    BookingStatus,
    BookingType,
    PaymentMethod,
    PaymentStatus,
    Slot,
    SlotState,
    UserRole,
)
from turfconnect.usecases import bookings as uc
from turfconnect.utils.time import utc_now_naive

BOOKER = Caller(user_id=7, role=UserRole.PLAYER)


def _slot(*, dynamic_price: Decimal | None = None) -> Slot:
    now = utc_now_naive()
    return Slot(
        id=1,
        turf_id=10,
        sport_id=3,
        slot_date=date(2026, 5, 2),
        start_time=time(18, 0),
        end_time=time(19, 0),
        base_price=Decimal("800.00"),
        dynamic_price=dynamic_price,
        state=SlotState.AVAILABLE,
        hold_token=None,
        held_by=None,
        hold_expires_at=None,
        booking_id=None,
        created_at=now,
        updated_at=now,
    )


class FakeTransaction:
    """Callable like session.begin: each call opens one unit of work."""

    def __init__(self) -> None:
        self.opened = 0
        self.failed = 0

    def __call__(self) -> "FakeTransaction":
        return self

    async def __aenter__(self) -> "FakeTransaction":
        self.opened += 1
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        if exc_type is not None:
            self.failed += 1
        return False


class FakeSlotRepo:
    def __init__(self, slot: Slot) -> None:
        self.slot = slot

    async def get(self, slot_id: int) -> Slot | None:
        return self.slot if slot_id == self.slot.id else None

    async def try_hold(self, slot_id: int, *, holder_id: int, token: str, now: datetime, expires_at: datetime) -> bool:
        slot = self.slot
        free = slot.state == SlotState.AVAILABLE or (
            slot.state == SlotState.HELD and slot.hold_expires_at is not None and slot.hold_expires_at <= now
        )
        if slot_id != slot.id or not free:
            return False
        slot.state, slot.hold_token, slot.held_by, slot.hold_expires_at = SlotState.HELD, token, holder_id, expires_at
        return True

    async def release_hold(self, slot_id: int, *, holder_id: int, now: datetime) -> bool:
        slot = self.slot
        if slot.state != SlotState.HELD or slot.held_by != holder_id:
            return False
        slot.state, slot.hold_token, slot.held_by, slot.hold_expires_at = SlotState.AVAILABLE, None, None, None
        return True

    async def confirm(self, slot_id: int, *, booking_id: int, token: str, now: datetime) -> bool:
        slot = self.slot
        if slot.state != SlotState.HELD or slot.hold_token != token:
            return False
        slot.state, slot.booking_id = SlotState.BOOKED, booking_id
        slot.hold_token, slot.held_by, slot.hold_expires_at = None, None, None
        return True

    async def release_booking(self, slot_id: int, *, booking_id: int, now: datetime) -> bool:
        slot = self.slot
        if slot.state != SlotState.BOOKED or slot.booking_id != booking_id:
            return False
        slot.state, slot.booking_id = SlotState.AVAILABLE, None
        return True


class FakeBookingRepo:
    def __init__(self, *, fail_create: Exception | None = None) -> None:
        self.bookings: dict[int, Booking] = {}
        self.fail_create = fail_create

    async def create(
        self,
        *,
        slot: Slot,
        booker_id: int,
        booking_type: BookingType,
        payment_method: PaymentMethod,
        total_price: Decimal,
    ) -> Booking:
        if self.fail_create is not None:
            raise self.fail_create
        now = utc_now_naive()
        booking = Booking(
            id=len(self.bookings) + 100,
            slot_id=slot.id,
            active_slot_id=slot.id,
            turf_id=slot.turf_id,
            booker_id=booker_id,
            booking_type=booking_type,
            total_price=total_price,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            booking_status=BookingStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.bookings[booking.id] = booking
        return booking

    async def get(self, booking_id: int) -> Booking | None:
        return self.bookings.get(booking_id)

    async def mark_cancelled(self, booking_id: int, *, reason: str | None, now: datetime) -> bool:
        booking = self.bookings.get(booking_id)
        if booking is None or booking.booking_status != BookingStatus.ACTIVE:
            return False
        booking.booking_status = BookingStatus.CANCELLED
        booking.active_slot_id = None
        booking.cancellation_reason = reason
        booking.cancelled_at = now
        return True

    async def list_by_booker(self, booker_id: int, **kwargs: Any) -> tuple[list[Booking], int]:  # pragma: no cover
        rows = [b for b in self.bookings.values() if b.booker_id == booker_id]
        return rows, len(rows)


class FakeMatchRepo:
    def __init__(self) -> None:
        self.cancelled_for: list[int] = []

    async def cancel_for_booking(self, booking_id: int, *, now: datetime) -> int:
        self.cancelled_for.append(booking_id)
        return 1


async def _book(slot_repo: FakeSlotRepo, booking_repo: FakeBookingRepo, tx: FakeTransaction, **kwargs: Any) -> Booking:
    return await uc.create_booking(
        slot_repo,
        booking_repo,
        transaction=tx,
        slot_id=1,
        booker_id=kwargs.pop("booker_id", BOOKER.user_id),
        booking_type=BookingType.FULL_TURF,
        payment_method=PaymentMethod.UPI,
        hold_ttl_seconds=300,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_booking_holds_then_confirms() -> None:
    slot_repo = FakeSlotRepo(_slot(dynamic_price=Decimal("950.00")))
    booking_repo = FakeBookingRepo()
    tx = FakeTransaction()

    booking = await _book(slot_repo, booking_repo, tx)

    assert booking.booking_status == BookingStatus.ACTIVE
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.total_price == Decimal("950.00")
    assert slot_repo.slot.state == SlotState.BOOKED
    assert slot_repo.slot.booking_id == booking.id
    assert tx.opened == 2
    assert tx.failed == 0


@pytest.mark.asyncio
async def test_create_booking_with_existing_hold_skips_hold_step() -> None:
    slot_repo = FakeSlotRepo(_slot())
    slot_repo.slot.state = SlotState.HELD
    slot_repo.slot.hold_token = "tok"
    slot_repo.slot.held_by = BOOKER.user_id
    slot_repo.slot.hold_expires_at = utc_now_naive() + timedelta(minutes=5)
    tx = FakeTransaction()

    booking = await _book(slot_repo, FakeBookingRepo(), tx, hold_token="tok")

    assert booking.total_price == Decimal("800.00")
    assert tx.opened == 1


@pytest.mark.asyncio
async def test_create_booking_rejected_while_someone_else_holds() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    await _book(slot_repo, booking_repo, FakeTransaction())

    with pytest.raises(ConflictError):
        await _book(slot_repo, booking_repo, FakeTransaction(), booker_id=8)
    assert len(booking_repo.bookings) == 1


@pytest.mark.asyncio
async def test_failed_insert_releases_the_hold() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo(fail_create=ConflictError("slot already has an active booking"))
    tx = FakeTransaction()

    with pytest.raises(ConflictError, match="active booking"):
        await _book(slot_repo, booking_repo, tx)

    assert slot_repo.slot.state == SlotState.AVAILABLE
    assert slot_repo.slot.hold_token is None
    # hold, failed booking, compensating release
    assert tx.opened == 3
    assert tx.failed == 1


@pytest.mark.asyncio
async def test_stale_hold_token_conflicts_and_keeps_the_hold() -> None:
    slot_repo = FakeSlotRepo(_slot())
    slot_repo.slot.state = SlotState.HELD
    slot_repo.slot.hold_token = "current"
    slot_repo.slot.held_by = BOOKER.user_id
    slot_repo.slot.hold_expires_at = utc_now_naive() + timedelta(minutes=5)
    tx = FakeTransaction()

    with pytest.raises(ConflictError, match="hold"):
        await _book(slot_repo, FakeBookingRepo(), tx, hold_token="stale")
    assert slot_repo.slot.state == SlotState.HELD
    assert slot_repo.slot.hold_token == "current"
    assert slot_repo.slot.held_by == BOOKER.user_id
    # no compensating release for a hold the caller brought in
    assert tx.opened == 1

    booking = await _book(slot_repo, FakeBookingRepo(), FakeTransaction(), hold_token="current")
    assert booking.booker_id == BOOKER.user_id
    assert slot_repo.slot.state == SlotState.BOOKED


@pytest.mark.asyncio
async def test_failed_insert_keeps_a_caller_supplied_hold() -> None:
    slot_repo = FakeSlotRepo(_slot())
    slot_repo.slot.state = SlotState.HELD
    slot_repo.slot.hold_token = "mine"
    slot_repo.slot.held_by = BOOKER.user_id
    slot_repo.slot.hold_expires_at = utc_now_naive() + timedelta(minutes=5)
    booking_repo = FakeBookingRepo(fail_create=ConflictError("slot already has an active booking"))

    with pytest.raises(ConflictError, match="active booking"):
        await _book(slot_repo, booking_repo, FakeTransaction(), hold_token="mine")
    assert slot_repo.slot.state == SlotState.HELD
    assert slot_repo.slot.hold_token == "mine"


@pytest.mark.asyncio
async def test_cancel_booking_frees_slot_and_cancels_match() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    match_repo = FakeMatchRepo()
    booking = await _book(slot_repo, booking_repo, FakeTransaction())

    outcome = await uc.cancel_booking(
        booking_repo,
        slot_repo,
        match_repo,
        caller=BOOKER,
        booking_id=booking.id,
        reason="rain",
    )

    assert outcome.booking.booking_status == BookingStatus.CANCELLED
    assert outcome.booking.cancellation_reason == "rain"
    assert outcome.matches_cancelled == 1
    assert match_repo.cancelled_for == [booking.id]
    assert slot_repo.slot.state == SlotState.AVAILABLE
    assert slot_repo.slot.booking_id is None


@pytest.mark.asyncio
async def test_second_cancel_conflicts() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    booking = await _book(slot_repo, booking_repo, FakeTransaction())
    await uc.cancel_booking(booking_repo, slot_repo, FakeMatchRepo(), caller=BOOKER, booking_id=booking.id, reason=None)

    with pytest.raises(ConflictError, match="already cancelled"):
        await uc.cancel_booking(booking_repo, slot_repo, FakeMatchRepo(), caller=BOOKER, booking_id=booking.id, reason=None)


@pytest.mark.asyncio
async def test_cancel_by_another_player_is_forbidden() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    booking = await _book(slot_repo, booking_repo, FakeTransaction())
    stranger = Caller(user_id=99, role=UserRole.PLAYER)

    with pytest.raises(AuthorizationError):
        await uc.cancel_booking(booking_repo, slot_repo, FakeMatchRepo(), caller=stranger, booking_id=booking.id, reason=None)
    assert slot_repo.slot.state == SlotState.BOOKED


@pytest.mark.asyncio
async def test_admin_can_read_any_booking() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    booking = await _book(slot_repo, booking_repo, FakeTransaction())
    admin = Caller(user_id=1, role=UserRole.ADMIN)

    assert await uc.get_booking(booking_repo, caller=admin, booking_id=booking.id) is booking
    with pytest.raises(NotFoundError):
        await uc.get_booking(booking_repo, caller=admin, booking_id=12345)


@pytest.mark.asyncio
async def test_list_bookings_rejects_oversized_page() -> None:
    with pytest.raises(ValidationError):
        await uc.list_bookings(FakeBookingRepo(), booker_id=7, status=None, page=1, limit=500)


@pytest.mark.asyncio
async def test_cancel_conflicts_when_slot_is_not_bound_to_booking() -> None:
    slot_repo = FakeSlotRepo(_slot())
    booking_repo = FakeBookingRepo()
    match_repo = FakeMatchRepo()
    booking = await _book(slot_repo, booking_repo, FakeTransaction())
    slot_repo.slot.booking_id = booking.id + 1

    with pytest.raises(ConflictError, match="not bound"):
        await uc.cancel_booking(booking_repo, slot_repo, match_repo, caller=BOOKER, booking_id=booking.id, reason=None)
    assert match_repo.cancelled_for == []
    assert slot_repo.slot.state == SlotState.BOOKED
