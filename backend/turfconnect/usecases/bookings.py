import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Callable

from ..domain.errors import ConflictError, NotFoundError
from ..domain.policies import Caller, ensure_booking_access
from ..domain.repositories import BookingRepository, MatchRepository, SlotRepository
from ..domain.services import hold_is_valid, resolve_price, snapshot_of, validate_page
from ..models import Booking, BookingStatus, BookingType, PaymentMethod
from ..utils.time import utc_now_naive
from . import slots as slot_usecase

logger = logging.getLogger(__name__)

# Opens one unit of work, e.g. ``session.begin``.
Transaction = Callable[[], AsyncContextManager[Any]]


@dataclass(frozen=True)
class BookingCancellation:
    booking: Booking
    matches_cancelled: int


async def create_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    transaction: Transaction,
    slot_id: int,
    booker_id: int,
    booking_type: BookingType,
    payment_method: PaymentMethod,
    hold_ttl_seconds: int,
    hold_token: str | None = None,
) -> Booking:
    """
    Hold, then book, then confirm. The hold is committed on its own so that a competing
    caller is rejected at once; the booking row and the slot confirmation commit
    together. If the second step fails a hold taken here is handed back before the error
    surfaces; a hold the caller brought in stays theirs until it expires.
    """
    acquired = hold_token is None
    if acquired:
        async with transaction():
            hold = await slot_usecase.hold_slot(
                slot_repo,
                slot_id=slot_id,
                holder_id=booker_id,
                ttl_seconds=hold_ttl_seconds,
            )
        hold_token = hold.token

    try:
        async with transaction():
            return await _book_held_slot(
                slot_repo,
                booking_repo,
                slot_id=slot_id,
                booker_id=booker_id,
                booking_type=booking_type,
                payment_method=payment_method,
                hold_token=hold_token,
            )
    except Exception:
        if acquired:
            await _release_after_failure(slot_repo, transaction, slot_id=slot_id, booker_id=booker_id)
        raise


async def _book_held_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    slot_id: int,
    booker_id: int,
    booking_type: BookingType,
    payment_method: PaymentMethod,
    hold_token: str,
) -> Booking:
    now = utc_now_naive()
    slot = await slot_usecase.get_slot(slot_repo, slot_id=slot_id)
    if not hold_is_valid(snapshot_of(slot), token=hold_token, holder_id=booker_id, now=now):
        raise ConflictError("slot hold is missing or has expired")

    booking = await booking_repo.create(
        slot=slot,
        booker_id=booker_id,
        booking_type=booking_type,
        payment_method=payment_method,
        total_price=resolve_price(slot.base_price, slot.dynamic_price),
    )
    await slot_usecase.confirm_booking(
        slot_repo,
        slot_id=slot_id,
        booking_id=booking.id,
        hold_token=hold_token,
        now=now,
    )
    created = await booking_repo.get(booking.id)
    return created if created is not None else booking


async def _release_after_failure(
    slot_repo: SlotRepository,
    transaction: Transaction,
    *,
    slot_id: int,
    booker_id: int,
) -> None:
    try:
        async with transaction():
            await slot_repo.release_hold(slot_id, holder_id=booker_id, now=utc_now_naive())
    except Exception:
        # The original failure is what the caller needs to see; the hold lapses on its own.
        logger.exception("could not release hold on slot %s after a failed booking", slot_id)


async def get_booking(booking_repo: BookingRepository, *, caller: Caller, booking_id: int) -> Booking:
    booking = await booking_repo.get(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    ensure_booking_access(caller, booker_id=booking.booker_id)
    return booking


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    booker_id: int,
    status: BookingStatus | None,
    page: int,
    limit: int,
) -> tuple[list[Booking], int]:
    offset = validate_page(page, limit)
    return await booking_repo.list_by_booker(booker_id, status=status, offset=offset, limit=limit)


async def cancel_booking(
    booking_repo: BookingRepository,
    slot_repo: SlotRepository,
    match_repo: MatchRepository,
    *,
    caller: Caller,
    booking_id: int,
    reason: str | None,
    now: datetime | None = None,
) -> BookingCancellation:
    """
    Cancels the booking, frees its slot and calls off any match hosted on it. Meant to
    run inside a single transaction so the three changes land together.
    """
    now = now or utc_now_naive()
    booking = await get_booking(booking_repo, caller=caller, booking_id=booking_id)
    if booking.booking_status == BookingStatus.CANCELLED:
        raise ConflictError("booking already cancelled")
    if not await booking_repo.mark_cancelled(booking_id, reason=reason, now=now):
        # A concurrent cancellation got there first.
        raise ConflictError("booking already cancelled")

    released = await slot_usecase.release_booking(
        slot_repo,
        slot_id=booking.slot_id,
        booking_id=booking_id,
        now=now,
    )
    if not released:
        # Raising rolls back the cancellation above.
        raise ConflictError("slot is not bound to this booking")
    matches_cancelled = await match_repo.cancel_for_booking(booking_id, now=now)

    updated = await booking_repo.get(booking_id)
    return BookingCancellation(
        booking=updated if updated is not None else booking,
        matches_cancelled=matches_cancelled,
    )
