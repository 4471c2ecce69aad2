from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_caller, get_session
from ..domain.errors import DomainError
from ..domain.policies import Caller
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyMatchRepository,
    SqlAlchemySlotRepository,
)
from ..models import BookingStatus
from ..schemas import BookingCancel, BookingCreate, BookingRead, Envelope, Page
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log, initiator_for
from .common import audit_failed, http_error

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        raise audit_failed()


@router.post("", response_model=Envelope[BookingRead], status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[BookingRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        # The usecase commits in steps (hold, then book), so it drives the transactions.
        booking = await booking_usecase.create_booking(
            slot_repo,
            booking_repo,
            transaction=session.begin,
            slot_id=payload.slot_id,
            booker_id=caller.user_id,
            booking_type=payload.booking_type,
            payment_method=payload.payment_method,
            hold_ttl_seconds=get_settings().hold_ttl_seconds,
            hold_token=payload.hold_token,
        )
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="booking.created",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=booking.slot_id,
        booking_id=booking.id,
        status_to=booking.booking_status,
        extra={"total_price": str(booking.total_price), "payment_method": str(booking.payment_method)},
    )
    return Envelope(data=BookingRead.from_db(booking=booking), message="booking created")


@router.get("", response_model=Envelope[Page[BookingRead]])
async def list_bookings(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[Page[BookingRead]]:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        rows, total = await booking_usecase.list_bookings(
            booking_repo,
            booker_id=caller.user_id,
            status=booking_status,
            page=page,
            limit=limit,
        )
    except DomainError as exc:
        raise http_error(exc)
    items = [BookingRead.from_db(booking=booking) for booking in rows]
    return Envelope(data=Page.build(items, page=page, limit=limit, total=total))


@router.get("/{booking_id}", response_model=Envelope[BookingRead])
async def get_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await booking_usecase.get_booking(booking_repo, caller=caller, booking_id=booking_id)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=BookingRead.from_db(booking=booking))


@router.put("/{booking_id}/cancel", response_model=Envelope[BookingRead])
async def cancel_booking(
    payload: BookingCancel,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        async with session.begin():
            outcome = await booking_usecase.cancel_booking(
                booking_repo,
                slot_repo,
                match_repo,
                caller=caller,
                booking_id=booking_id,
                reason=payload.reason,
            )
    except DomainError as exc:
        raise http_error(exc)

    booking = outcome.booking
    _audit(
        action="booking.cancelled",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=booking.slot_id,
        booking_id=booking.id,
        status_from=BookingStatus.ACTIVE,
        status_to=booking.booking_status,
        message=payload.reason,
        extra={"matches_cancelled": outcome.matches_cancelled},
    )
    return Envelope(data=BookingRead.from_db(booking=booking), message="booking cancelled")
