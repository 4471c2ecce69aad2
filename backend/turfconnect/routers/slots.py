from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_caller, get_session
from ..domain.errors import DomainError
from ..domain.policies import Caller
from ..infrastructure.repositories import SqlAlchemySlotRepository, SqlAlchemyTurfRepository
from ..models import SlotState
from ..schemas import Envelope, SlotCreate, SlotHoldRead, SlotHoldRelease, SlotRead
from ..usecases import slots as slot_usecase
from ..utils.audit_log import emit_audit_log, initiator_for
from ..utils.time import utc_now_naive, venue_today
from .common import audit_failed, http_error

router = APIRouter(prefix="", tags=["slots"])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        raise audit_failed()


@router.get("/turfs/{turf_id}/slots", response_model=Envelope[List[SlotRead]])
async def list_turf_slots(
    turf_id: int = Path(..., ge=1),
    slot_date: Optional[date] = Query(default=None, alias="date"),
    sport_id: Optional[int] = Query(default=None, alias="sportId"),
    session: AsyncSession = Depends(get_session),
) -> Envelope[List[SlotRead]]:
    slot_repo = SqlAlchemySlotRepository(session)
    turf_repo = SqlAlchemyTurfRepository(session)
    now = utc_now_naive()
    try:
        slots = await slot_usecase.list_turf_slots(
            slot_repo,
            turf_repo,
            turf_id=turf_id,
            slot_date=slot_date,
            sport_id=sport_id,
            now=now,
        )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=[SlotRead.from_db(slot=slot, now=now) for slot in slots])


@router.post("/turfs/{turf_id}/slots", response_model=Envelope[SlotRead], status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    turf_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        async with session.begin():
            slot = await slot_usecase.create_slot(
                slot_repo,
                turf_repo,
                caller=caller,
                turf_id=turf_id,
                sport_id=payload.sport_id,
                slot_date=payload.slot_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                base_price=payload.base_price,
                dynamic_price=payload.dynamic_price,
                today=venue_today(get_settings().venue_timezone),
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=SlotRead.from_db(slot=slot, now=utc_now_naive()), message="slot created")


@router.get("/slots/{slot_id}", response_model=Envelope[SlotRead])
async def get_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> Envelope[SlotRead]:
    try:
        slot = await slot_usecase.get_slot(SqlAlchemySlotRepository(session), slot_id=slot_id)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=SlotRead.from_db(slot=slot, now=utc_now_naive()))


@router.post("/slots/{slot_id}/hold", response_model=Envelope[SlotHoldRead])
async def hold_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SlotHoldRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        async with session.begin():
            hold = await slot_usecase.hold_slot(
                slot_repo,
                slot_id=slot_id,
                holder_id=caller.user_id,
                ttl_seconds=get_settings().hold_ttl_seconds,
            )
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="slot.held",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=slot_id,
        status_from=SlotState.AVAILABLE,
        status_to=SlotState.HELD,
        extra={"hold_expires_at": hold.expires_at.isoformat()},
    )
    return Envelope(data=SlotHoldRead(slot_id=hold.slot_id, hold_token=hold.token, expires_at=hold.expires_at))


@router.delete("/slots/{slot_id}/hold", response_model=Envelope[SlotHoldRelease])
async def release_hold(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SlotHoldRelease]:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        async with session.begin():
            released = await slot_usecase.release_hold(slot_repo, slot_id=slot_id, holder_id=caller.user_id)
    except DomainError as exc:
        raise http_error(exc)

    if released:
        _audit(
            action="slot.hold_released",
            initiator=initiator_for(caller.role),
            user_id=caller.user_id,
            slot_id=slot_id,
            status_from=SlotState.HELD,
            status_to=SlotState.AVAILABLE,
        )
    return Envelope(data=SlotHoldRelease(slot_id=slot_id, released=released))


@router.put("/slots/{slot_id}/block", response_model=Envelope[SlotRead])
async def block_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        async with session.begin():
            slot = await slot_usecase.block_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="slot.blocked",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=slot_id,
        status_from=SlotState.AVAILABLE,
        status_to=SlotState.BLOCKED,
    )
    return Envelope(data=SlotRead.from_db(slot=slot, now=utc_now_naive()), message="slot blocked")


@router.put("/slots/{slot_id}/unblock", response_model=Envelope[SlotRead])
async def unblock_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        async with session.begin():
            slot = await slot_usecase.unblock_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="slot.unblocked",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=slot_id,
        status_from=SlotState.BLOCKED,
        status_to=SlotState.AVAILABLE,
    )
    return Envelope(data=SlotRead.from_db(slot=slot, now=utc_now_naive()), message="slot unblocked")


@router.delete("/slots/{slot_id}", response_model=Envelope[None])
async def delete_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[None]:
    slot_repo = SqlAlchemySlotRepository(session)
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        async with session.begin():
            slot = await slot_usecase.delete_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="slot.deleted",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        slot_id=slot_id,
        status_from=slot.state,
    )
    return Envelope(message="slot deleted")

