from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_caller, get_session
from ..domain.errors import DomainError
from ..domain.policies import Caller
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemySlotRepository,
    SqlAlchemySportRepository,
    SqlAlchemyTurfRepository,
)
from ..schemas import Envelope, Page, SportCreate, SportRead, TurfCreate, TurfRead, TurfUpdate
from ..usecases import turfs as turf_usecase
from .common import http_error

router = APIRouter(prefix="", tags=["turfs"])


@router.get("/sports", response_model=Envelope[List[SportRead]])
async def list_sports(session: AsyncSession = Depends(get_session)) -> Envelope[List[SportRead]]:
    sports = await turf_usecase.list_sports(SqlAlchemySportRepository(session))
    return Envelope(data=[SportRead.from_db(sport=sport) for sport in sports])


@router.post("/sports", response_model=Envelope[SportRead], status_code=status.HTTP_201_CREATED)
async def create_sport(
    payload: SportCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[SportRead]:
    sport_repo = SqlAlchemySportRepository(session)
    try:
        async with session.begin():
            sport = await turf_usecase.create_sport(sport_repo, caller=caller, name=payload.name)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=SportRead.from_db(sport=sport), message="sport created")


@router.get("/turfs", response_model=Envelope[Page[TurfRead]])
async def list_turfs(
    city: Optional[str] = Query(default=None),
    sport_id: Optional[int] = Query(default=None, alias="sportId"),
    page: int = Query(default=1),
    limit: int = Query(default=20),
    session: AsyncSession = Depends(get_session),
) -> Envelope[Page[TurfRead]]:
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        rows, total = await turf_usecase.list_turfs(
            turf_repo,
            city=city,
            sport_id=sport_id,
            page=page,
            limit=limit,
        )
    except DomainError as exc:
        raise http_error(exc)
    items = [TurfRead.from_db(turf=turf) for turf in rows]
    return Envelope(data=Page.build(items, page=page, limit=limit, total=total))


@router.get("/turfs/{turf_id}", response_model=Envelope[TurfRead])
async def get_turf(
    turf_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> Envelope[TurfRead]:
    try:
        turf = await turf_usecase.get_turf(SqlAlchemyTurfRepository(session), turf_id=turf_id)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=TurfRead.from_db(turf=turf))


@router.post("/turfs", response_model=Envelope[TurfRead], status_code=status.HTTP_201_CREATED)
async def create_turf(
    payload: TurfCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[TurfRead]:
    turf_repo = SqlAlchemyTurfRepository(session)
    sport_repo = SqlAlchemySportRepository(session)
    try:
        async with session.begin():
            turf = await turf_usecase.create_turf(
                turf_repo,
                sport_repo,
                caller=caller,
                name=payload.name,
                address=payload.address,
                city=payload.city,
                description=payload.description,
                contact_phone=payload.contact_phone,
                sports=[(entry.sport_id, entry.max_players) for entry in payload.sports],
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=TurfRead.from_db(turf=turf), message="turf created")


@router.put("/turfs/{turf_id}", response_model=Envelope[TurfRead])
async def update_turf(
    payload: TurfUpdate,
    turf_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[TurfRead]:
    turf_repo = SqlAlchemyTurfRepository(session)
    try:
        async with session.begin():
            turf = await turf_usecase.update_turf(
                turf_repo,
                caller=caller,
                turf_id=turf_id,
                changes=payload.model_dump(exclude_unset=True),
            )
            result = TurfRead.from_db(turf=turf)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=result, message="turf updated")


@router.delete("/turfs/{turf_id}", response_model=Envelope[None])
async def delete_turf(
    turf_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[None]:
    turf_repo = SqlAlchemyTurfRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        async with session.begin():
            await turf_usecase.delete_turf(
                turf_repo,
                booking_repo,
                slot_repo,
                caller=caller,
                turf_id=turf_id,
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(message="turf deleted")
