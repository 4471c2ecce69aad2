from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_caller, get_session
from ..domain.errors import DomainError
from ..domain.policies import Caller
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemyMatchRepository
from ..models import MatchStatus
from ..schemas import Envelope, MatchCreate, MatchRead, Page
from ..usecases import matches as match_usecase
from ..utils.audit_log import emit_audit_log, initiator_for
from .common import audit_failed, http_error

router = APIRouter(prefix="/matches", tags=["matches"])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        raise audit_failed()


@router.post("", response_model=Envelope[MatchRead], status_code=status.HTTP_201_CREATED)
async def create_match(
    payload: MatchCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[MatchRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        async with session.begin():
            match = await match_usecase.create_match(
                booking_repo,
                match_repo,
                caller=caller,
                booking_id=payload.booking_id,
                total_slots=payload.total_slots,
                price_per_player=payload.price_per_player,
                sport_id=payload.sport_id,
                skill_level_required=payload.skill_level_required,
                match_type=payload.match_type,
                description=payload.description,
            )
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="match.created",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        booking_id=match.booking_id,
        match_id=match.id,
        status_to=match.match_status,
        extra={"total_slots": match.total_slots},
    )
    return Envelope(data=MatchRead.from_db(match=match), message="match created")


@router.get("", response_model=Envelope[Page[MatchRead]])
async def list_matches(
    match_status: Optional[MatchStatus] = Query(default=None, alias="status"),
    sport_id: Optional[int] = Query(default=None, alias="sportId"),
    city: Optional[str] = Query(default=None),
    skill_level: Optional[str] = Query(default=None, alias="skillLevel"),
    page: int = Query(default=1),
    limit: int = Query(default=20),
    session: AsyncSession = Depends(get_session),
) -> Envelope[Page[MatchRead]]:
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        rows, total = await match_usecase.list_matches(
            match_repo,
            status=match_status,
            sport_id=sport_id,
            city=city,
            skill_level=skill_level,
            page=page,
            limit=limit,
        )
    except DomainError as exc:
        raise http_error(exc)
    items = [MatchRead.from_db(match=match) for match in rows]
    return Envelope(data=Page.build(items, page=page, limit=limit, total=total))


@router.get("/{match_id}", response_model=Envelope[MatchRead])
async def get_match(
    match_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> Envelope[MatchRead]:
    try:
        match = await match_usecase.get_match(SqlAlchemyMatchRepository(session), match_id=match_id)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=MatchRead.from_db(match=match))


@router.post("/{match_id}/join", response_model=Envelope[MatchRead])
async def join_match(
    match_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[MatchRead]:
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        async with session.begin():
            match = await match_usecase.join_match(match_repo, match_id=match_id, user_id=caller.user_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="match.joined",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        match_id=match.id,
        status_to=match.match_status,
        extra={"filled_slots": match.filled_slots, "total_slots": match.total_slots},
    )
    return Envelope(data=MatchRead.from_db(match=match), message="joined match")


@router.delete("/{match_id}/leave", response_model=Envelope[MatchRead])
async def leave_match(
    match_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[MatchRead]:
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        async with session.begin():
            match = await match_usecase.leave_match(match_repo, match_id=match_id, user_id=caller.user_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="match.left",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        match_id=match.id,
        status_to=match.match_status,
        extra={"filled_slots": match.filled_slots, "total_slots": match.total_slots},
    )
    return Envelope(data=MatchRead.from_db(match=match), message="left match")


@router.put("/{match_id}/cancel", response_model=Envelope[MatchRead])
async def cancel_match(
    match_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> Envelope[MatchRead]:
    match_repo = SqlAlchemyMatchRepository(session)
    try:
        async with session.begin():
            match = await match_usecase.cancel_match(match_repo, caller=caller, match_id=match_id)
    except DomainError as exc:
        raise http_error(exc)

    _audit(
        action="match.cancelled",
        initiator=initiator_for(caller.role),
        user_id=caller.user_id,
        booking_id=match.booking_id,
        match_id=match.id,
        status_to=match.match_status,
    )
    return Envelope(data=MatchRead.from_db(match=match), message="match cancelled")
