from datetime import datetime
from decimal import Decimal

from ..domain.errors import AuthorizationError, ConflictError, NotFoundError, RosterConflictError, ValidationError
from ..domain.policies import Caller, ensure_match_manager
from ..domain.repositories import BookingRepository, MatchRepository
from ..domain.services import MatchSnapshot, validate_join, validate_match_setup, validate_page
from ..models import Match, MatchStatus, ParticipantPaymentStatus
from ..utils.time import utc_now_naive


async def get_match(match_repo: MatchRepository, *, match_id: int) -> Match:
    match = await match_repo.get(match_id)
    if match is None:
        raise NotFoundError("match not found")
    return match


async def create_match(
    booking_repo: BookingRepository,
    match_repo: MatchRepository,
    *,
    caller: Caller,
    booking_id: int,
    total_slots: int,
    price_per_player: Decimal,
    sport_id: int | None = None,
    skill_level_required: str | None = None,
    match_type: str | None = None,
    description: str | None = None,
) -> Match:
    """The booker opens their booked slot to other players and takes the first place."""
    booking = await booking_repo.get(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    if booking.booker_id != caller.user_id:
        raise AuthorizationError("only the booker can host a match on this booking")
    validate_match_setup(
        total_slots=total_slots,
        price_per_player=price_per_player,
        booking_status=booking.booking_status,
    )
    slot_sport_id = booking.slot.sport_id
    if sport_id is not None and sport_id != slot_sport_id:
        raise ValidationError("sport does not match the booked slot")
    return await match_repo.create(
        booking=booking,
        sport_id=slot_sport_id,
        total_slots=total_slots,
        price_per_player=price_per_player,
        skill_level_required=skill_level_required,
        match_type=match_type,
        description=description,
    )


async def join_match(
    match_repo: MatchRepository,
    *,
    match_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Match:
    """
    Takes one place on the roster. The capacity check and the increment are one
    conditional update, so the last place goes to exactly one of several joiners.
    """
    now = now or utc_now_naive()
    already_joined = await match_repo.is_participant(match_id, user_id)
    if already_joined:
        raise RosterConflictError("already joined this match")

    if not await match_repo.try_increment(match_id, now=now):
        match = await get_match(match_repo, match_id=match_id)
        validate_join(
            MatchSnapshot(
                status=match.match_status,
                total_slots=match.total_slots,
                filled_slots=match.filled_slots,
                user_is_participant=False,
            )
        )
        raise RosterConflictError("match is not open for joining")

    # A duplicate insert raises and rolls the increment back with it.
    await match_repo.add_participant(match_id, user_id, payment_status=ParticipantPaymentStatus.PENDING)
    return await get_match(match_repo, match_id=match_id)


async def leave_match(
    match_repo: MatchRepository,
    *,
    match_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Match:
    now = now or utc_now_naive()
    match = await get_match(match_repo, match_id=match_id)
    if match.host_id == user_id:
        raise RosterConflictError("the host cannot leave the match; cancel it instead")
    if not await match_repo.remove_participant(match_id, user_id):
        raise NotFoundError("not a participant of this match")
    if not await match_repo.decrement(match_id, now=now):
        raise ConflictError("match roster is out of step with its participant count")
    return await get_match(match_repo, match_id=match_id)


async def cancel_match(
    match_repo: MatchRepository,
    *,
    caller: Caller,
    match_id: int,
    now: datetime | None = None,
) -> Match:
    now = now or utc_now_naive()
    match = await get_match(match_repo, match_id=match_id)
    ensure_match_manager(caller, host_id=match.host_id)
    if match.match_status == MatchStatus.CANCELLED or not await match_repo.cancel(match_id, now=now):
        raise ConflictError("match already cancelled")
    return await get_match(match_repo, match_id=match_id)


async def list_matches(
    match_repo: MatchRepository,
    *,
    status: MatchStatus | None,
    sport_id: int | None,
    city: str | None,
    skill_level: str | None,
    page: int,
    limit: int,
) -> tuple[list[Match], int]:
    offset = validate_page(page, limit)
    return await match_repo.search(
        status=status or MatchStatus.OPEN,
        sport_id=sport_id,
        city=city,
        skill_level=skill_level,
        offset=offset,
        limit=limit,
    )
