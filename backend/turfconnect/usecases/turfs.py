from typing import Any, Sequence

from ..domain.errors import ConflictError, NotFoundError, ValidationError
from ..domain.policies import Caller, ensure_turf_manager, require_role
from ..domain.repositories import BookingRepository, SlotRepository, SportRepository, TurfRepository
from ..domain.services import validate_page
from ..models import Sport, Turf, UserRole
from ..utils.time import utc_now_naive

TURF_FIELDS = ("name", "address", "city", "description", "contact_phone")
REQUIRED_TURF_FIELDS = ("name", "address", "city")


async def list_sports(sport_repo: SportRepository) -> list[Sport]:
    return await sport_repo.list_all()


async def create_sport(sport_repo: SportRepository, *, caller: Caller, name: str) -> Sport:
    require_role(caller, (UserRole.ADMIN,))
    name = name.strip()
    if not name:
        raise ValidationError("name is required")
    return await sport_repo.create(name)


async def get_turf(turf_repo: TurfRepository, *, turf_id: int) -> Turf:
    turf = await turf_repo.get(turf_id)
    if turf is None:
        raise NotFoundError("turf not found")
    return turf


async def list_turfs(
    turf_repo: TurfRepository,
    *,
    city: str | None,
    sport_id: int | None,
    page: int,
    limit: int,
) -> tuple[list[Turf], int]:
    offset = validate_page(page, limit)
    return await turf_repo.search(city=city, sport_id=sport_id, offset=offset, limit=limit)


async def create_turf(
    turf_repo: TurfRepository,
    sport_repo: SportRepository,
    *,
    caller: Caller,
    name: str,
    address: str,
    city: str,
    description: str | None,
    contact_phone: str | None,
    sports: Sequence[tuple[int, int]],
) -> Turf:
    require_role(caller, (UserRole.TURF_OWNER, UserRole.ADMIN))
    values = {"name": name.strip(), "address": address.strip(), "city": city.strip()}
    for field in REQUIRED_TURF_FIELDS:
        if not values[field]:
            raise ValidationError(f"{field} is required")

    sport_ids = [sport_id for sport_id, _ in sports]
    if len(set(sport_ids)) != len(sport_ids):
        raise ValidationError("each sport may be listed once")
    if any(max_players < 1 for _, max_players in sports):
        raise ValidationError("max_players must be at least 1")
    missing = set(sport_ids) - await sport_repo.existing_ids(sport_ids)
    if missing:
        raise ValidationError("unknown sport")

    return await turf_repo.create(
        owner_id=caller.user_id,
        name=values["name"],
        address=values["address"],
        city=values["city"],
        description=description,
        contact_phone=contact_phone,
        sports=list(sports),
    )


async def update_turf(
    turf_repo: TurfRepository,
    *,
    caller: Caller,
    turf_id: int,
    changes: dict[str, Any],
) -> Turf:
    turf = await get_turf(turf_repo, turf_id=turf_id)
    ensure_turf_manager(caller, owner_id=turf.owner_id)
    unknown = set(changes) - set(TURF_FIELDS)
    if unknown:
        raise ValidationError(f"cannot update {', '.join(sorted(unknown))}")
    for field in REQUIRED_TURF_FIELDS:
        if field in changes and not (changes[field] or "").strip():
            raise ValidationError(f"{field} is required")
    if not changes:
        return turf
    return await turf_repo.update(turf, changes)


async def delete_turf(
    turf_repo: TurfRepository,
    booking_repo: BookingRepository,
    slot_repo: SlotRepository,
    *,
    caller: Caller,
    turf_id: int,
) -> int:
    """
    Deactivates the turf and blocks every slot that is not booked, live holds included;
    returns how many slots were blocked. Slots are closed and the turf deactivated before
    the booking check, so a booking confirmed concurrently is either seen by the check
    or refused by the slot guards. Meant to run inside one transaction.
    """
    turf = await get_turf(turf_repo, turf_id=turf_id)
    ensure_turf_manager(caller, owner_id=turf.owner_id)
    blocked = await slot_repo.block_open_for_turf(turf_id, now=utc_now_naive())
    await turf_repo.delete(turf)
    if await booking_repo.has_active_for_turf(turf_id):
        raise ConflictError("turf has active bookings")
    return blocked
