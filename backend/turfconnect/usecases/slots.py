import secrets
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from ..domain.errors import ConflictError, NotFoundError, ValidationError
from ..domain.policies import Caller, ensure_turf_manager
from ..domain.repositories import SlotRepository, TurfRepository
from ..domain.services import (
    effective_state,
    explain_hold_rejection,
    snapshot_of,
    validate_price,
    validate_slot_window,
)
from ..models import Slot, SlotState
from ..utils.time import utc_now_naive


@dataclass(frozen=True)
class SlotHold:
    slot_id: int
    holder_id: int
    token: str
    expires_at: datetime


async def get_slot(slot_repo: SlotRepository, *, slot_id: int) -> Slot:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")
    return slot


async def create_slot(
    slot_repo: SlotRepository,
    turf_repo: TurfRepository,
    *,
    caller: Caller,
    turf_id: int,
    sport_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    base_price: Decimal,
    dynamic_price: Decimal | None,
    today: date,
) -> Slot:
    turf = await turf_repo.get(turf_id)
    if turf is None:
        raise NotFoundError("turf not found")
    ensure_turf_manager(caller, owner_id=turf.owner_id)
    validate_slot_window(slot_date=slot_date, start_time=start_time, end_time=end_time, today=today)
    validate_price(base_price, field="base_price")
    validate_price(dynamic_price, field="dynamic_price")
    if not await turf_repo.offers_sport(turf_id, sport_id):
        raise ValidationError("turf does not offer this sport")
    return await slot_repo.create(
        turf_id=turf_id,
        sport_id=sport_id,
        slot_date=slot_date,
        start_time=start_time,
        end_time=end_time,
        base_price=base_price,
        dynamic_price=dynamic_price,
    )


async def hold_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    holder_id: int,
    ttl_seconds: int,
    now: datetime | None = None,
) -> SlotHold:
    """
    Reserve a slot for one holder until the hold expires. Of any number of concurrent
    callers at most one gets a hold; the others see ConflictError.
    """
    now = now or utc_now_naive()
    token = secrets.token_hex(16)
    expires_at = now + timedelta(seconds=ttl_seconds)
    if await slot_repo.try_hold(slot_id, holder_id=holder_id, token=token, now=now, expires_at=expires_at):
        return SlotHold(slot_id=slot_id, holder_id=holder_id, token=token, expires_at=expires_at)

    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")
    raise explain_hold_rejection(snapshot_of(slot), now=now)


async def release_hold(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    holder_id: int,
    now: datetime | None = None,
) -> bool:
    """Idempotent: releasing a hold that is gone (or never existed) returns False."""
    now = now or utc_now_naive()
    released = await slot_repo.release_hold(slot_id, holder_id=holder_id, now=now)
    if not released and await slot_repo.get(slot_id) is None:
        raise NotFoundError("slot not found")
    return released


async def confirm_booking(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    booking_id: int,
    hold_token: str,
    now: datetime | None = None,
) -> None:
    now = now or utc_now_naive()
    if not await slot_repo.confirm(slot_id, booking_id=booking_id, token=hold_token, now=now):
        raise ConflictError("slot hold is missing or has expired")


async def release_booking(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    booking_id: int,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now_naive()
    return await slot_repo.release_booking(slot_id, booking_id=booking_id, now=now)


async def _managed_slot(slot_repo: SlotRepository, turf_repo: TurfRepository, *, caller: Caller, slot_id: int) -> Slot:
    slot = await get_slot(slot_repo, slot_id=slot_id)
    turf = await turf_repo.get(slot.turf_id)
    if turf is None:
        raise NotFoundError("turf not found")
    ensure_turf_manager(caller, owner_id=turf.owner_id)
    return slot


async def block_slot(
    slot_repo: SlotRepository,
    turf_repo: TurfRepository,
    *,
    caller: Caller,
    slot_id: int,
    now: datetime | None = None,
) -> Slot:
    now = now or utc_now_naive()
    await _managed_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    if not await slot_repo.block(slot_id, now=now):
        current = await get_slot(slot_repo, slot_id=slot_id)
        raise explain_hold_rejection(snapshot_of(current), now=now)
    return await get_slot(slot_repo, slot_id=slot_id)


async def unblock_slot(
    slot_repo: SlotRepository,
    turf_repo: TurfRepository,
    *,
    caller: Caller,
    slot_id: int,
    now: datetime | None = None,
) -> Slot:
    now = now or utc_now_naive()
    await _managed_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    if not await slot_repo.unblock(slot_id, now=now):
        raise ConflictError("slot is not blocked")
    return await get_slot(slot_repo, slot_id=slot_id)


async def delete_slot(
    slot_repo: SlotRepository,
    turf_repo: TurfRepository,
    *,
    caller: Caller,
    slot_id: int,
    now: datetime | None = None,
) -> Slot:
    now = now or utc_now_naive()
    slot = await _managed_slot(slot_repo, turf_repo, caller=caller, slot_id=slot_id)
    state = effective_state(snapshot_of(slot), now=now)
    if not await slot_repo.delete_if_free(slot_id, now=now):
        if state in (SlotState.AVAILABLE, SlotState.BLOCKED):
            # Lost a race against a hold taken after the read above.
            raise ConflictError("slot is currently held by another booking")
        raise explain_hold_rejection(snapshot_of(slot), now=now)
    return slot


async def list_turf_slots(
    slot_repo: SlotRepository,
    turf_repo: TurfRepository,
    *,
    turf_id: int,
    slot_date: date | None,
    sport_id: int | None,
    now: datetime | None = None,
) -> list[Slot]:
    """Bookable slots only: available, or held by a hold that has lapsed."""
    if await turf_repo.get(turf_id) is None:
        raise NotFoundError("turf not found")
    return await slot_repo.list_bookable(
        turf_id,
        now=now or utc_now_naive(),
        slot_date=slot_date,
        sport_id=sport_id,
    )
