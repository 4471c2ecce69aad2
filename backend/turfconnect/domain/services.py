from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from ..models import BookingStatus, MatchStatus, Slot, SlotState
from .errors import ConflictError, RosterConflictError, ValidationError

MAX_PAGE_LIMIT = 100
MIN_MATCH_SLOTS = 2


@dataclass(frozen=True)
class SlotSnapshot:
    state: SlotState
    hold_token: Optional[str]
    held_by: Optional[int]
    hold_expires_at: Optional[datetime]


def snapshot_of(slot: Slot) -> SlotSnapshot:
    return SlotSnapshot(
        state=slot.state,
        hold_token=slot.hold_token,
        held_by=slot.held_by,
        hold_expires_at=slot.hold_expires_at,
    )


@dataclass(frozen=True)
class MatchSnapshot:
    status: MatchStatus
    total_slots: int
    filled_slots: int
    user_is_participant: bool


def effective_state(snapshot: SlotSnapshot, *, now: datetime) -> SlotState:
    """Holds expire lazily: an expired hold reads as available."""
    if snapshot.state == SlotState.HELD and hold_expired(snapshot, now=now):
        return SlotState.AVAILABLE
    return snapshot.state


def hold_expired(snapshot: SlotSnapshot, *, now: datetime) -> bool:
    return snapshot.hold_expires_at is None or snapshot.hold_expires_at <= now


def hold_is_valid(snapshot: SlotSnapshot, *, token: str, holder_id: int, now: datetime) -> bool:
    return (
        snapshot.state == SlotState.HELD
        and snapshot.hold_token == token
        and snapshot.held_by == holder_id
        and not hold_expired(snapshot, now=now)
    )


def explain_hold_rejection(snapshot: SlotSnapshot, *, now: datetime) -> ConflictError:
    state = effective_state(snapshot, now=now)
    if state == SlotState.HELD:
        return ConflictError("slot is currently held by another booking")
    if state == SlotState.BOOKED:
        return ConflictError("slot is already booked")
    if state == SlotState.BLOCKED:
        return ConflictError("slot is blocked")
    return ConflictError("slot is not available")


def validate_slot_window(*, slot_date: date, start_time: time, end_time: time, today: date) -> None:
    if start_time >= end_time:
        raise ValidationError("start_time must be earlier than end_time")
    if slot_date < today:
        raise ValidationError("slot_date must not be in the past")


def validate_price(value: Optional[Decimal], *, field: str) -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{field} must not be negative")


def resolve_price(base_price: Decimal, dynamic_price: Optional[Decimal]) -> Decimal:
    return dynamic_price if dynamic_price is not None else base_price


def validate_page(page: int, limit: int) -> int:
    """Returns the row offset for a page."""
    if page < 1:
        raise ValidationError("page must be a positive integer")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")
    return (page - 1) * limit


def validate_match_setup(*, total_slots: int, price_per_player: Decimal, booking_status: BookingStatus) -> None:
    if booking_status != BookingStatus.ACTIVE:
        raise ConflictError("booking is not active")
    # The host always takes one place, so a match needs room for at least one more player.
    if total_slots < MIN_MATCH_SLOTS:
        raise ValidationError(f"total_slots must be at least {MIN_MATCH_SLOTS}")
    validate_price(price_per_player, field="price_per_player")


def validate_join(snapshot: MatchSnapshot) -> None:
    """
    Explains why a join cannot proceed. The atomic update in the repository is the
    authority; this only picks the error for the caller.
    """
    if snapshot.user_is_participant:
        raise RosterConflictError("already joined this match")
    if snapshot.status == MatchStatus.CANCELLED:
        raise RosterConflictError("match is not open for joining")
    if snapshot.status == MatchStatus.FULL or snapshot.filled_slots >= snapshot.total_slots:
        raise RosterConflictError("match is full")
    if snapshot.status != MatchStatus.OPEN:
        raise RosterConflictError("match is not open for joining")
