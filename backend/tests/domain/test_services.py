from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from turfconnect.domain.errors import ConflictError, RosterConflictError, ValidationError
from turfconnect.domain.services import (
    MatchSnapshot,
    SlotSnapshot,
    effective_state,
    explain_hold_rejection,
    hold_is_valid,
    resolve_price,
    snapshot_of,
    validate_join,
    validate_match_setup,
    validate_page,
    validate_slot_window,
)
from turfconnect.models import BookingStatus, MatchStatus, Slot, SlotState

NOW = datetime(2026, 5, 1, 12, 0, 0)


def _held(*, expires_at: datetime, token: str = "tok", held_by: int = 7) -> SlotSnapshot:
    return SlotSnapshot(state=SlotState.HELD, hold_token=token, held_by=held_by, hold_expires_at=expires_at)


def test_expired_hold_reads_as_available() -> None:
    snap = _held(expires_at=NOW - timedelta(seconds=1))
    assert effective_state(snap, now=NOW) == SlotState.AVAILABLE


def test_hold_expiring_exactly_now_is_expired() -> None:
    snap = _held(expires_at=NOW)
    assert effective_state(snap, now=NOW) == SlotState.AVAILABLE


def test_live_hold_reads_as_held() -> None:
    snap = _held(expires_at=NOW + timedelta(minutes=5))
    assert effective_state(snap, now=NOW) == SlotState.HELD


def test_hold_is_valid_requires_matching_token_and_holder() -> None:
    snap = _held(expires_at=NOW + timedelta(minutes=5))
    assert hold_is_valid(snap, token="tok", holder_id=7, now=NOW)
    assert not hold_is_valid(snap, token="other", holder_id=7, now=NOW)
    assert not hold_is_valid(snap, token="tok", holder_id=8, now=NOW)
    assert not hold_is_valid(snap, token="tok", holder_id=7, now=NOW + timedelta(minutes=5))


def test_explain_hold_rejection_names_current_state() -> None:
    booked = SlotSnapshot(state=SlotState.BOOKED, hold_token=None, held_by=None, hold_expires_at=None)
    blocked = SlotSnapshot(state=SlotState.BLOCKED, hold_token=None, held_by=None, hold_expires_at=None)
    held = _held(expires_at=NOW + timedelta(minutes=1))

    assert "booked" in explain_hold_rejection(booked, now=NOW).message
    assert "blocked" in explain_hold_rejection(blocked, now=NOW).message
    assert "held" in explain_hold_rejection(held, now=NOW).message
    assert isinstance(explain_hold_rejection(held, now=NOW), ConflictError)


def test_slot_window_rejects_inverted_times() -> None:
    with pytest.raises(ValidationError):
        validate_slot_window(
            slot_date=date(2026, 5, 2),
            start_time=time(10, 0),
            end_time=time(10, 0),
            today=date(2026, 5, 1),
        )


def test_slot_window_rejects_past_date() -> None:
    with pytest.raises(ValidationError):
        validate_slot_window(
            slot_date=date(2026, 4, 30),
            start_time=time(10, 0),
            end_time=time(11, 0),
            today=date(2026, 5, 1),
        )


def test_slot_window_accepts_today() -> None:
    validate_slot_window(
        slot_date=date(2026, 5, 1),
        start_time=time(18, 0),
        end_time=time(19, 0),
        today=date(2026, 5, 1),
    )


def test_dynamic_price_wins_when_present() -> None:
    assert resolve_price(Decimal("500"), Decimal("650")) == Decimal("650")
    assert resolve_price(Decimal("500"), None) == Decimal("500")


@pytest.mark.parametrize(("page", "limit"), [(0, 10), (1, 0), (1, 101)])
def test_validate_page_rejects_out_of_range(page: int, limit: int) -> None:
    with pytest.raises(ValidationError):
        validate_page(page, limit)


def test_validate_page_returns_offset() -> None:
    assert validate_page(3, 20) == 40


def test_match_setup_requires_active_booking() -> None:
    with pytest.raises(ConflictError):
        validate_match_setup(total_slots=4, price_per_player=Decimal("0"), booking_status=BookingStatus.CANCELLED)


def test_match_setup_requires_two_places() -> None:
    with pytest.raises(ValidationError):
        validate_match_setup(total_slots=1, price_per_player=Decimal("0"), booking_status=BookingStatus.ACTIVE)


def test_match_setup_rejects_negative_price() -> None:
    with pytest.raises(ValidationError):
        validate_match_setup(total_slots=4, price_per_player=Decimal("-1"), booking_status=BookingStatus.ACTIVE)


def test_join_rejects_existing_participant_first() -> None:
    snap = MatchSnapshot(status=MatchStatus.FULL, total_slots=2, filled_slots=2, user_is_participant=True)
    with pytest.raises(RosterConflictError, match="already joined"):
        validate_join(snap)


def test_join_rejects_full_match() -> None:
    snap = MatchSnapshot(status=MatchStatus.FULL, total_slots=3, filled_slots=3, user_is_participant=False)
    with pytest.raises(RosterConflictError, match="match is full"):
        validate_join(snap)


def test_join_rejects_cancelled_match() -> None:
    snap = MatchSnapshot(status=MatchStatus.CANCELLED, total_slots=3, filled_slots=1, user_is_participant=False)
    with pytest.raises(RosterConflictError, match="not open"):
        validate_join(snap)


def test_join_accepts_open_match_with_room() -> None:
    snap = MatchSnapshot(status=MatchStatus.OPEN, total_slots=3, filled_slots=2, user_is_participant=False)
    validate_join(snap)


def test_snapshot_of_copies_hold_fields_from_row() -> None:
    slot = Slot(id=1, state=SlotState.HELD, hold_token="tok", held_by=7, hold_expires_at=NOW + timedelta(minutes=5))
    snap = snapshot_of(slot)
    assert snap == _held(expires_at=NOW + timedelta(minutes=5))
    assert effective_state(snap, now=NOW + timedelta(minutes=5)) == SlotState.AVAILABLE
