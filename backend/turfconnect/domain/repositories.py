from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Protocol, Sequence

from ..models import (
    Booking,
    BookingStatus,
    BookingType,
    Match,
    MatchParticipant,
    MatchStatus,
    ParticipantPaymentStatus,
    PaymentMethod,
    RefreshToken,
    Slot,
    Sport,
    Turf,
    User,
    UserRole,
)


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> Slot | None: ...

    async def create(
        self,
        *,
        turf_id: int,
        sport_id: int,
        slot_date: date,
        start_time: time,
        end_time: time,
        base_price: Decimal,
        dynamic_price: Decimal | None,
    ) -> Slot: ...

    async def try_hold(
        self,
        slot_id: int,
        *,
        holder_id: int,
        token: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool: ...

    async def release_hold(self, slot_id: int, *, holder_id: int, now: datetime) -> bool: ...

    async def confirm(self, slot_id: int, *, booking_id: int, token: str, now: datetime) -> bool: ...

    async def release_booking(self, slot_id: int, *, booking_id: int, now: datetime) -> bool: ...

    async def block(self, slot_id: int, *, now: datetime) -> bool: ...

    async def unblock(self, slot_id: int, *, now: datetime) -> bool: ...

    async def block_open_for_turf(self, turf_id: int, *, now: datetime) -> int: ...

    async def delete_if_free(self, slot_id: int, *, now: datetime) -> bool: ...

    async def list_bookable(
        self,
        turf_id: int,
        *,
        now: datetime,
        slot_date: date | None,
        sport_id: int | None,
    ) -> list[Slot]: ...


class BookingRepository(Protocol):
    async def create(
        self,
        *,
        slot: Slot,
        booker_id: int,
        booking_type: BookingType,
        payment_method: PaymentMethod,
        total_price: Decimal,
    ) -> Booking: ...

    async def get(self, booking_id: int) -> Booking | None: ...

    async def list_by_booker(
        self,
        booker_id: int,
        *,
        status: BookingStatus | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Booking], int]: ...

    async def mark_cancelled(self, booking_id: int, *, reason: str | None, now: datetime) -> bool: ...

    async def has_active_for_turf(self, turf_id: int) -> bool: ...


class MatchRepository(Protocol):
    async def create(
        self,
        *,
        booking: Booking,
        sport_id: int,
        total_slots: int,
        price_per_player: Decimal,
        skill_level_required: str | None,
        match_type: str | None,
        description: str | None,
    ) -> Match: ...

    async def get(self, match_id: int) -> Match | None: ...

    async def is_participant(self, match_id: int, user_id: int) -> bool: ...

    async def try_increment(self, match_id: int, *, now: datetime) -> bool: ...

    async def add_participant(
        self,
        match_id: int,
        user_id: int,
        *,
        payment_status: ParticipantPaymentStatus,
    ) -> MatchParticipant: ...

    async def remove_participant(self, match_id: int, user_id: int) -> bool: ...

    async def decrement(self, match_id: int, *, now: datetime) -> bool: ...

    async def cancel(self, match_id: int, *, now: datetime) -> bool: ...

    async def cancel_for_booking(self, booking_id: int, *, now: datetime) -> int: ...

    async def search(
        self,
        *,
        status: MatchStatus,
        sport_id: int | None,
        city: str | None,
        skill_level: str | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Match], int]: ...


class TurfRepository(Protocol):
    async def get(self, turf_id: int) -> Turf | None: ...

    async def create(
        self,
        *,
        owner_id: int,
        name: str,
        address: str,
        city: str,
        description: str | None,
        contact_phone: str | None,
        sports: Sequence[tuple[int, int]],
    ) -> Turf: ...

    async def update(self, turf: Turf, changes: dict[str, object]) -> Turf: ...

    async def delete(self, turf: Turf) -> None: ...

    async def search(
        self,
        *,
        city: str | None,
        sport_id: int | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Turf], int]: ...

    async def offers_sport(self, turf_id: int, sport_id: int) -> bool: ...


class SportRepository(Protocol):
    async def list_all(self) -> list[Sport]: ...

    async def create(self, name: str) -> Sport: ...

    async def existing_ids(self, sport_ids: Sequence[int]) -> set[int]: ...


class UserRepository(Protocol):
    async def get(self, user_id: int) -> User | None: ...

    async def get_by_phone(self, phone: str) -> User | None: ...

    async def create(
        self,
        *,
        phone: str,
        full_name: str,
        email: str | None,
        city: str | None,
        password_hash: str | None,
        role: UserRole,
        is_verified: bool,
    ) -> User: ...

    async def mark_verified(self, user: User) -> User: ...


class RefreshTokenRepository(Protocol):
    async def add(self, *, token: str, user_id: int, expires_at: datetime) -> RefreshToken: ...

    async def get_valid(self, token: str, *, now: datetime) -> RefreshToken | None: ...

    async def delete(self, token: str) -> bool: ...


class OtpStore(Protocol):
    async def save(self, phone: str, code: str) -> None: ...

    async def verify(self, phone: str, code: str) -> bool: ...


class OtpSender(Protocol):
    async def send(self, phone: str, code: str) -> None: ...
