from __future__ import annotations

import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from .domain.services import effective_state, resolve_price, snapshot_of
from .models import (
    Booking,
    BookingStatus,
    BookingType,
    Match,
    MatchParticipant,
    MatchStatus,
    ParticipantPaymentStatus,
    PaymentMethod,
    PaymentStatus,
    Slot,
    SlotState,
    Sport,
    Turf,
    User,
    UserRole,
)
from .utils.time import utc_naive_to_aware

T = TypeVar("T")


class CamelModel(BaseModel):
    """Wire format is camelCase; snake_case is still accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Envelope(CamelModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class Page(CamelModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, items: list[T], *, page: int, limit: int, total: int) -> "Page[T]":
        return cls(items=items, page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))


def _iso_utc(dt: Optional[datetime]) -> Optional[str]:
    return utc_naive_to_aware(dt).isoformat() if dt is not None else None


# --- accounts ---------------------------------------------------------------


class RegisterRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=20)
    full_name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=6, max_length=72)
    city: Optional[str] = Field(default=None, max_length=100)
    role: UserRole = UserRole.PLAYER


class LoginRequest(CamelModel):
    phone: str = Field(min_length=1)
    password: str = Field(min_length=1)


class OtpRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=20)


class OtpVerifyRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=20)
    otp: str = Field(min_length=1, max_length=12)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class UserRead(CamelModel):
    user_id: int
    phone: str
    email: Optional[str]
    full_name: str
    city: Optional[str]
    role: UserRole
    is_verified: bool

    @classmethod
    def from_db(cls, *, user: User) -> "UserRead":
        return cls(
            user_id=user.id,
            phone=user.phone,
            email=user.email,
            full_name=user.full_name,
            city=user.city,
            role=user.role,
            is_verified=user.is_verified,
        )


class AuthTokens(CamelModel):
    user: UserRead
    access_token: str
    refresh_token: str


class AccessTokenRead(CamelModel):
    access_token: str


# --- catalogue --------------------------------------------------------------


class SportCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)


class SportRead(CamelModel):
    sport_id: int
    name: str

    @classmethod
    def from_db(cls, *, sport: Sport) -> "SportRead":
        return cls(sport_id=sport.id, name=sport.name)


class TurfSportIn(CamelModel):
    sport_id: int
    max_players: int = Field(ge=1)


class TurfCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, max_length=20)
    sports: list[TurfSportIn] = Field(default_factory=list)


class TurfUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, max_length=20)


class TurfSportRead(CamelModel):
    sport_id: int
    name: Optional[str]
    max_players: int


class TurfRead(CamelModel):
    turf_id: int
    owner_id: int
    name: str
    description: Optional[str]
    address: str
    city: str
    contact_phone: Optional[str]
    sports: list[TurfSportRead]

    @classmethod
    def from_db(cls, *, turf: Turf) -> "TurfRead":
        return cls(
            turf_id=turf.id,
            owner_id=turf.owner_id,
            name=turf.name,
            description=turf.description,
            address=turf.address,
            city=turf.city,
            contact_phone=turf.contact_phone,
            sports=[
                TurfSportRead(
                    sport_id=ts.sport_id,
                    name=ts.sport.name if ts.sport is not None else None,
                    max_players=ts.max_players,
                )
                for ts in turf.sports
            ],
        )


class TurfSummary(CamelModel):
    turf_id: int
    name: str
    city: str
    address: str

    @classmethod
    def from_db(cls, *, turf: Optional[Turf]) -> Optional["TurfSummary"]:
        if turf is None:
            return None
        return cls(turf_id=turf.id, name=turf.name, city=turf.city, address=turf.address)


# --- slots ------------------------------------------------------------------


class SlotCreate(CamelModel):
    sport_id: int
    slot_date: date
    start_time: time
    end_time: time
    base_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    dynamic_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)


class SlotRead(CamelModel):
    slot_id: int
    turf_id: int
    sport_id: int
    slot_date: date
    start_time: time
    end_time: time
    base_price: Decimal
    dynamic_price: Optional[Decimal]
    price: Decimal
    state: SlotState

    @classmethod
    def from_db(cls, *, slot: Slot, now: datetime) -> "SlotRead":
        snapshot = snapshot_of(slot)
        return cls(
            slot_id=slot.id,
            turf_id=slot.turf_id,
            sport_id=slot.sport_id,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            base_price=slot.base_price,
            dynamic_price=slot.dynamic_price,
            price=resolve_price(slot.base_price, slot.dynamic_price),
            state=effective_state(snapshot, now=now),
        )


class SlotHoldRead(CamelModel):
    slot_id: int
    hold_token: str
    expires_at: datetime

    @field_serializer("expires_at")
    def _ser_datetime(self, dt: datetime) -> Optional[str]:
        return _iso_utc(dt)


class SlotHoldRelease(CamelModel):
    slot_id: int
    released: bool


# --- bookings ---------------------------------------------------------------


class BookingCreate(CamelModel):
    slot_id: int
    booking_type: BookingType = BookingType.FULL_TURF
    payment_method: PaymentMethod = PaymentMethod.WALLET
    hold_token: Optional[str] = Field(default=None, max_length=64)


class BookingCancel(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class SlotSummary(CamelModel):
    slot_id: int
    sport_id: int
    slot_date: date
    start_time: time
    end_time: time


class BookingRead(CamelModel):
    booking_id: int
    slot_id: int
    turf_id: int
    booker_id: int
    booking_type: BookingType
    total_price: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    booking_status: BookingStatus
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime
    slot: Optional[SlotSummary] = None
    turf: Optional[TurfSummary] = None

    @field_serializer("cancelled_at", "created_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        slot = booking.slot
        return cls(
            booking_id=booking.id,
            slot_id=booking.slot_id,
            turf_id=booking.turf_id,
            booker_id=booking.booker_id,
            booking_type=booking.booking_type,
            total_price=booking.total_price,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            booking_status=booking.booking_status,
            cancellation_reason=booking.cancellation_reason,
            cancelled_at=booking.cancelled_at,
            created_at=booking.created_at,
            slot=SlotSummary(
                slot_id=slot.id,
                sport_id=slot.sport_id,
                slot_date=slot.slot_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
            )
            if slot is not None
            else None,
            turf=TurfSummary.from_db(turf=booking.turf),
        )


# --- matches ----------------------------------------------------------------


class MatchCreate(CamelModel):
    booking_id: int
    total_slots: int
    sport_id: Optional[int] = None
    price_per_player: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    skill_level_required: Optional[str] = Field(default=None, max_length=50)
    match_type: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None


class ParticipantRead(CamelModel):
    user_id: int
    payment_status: ParticipantPaymentStatus
    joined_at: datetime

    @field_serializer("joined_at")
    def _ser_datetime(self, dt: datetime) -> Optional[str]:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, participant: MatchParticipant) -> "ParticipantRead":
        return cls(
            user_id=participant.user_id,
            payment_status=participant.payment_status,
            joined_at=participant.joined_at,
        )


class MatchRead(CamelModel):
    match_id: int
    booking_id: int
    host_id: int
    sport_id: int
    turf_id: int
    slot_id: int
    match_date: date
    start_time: time
    end_time: time
    total_slots: int
    filled_slots: int
    price_per_player: Decimal
    skill_level_required: Optional[str]
    match_type: Optional[str]
    description: Optional[str]
    match_status: MatchStatus
    participants: list[ParticipantRead]
    turf: Optional[TurfSummary] = None

    @classmethod
    def from_db(cls, *, match: Match) -> "MatchRead":
        return cls(
            match_id=match.id,
            booking_id=match.booking_id,
            host_id=match.host_id,
            sport_id=match.sport_id,
            turf_id=match.turf_id,
            slot_id=match.slot_id,
            match_date=match.match_date,
            start_time=match.start_time,
            end_time=match.end_time,
            total_slots=match.total_slots,
            filled_slots=match.filled_slots,
            price_per_player=match.price_per_player,
            skill_level_required=match.skill_level_required,
            match_type=match.match_type,
            description=match.description,
            match_status=match.match_status,
            participants=[ParticipantRead.from_db(participant=p) for p in match.participants],
            turf=TurfSummary.from_db(turf=match.turf),
        )
