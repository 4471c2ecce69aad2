from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Date, Enum, ForeignKey, Index, Numeric, Text, Time, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
PK = BigInteger().with_variant(Integer, "sqlite")
Money = Numeric(10, 2)


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=32,
    )


class UserRole(StrEnum):
    PLAYER = "player"
    TURF_OWNER = "turf_owner"
    ADMIN = "admin"


class SlotState(StrEnum):
    AVAILABLE = "available"
    HELD = "held"
    BOOKED = "booked"
    BLOCKED = "blocked"


class BookingType(StrEnum):
    FULL_TURF = "full_turf"
    MATCH_HOST = "match_host"


class PaymentMethod(StrEnum):
    WALLET = "wallet"
    UPI = "upi"
    CARD = "card"
    CASH = "cash"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class BookingStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class MatchStatus(StrEnum):
    OPEN = "open"
    FULL = "full"
    CANCELLED = "cancelled"


class ParticipantPaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("phone", name="uq_users_phone"),)

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.PLAYER)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        UniqueConstraint("token", name="uq_refresh_tokens_token"),
        Index("idx_refresh_tokens_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Sport(Base):
    __tablename__ = "sports"
    __table_args__ = (UniqueConstraint("name", name="uq_sports_name"),)

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class Turf(Base):
    __tablename__ = "turfs"
    __table_args__ = (
        Index("idx_turfs_owner", "owner_id"),
        Index("idx_turfs_city", "city"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    sports: Mapped[list["TurfSport"]] = relationship(back_populates="turf", cascade="all, delete-orphan")
    slots: Mapped[list["Slot"]] = relationship(back_populates="turf", cascade="all, delete-orphan")


class TurfSport(Base):
    __tablename__ = "turf_sports"
    __table_args__ = (
        UniqueConstraint("turf_id", "sport_id", name="uq_turf_sports"),
        CheckConstraint("max_players >= 1", name="chk_turf_sports_players"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    turf_id: Mapped[int] = mapped_column(ForeignKey("turfs.id", ondelete="CASCADE"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)

    turf: Mapped["Turf"] = relationship(back_populates="sports")
    sport: Mapped["Sport"] = relationship()


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_slots_time"),
        CheckConstraint("base_price >= 0", name="chk_slots_price"),
        UniqueConstraint("turf_id", "sport_id", "slot_date", "start_time", name="uq_slots"),
        Index("idx_slots_turf_date", "turf_id", "slot_date"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    turf_id: Mapped[int] = mapped_column(ForeignKey("turfs.id", ondelete="CASCADE"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    dynamic_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    state: Mapped[SlotState] = mapped_column(_enum(SlotState), nullable=False, default=SlotState.AVAILABLE)
    hold_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    held_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    hold_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    turf: Mapped["Turf"] = relationship(back_populates="slots")
    sport: Mapped["Sport"] = relationship()


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # Set to slot_id while active and NULL once cancelled: one active booking per slot.
        UniqueConstraint("active_slot_id", name="uq_bookings_active_slot"),
        Index("idx_bookings_booker", "booker_id", "created_at"),
        Index("idx_bookings_slot", "slot_id"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    active_slot_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    turf_id: Mapped[int] = mapped_column(ForeignKey("turfs.id"), nullable=False)
    booker_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    booking_type: Mapped[BookingType] = mapped_column(_enum(BookingType), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    booking_status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.ACTIVE
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["Slot"] = relationship()
    turf: Mapped["Turf"] = relationship()


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_matches_booking"),
        CheckConstraint("total_slots >= 2", name="chk_matches_total"),
        CheckConstraint("filled_slots >= 1 AND filled_slots <= total_slots", name="chk_matches_filled"),
        Index("idx_matches_status_date", "match_status", "match_date"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    host_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)
    turf_id: Mapped[int] = mapped_column(ForeignKey("turfs.id"), nullable=False)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    match_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    total_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    filled_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_per_player: Mapped[Decimal] = mapped_column(Money, nullable=False)
    skill_level_required: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    match_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    match_status: Mapped[MatchStatus] = mapped_column(_enum(MatchStatus), nullable=False, default=MatchStatus.OPEN)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    turf: Mapped["Turf"] = relationship()
    participants: Mapped[list["MatchParticipant"]] = relationship(
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="MatchParticipant.id",
    )


class MatchParticipant(Base):
    __tablename__ = "match_participants"
    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_participants"),
        Index("idx_match_participants_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    payment_status: Mapped[ParticipantPaymentStatus] = mapped_column(
        _enum(ParticipantPaymentStatus),
        nullable=False,
        default=ParticipantPaymentStatus.PENDING,
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    match: Mapped["Match"] = relationship(back_populates="participants")
