from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Sequence, cast

from sqlalchemy import Select, and_, case, delete, func, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, joinedload, selectinload

from ..domain.errors import ConflictError, RosterConflictError
from ..domain.repositories import (
    BookingRepository,
    MatchRepository,
    RefreshTokenRepository,
    SlotRepository,
    SportRepository,
    TurfRepository,
    UserRepository,
)
from ..models import (
    Booking,
    BookingStatus,
    BookingType,
    Match,
    MatchParticipant,
    MatchStatus,
    ParticipantPaymentStatus,
    PaymentMethod,
    PaymentStatus,
    RefreshToken,
    Slot,
    SlotState,
    Sport,
    Turf,
    TurfSport,
    User,
    UserRole,
)
from ..utils.time import utc_now_naive


def _affected(result: Any) -> int:
    return int(cast(CursorResult[Any], result).rowcount)


def _free_slot_clause(now: datetime) -> Any:
    """Available, or held by a hold that has lapsed."""
    return or_(
        Slot.state == SlotState.AVAILABLE,
        and_(Slot.state == SlotState.HELD, Slot.hold_expires_at <= now),
    )


_CLEARED_HOLD = {"hold_token": None, "held_by": None, "hold_expires_at": None}


def _turf_is_active() -> Any:
    """Checked inside the UPDATE itself; a turf deactivated concurrently stops the transition."""
    return Slot.turf_id.in_(select(Turf.id).where(Turf.is_active.is_(True)))


class SqlAlchemySlotRepository(SlotRepository):
    """
    Every state transition is one conditional UPDATE/DELETE; the WHERE clause carries the
    precondition and the affected row count tells the caller whether it won.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> Slot | None:
        return await self.session.get(Slot, slot_id, populate_existing=True)

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
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            turf_id=turf_id,
            sport_id=sport_id,
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            base_price=base_price,
            dynamic_price=dynamic_price,
            state=SlotState.AVAILABLE,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("a slot already exists for this turf, sport and start time") from exc
        return slot

    async def _transition(self, slot_id: int, *conditions: Any, **values: Any) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def try_hold(
        self,
        slot_id: int,
        *,
        holder_id: int,
        token: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        return await self._transition(
            slot_id,
            _free_slot_clause(now),
            _turf_is_active(),
            state=SlotState.HELD,
            hold_token=token,
            held_by=holder_id,
            hold_expires_at=expires_at,
            updated_at=now,
        )

    async def release_hold(self, slot_id: int, *, holder_id: int, now: datetime) -> bool:
        return await self._transition(
            slot_id,
            Slot.state == SlotState.HELD,
            or_(Slot.held_by == holder_id, Slot.hold_expires_at <= now),
            state=SlotState.AVAILABLE,
            updated_at=now,
            **_CLEARED_HOLD,
        )

    async def confirm(self, slot_id: int, *, booking_id: int, token: str, now: datetime) -> bool:
        return await self._transition(
            slot_id,
            Slot.state == SlotState.HELD,
            Slot.hold_token == token,
            Slot.hold_expires_at > now,
            _turf_is_active(),
            state=SlotState.BOOKED,
            booking_id=booking_id,
            updated_at=now,
            **_CLEARED_HOLD,
        )

    async def release_booking(self, slot_id: int, *, booking_id: int, now: datetime) -> bool:
        return await self._transition(
            slot_id,
            Slot.state == SlotState.BOOKED,
            Slot.booking_id == booking_id,
            state=SlotState.AVAILABLE,
            booking_id=None,
            updated_at=now,
        )

    async def block(self, slot_id: int, *, now: datetime) -> bool:
        return await self._transition(
            slot_id,
            _free_slot_clause(now),
            state=SlotState.BLOCKED,
            updated_at=now,
            **_CLEARED_HOLD,
        )

    async def unblock(self, slot_id: int, *, now: datetime) -> bool:
        return await self._transition(
            slot_id,
            Slot.state == SlotState.BLOCKED,
            state=SlotState.AVAILABLE,
            updated_at=now,
        )

    async def block_open_for_turf(self, turf_id: int, *, now: datetime) -> int:
        # Live holds are blocked too: their holders can no longer confirm.
        stmt = (
            update(Slot)
            .where(Slot.turf_id == turf_id, Slot.state.in_((SlotState.AVAILABLE, SlotState.HELD)))
            .values(state=SlotState.BLOCKED, updated_at=now, **_CLEARED_HOLD)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt))

    async def delete_if_free(self, slot_id: int, *, now: datetime) -> bool:
        stmt = (
            delete(Slot)
            .where(
                Slot.id == slot_id,
                or_(_free_slot_clause(now), Slot.state == SlotState.BLOCKED),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            return _affected(await self.session.execute(stmt)) == 1
        except IntegrityError as exc:
            raise ConflictError("slot has booking history and cannot be deleted") from exc

    async def list_bookable(
        self,
        turf_id: int,
        *,
        now: datetime,
        slot_date: date | None,
        sport_id: int | None,
    ) -> list[Slot]:
        stmt = select(Slot).where(Slot.turf_id == turf_id, _free_slot_clause(now))
        if slot_date is not None:
            stmt = stmt.where(Slot.slot_date == slot_date)
        if sport_id is not None:
            stmt = stmt.where(Slot.sport_id == sport_id)
        stmt = stmt.order_by(Slot.slot_date, Slot.start_time, Slot.id)
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        slot: Slot,
        booker_id: int,
        booking_type: BookingType,
        payment_method: PaymentMethod,
        total_price: Decimal,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            slot_id=slot.id,
            active_slot_id=slot.id,
            turf_id=slot.turf_id,
            booker_id=booker_id,
            booking_type=booking_type,
            total_price=total_price,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            booking_status=BookingStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("slot already has an active booking") from exc
        return booking

    async def get(self, booking_id: int) -> Booking | None:
        stmt = (
            select(Booking)
            .options(joinedload(Booking.slot), joinedload(Booking.turf))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def list_by_booker(
        self,
        booker_id: int,
        *,
        status: BookingStatus | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Booking], int]:
        conditions: list[Any] = [Booking.booker_id == booker_id]
        if status is not None:
            conditions.append(Booking.booking_status == status)
        stmt: Select[tuple[Booking]] = (
            select(Booking)
            .options(joinedload(Booking.slot), joinedload(Booking.turf))
            .where(*conditions)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = list((await self.session.scalars(stmt)).all())
        total = await self.session.scalar(select(func.count()).select_from(Booking).where(*conditions))
        return rows, int(total or 0)

    async def mark_cancelled(self, booking_id: int, *, reason: str | None, now: datetime) -> bool:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.booking_status == BookingStatus.ACTIVE)
            .values(
                booking_status=BookingStatus.CANCELLED,
                active_slot_id=None,
                cancellation_reason=reason,
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def has_active_for_turf(self, turf_id: int) -> bool:
        stmt = select(Booking.id).where(
            Booking.turf_id == turf_id,
            Booking.booking_status == BookingStatus.ACTIVE,
        )
        # Locking read: sees bookings committed after this transaction took its snapshot.
        return await self.session.scalar(stmt.limit(1).with_for_update()) is not None


class SqlAlchemyMatchRepository(MatchRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
    ) -> Match:
        now = utc_now_naive()
        host = MatchParticipant(
            user_id=booking.booker_id,
            payment_status=ParticipantPaymentStatus.COMPLETED,
            joined_at=now,
        )
        match = Match(
            booking_id=booking.id,
            host_id=booking.booker_id,
            sport_id=sport_id,
            turf_id=booking.turf_id,
            slot_id=booking.slot_id,
            match_date=booking.slot.slot_date,
            start_time=booking.slot.start_time,
            end_time=booking.slot.end_time,
            total_slots=total_slots,
            filled_slots=1,
            price_per_player=price_per_player,
            skill_level_required=skill_level_required,
            match_type=match_type,
            description=description,
            match_status=MatchStatus.OPEN,
            created_at=now,
            updated_at=now,
            participants=[host],
        )
        self.session.add(match)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("a match already exists for this booking") from exc
        created = await self.get(match.id)
        assert created is not None
        return created

    async def get(self, match_id: int) -> Match | None:
        stmt = (
            select(Match)
            .options(selectinload(Match.participants), joinedload(Match.turf))
            .where(Match.id == match_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def is_participant(self, match_id: int, user_id: int) -> bool:
        stmt = select(MatchParticipant.id).where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.user_id == user_id,
        )
        return await self.session.scalar(stmt) is not None

    async def try_increment(self, match_id: int, *, now: datetime) -> bool:
        # match_status is assigned first: MySQL evaluates SET clauses left to right.
        stmt = (
            update(Match)
            .where(
                Match.id == match_id,
                Match.match_status == MatchStatus.OPEN,
                Match.filled_slots < Match.total_slots,
            )
            .ordered_values(
                (
                    Match.match_status,
                    case(
                        (Match.filled_slots + 1 >= Match.total_slots, MatchStatus.FULL.value),
                        else_=MatchStatus.OPEN.value,
                    ),
                ),
                (Match.filled_slots, Match.filled_slots + 1),
                (Match.updated_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def add_participant(
        self,
        match_id: int,
        user_id: int,
        *,
        payment_status: ParticipantPaymentStatus,
    ) -> MatchParticipant:
        participant = MatchParticipant(
            match_id=match_id,
            user_id=user_id,
            payment_status=payment_status,
            joined_at=utc_now_naive(),
        )
        self.session.add(participant)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise RosterConflictError("already joined this match") from exc
        return participant

    async def remove_participant(self, match_id: int, user_id: int) -> bool:
        stmt = (
            delete(MatchParticipant)
            .where(MatchParticipant.match_id == match_id, MatchParticipant.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def decrement(self, match_id: int, *, now: datetime) -> bool:
        stmt = (
            update(Match)
            .where(Match.id == match_id, Match.filled_slots > 1)
            .ordered_values(
                (
                    Match.match_status,
                    case(
                        (Match.match_status == MatchStatus.FULL, MatchStatus.OPEN.value),
                        else_=Match.match_status,
                    ),
                ),
                (Match.filled_slots, Match.filled_slots - 1),
                (Match.updated_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def cancel(self, match_id: int, *, now: datetime) -> bool:
        stmt = (
            update(Match)
            .where(Match.id == match_id, Match.match_status != MatchStatus.CANCELLED)
            .values(match_status=MatchStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) == 1

    async def cancel_for_booking(self, booking_id: int, *, now: datetime) -> int:
        stmt = (
            update(Match)
            .where(Match.booking_id == booking_id, Match.match_status != MatchStatus.CANCELLED)
            .values(match_status=MatchStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt))

    async def search(
        self,
        *,
        status: MatchStatus,
        sport_id: int | None,
        city: str | None,
        skill_level: str | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Match], int]:
        conditions: list[Any] = [Match.match_status == status]
        if sport_id is not None:
            conditions.append(Match.sport_id == sport_id)
        if skill_level is not None:
            conditions.append(Match.skill_level_required == skill_level)
        if city is not None:
            conditions.append(Turf.city == city)
        stmt = (
            select(Match)
            .join(Turf, Match.turf_id == Turf.id)
            .options(contains_eager(Match.turf), selectinload(Match.participants))
            .where(*conditions)
            .order_by(Match.match_date, Match.start_time, Match.id)
            .offset(offset)
            .limit(limit)
        )
        rows = list((await self.session.scalars(stmt)).all())
        count_stmt = select(func.count(Match.id)).join(Turf, Match.turf_id == Turf.id).where(*conditions)
        total = await self.session.scalar(count_stmt)
        return rows, int(total or 0)


class SqlAlchemyTurfRepository(TurfRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, turf_id: int) -> Turf | None:
        stmt = (
            select(Turf)
            .options(selectinload(Turf.sports).joinedload(TurfSport.sport))
            .where(Turf.id == turf_id, Turf.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

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
    ) -> Turf:
        now = utc_now_naive()
        turf = Turf(
            owner_id=owner_id,
            name=name,
            address=address,
            city=city,
            description=description,
            contact_phone=contact_phone,
            is_active=True,
            created_at=now,
            updated_at=now,
            sports=[TurfSport(sport_id=sport_id, max_players=max_players) for sport_id, max_players in sports],
        )
        self.session.add(turf)
        await self.session.flush()
        created = await self.get(turf.id)
        assert created is not None
        return created

    async def update(self, turf: Turf, changes: dict[str, object]) -> Turf:
        for field, value in changes.items():
            setattr(turf, field, value)
        turf.updated_at = utc_now_naive()
        await self.session.flush()
        return turf

    async def delete(self, turf: Turf) -> None:
        # Bookings and matches keep referencing the turf, so it is deactivated rather than removed.
        turf.is_active = False
        turf.updated_at = utc_now_naive()
        await self.session.flush()

    async def search(
        self,
        *,
        city: str | None,
        sport_id: int | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Turf], int]:
        conditions: list[Any] = [Turf.is_active.is_(True)]
        if city is not None:
            conditions.append(Turf.city == city)
        if sport_id is not None:
            conditions.append(Turf.id.in_(select(TurfSport.turf_id).where(TurfSport.sport_id == sport_id)))
        stmt = (
            select(Turf)
            .options(selectinload(Turf.sports).joinedload(TurfSport.sport))
            .where(*conditions)
            .order_by(Turf.name, Turf.id)
            .offset(offset)
            .limit(limit)
        )
        rows = list((await self.session.scalars(stmt)).all())
        total = await self.session.scalar(select(func.count()).select_from(Turf).where(*conditions))
        return rows, int(total or 0)

    async def offers_sport(self, turf_id: int, sport_id: int) -> bool:
        stmt = select(TurfSport.id).where(TurfSport.turf_id == turf_id, TurfSport.sport_id == sport_id)
        return await self.session.scalar(stmt) is not None


class SqlAlchemySportRepository(SportRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[Sport]:
        return list((await self.session.scalars(select(Sport).order_by(Sport.name))).all())

    async def create(self, name: str) -> Sport:
        sport = Sport(name=name)
        self.session.add(sport)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("sport already exists") from exc
        return sport

    async def existing_ids(self, sport_ids: Sequence[int]) -> set[int]:
        if not sport_ids:
            return set()
        rows = await self.session.scalars(select(Sport.id).where(Sport.id.in_(list(sport_ids))))
        return set(rows.all())


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_phone(self, phone: str) -> User | None:
        return await self.session.scalar(select(User).where(User.phone == phone))

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
    ) -> User:
        now = utc_now_naive()
        user = User(
            phone=phone,
            full_name=full_name,
            email=email,
            city=city,
            password_hash=password_hash,
            role=role,
            is_verified=is_verified,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("user with this phone already exists") from exc
        return user

    async def mark_verified(self, user: User) -> User:
        user.is_verified = True
        user.updated_at = utc_now_naive()
        await self.session.flush()
        return user


class SqlAlchemyRefreshTokenRepository(RefreshTokenRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, *, token: str, user_id: int, expires_at: datetime) -> RefreshToken:
        row = RefreshToken(token=token, user_id=user_id, expires_at=expires_at, created_at=utc_now_naive())
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_valid(self, token: str, *, now: datetime) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.token == token, RefreshToken.expires_at > now)
        return await self.session.scalar(stmt)

    async def delete(self, token: str) -> bool:
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(synchronize_session=False)
        )
        return _affected(await self.session.execute(stmt)) > 0
