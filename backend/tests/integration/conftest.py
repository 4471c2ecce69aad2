from dataclasses import dataclass
from datetime import date, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from turfconnect.database import build_engine, build_sessionmaker, create_schema
from turfconnect.infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemySlotRepository
from turfconnect.models import (
    Booking,
    BookingType,
    PaymentMethod,
    Slot,
    SlotState,
    Sport,
    Turf,
    TurfSport,
    User,
    UserRole,
)
from turfconnect.usecases import bookings as booking_usecase
from turfconnect.utils.time import utc_now_naive


@dataclass(frozen=True)
class Seed:
    owner_id: int
    player_ids: list[int]
    sport_id: int
    turf_id: int
    slot_id: int


@pytest_asyncio.fixture
async def sessionmaker(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # A file database so that every session gets its own connection, as in production.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'turfconnect.db'}")
    await create_schema(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seed(sessionmaker: async_sessionmaker[AsyncSession]) -> Seed:
    now = utc_now_naive()
    async with sessionmaker() as session, session.begin():
        owner = User(
            phone="9000000000",
            full_name="Owner",
            role=UserRole.TURF_OWNER,
            is_verified=True,
            created_at=now,
            updated_at=now,
        )
        players = [
            User(
                phone=f"90000000{i:02d}",
                full_name=f"Player {i}",
                role=UserRole.PLAYER,
                is_verified=True,
                created_at=now,
                updated_at=now,
            )
            for i in range(1, 6)
        ]
        sport = Sport(name="Football")
        session.add_all([owner, *players, sport])
        await session.flush()

        turf = Turf(
            owner_id=owner.id,
            name="Arena",
            address="1 Main St",
            city="Pune",
            is_active=True,
            created_at=now,
            updated_at=now,
            sports=[TurfSport(sport_id=sport.id, max_players=10)],
        )
        session.add(turf)
        await session.flush()

        slot = Slot(
            turf_id=turf.id,
            sport_id=sport.id,
            slot_date=date.today() + timedelta(days=1),
            start_time=time(18, 0),
            end_time=time(19, 0),
            base_price=Decimal("800.00"),
            dynamic_price=None,
            state=SlotState.AVAILABLE,
            created_at=now,
            updated_at=now,
        )
        session.add(slot)
        await session.flush()

        return Seed(
            owner_id=owner.id,
            player_ids=[p.id for p in players],
            sport_id=sport.id,
            turf_id=turf.id,
            slot_id=slot.id,
        )


BookSlot = Callable[..., Awaitable[Booking]]


@pytest.fixture
def book_slot(sessionmaker: async_sessionmaker[AsyncSession]) -> BookSlot:
    async def _book(*, slot_id: int, booker_id: int, hold_token: str | None = None) -> Booking:
        async with sessionmaker() as session:
            return await booking_usecase.create_booking(
                SqlAlchemySlotRepository(session),
                SqlAlchemyBookingRepository(session),
                transaction=session.begin,
                slot_id=slot_id,
                booker_id=booker_id,
                booking_type=BookingType.FULL_TURF,
                payment_method=PaymentMethod.UPI,
                hold_ttl_seconds=300,
                hold_token=hold_token,
            )

    return _book
