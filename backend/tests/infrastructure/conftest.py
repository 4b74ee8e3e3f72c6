from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator

import pytest_asyncio
from medibook.models import AccommodationOption, Base, Doctor, Hospital
from sqlalchemy import BigInteger, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles


@compiles(BigInteger, "sqlite")
def _bigint_as_integer(type_, compiler, **kw) -> str:
    # SQLite only autoincrements INTEGER PRIMARY KEY.
    return "INTEGER"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'medibook.sqlite'}")

    # Let SQLAlchemy issue BEGIN itself so SAVEPOINTs work on aiosqlite.
    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    now = _now()
    async with factory() as session, session.begin():
        session.add(Hospital(id=7, name="City General", created_at=now, updated_at=now))
        await session.flush()
        session.add_all(
            [
                Doctor(
                    id=1,
                    hospital_id=7,
                    name="Dr. Rao",
                    consultation_fee=Decimal("150.00"),
                    created_at=now,
                    updated_at=now,
                ),
                AccommodationOption(
                    id=3,
                    hospital_id=7,
                    name="Guest House",
                    price_per_night=Decimal("100.00"),
                    currency="USD",
                    max_guests=4,
                    created_at=now,
                    updated_at=now,
                ),
            ]
        )
    return factory
