"""Shared fixtures: file-backed SQLite store, fixed clock, mocked transport."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from visitor_pass.domain.models import VisitorPassCreate
from visitor_pass.infrastructure.database import PassStore
from visitor_pass.infrastructure.directory import ResidentProfile

# 2026-10-20 10:00 AM facility time (UTC+8)
START = datetime(2026, 10, 20, 2, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'passes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_maker, clock):
    return PassStore(session_maker, clock=clock)


@pytest.fixture
def resident():
    return ResidentProfile(
        id=uuid4(),
        name="Ana Reyes",
        unit_id=uuid4(),
        facility_id=uuid4(),
        unit_label="12B",
    )


@pytest.fixture
def transport():
    return AsyncMock()


@pytest.fixture
def make_pass(store, clock, resident):
    """Create a pass owned by ``resident``; window defaults to [now, now + 2h)."""

    async def _make(**overrides):
        fields = dict(
            visitor_name="Maria Santos",
            visitor_type="guest",
            created_by_resident_id=resident.id,
            unit_id=resident.unit_id,
            facility_id=resident.facility_id,
            valid_from=clock.now,
            valid_until=clock.now + timedelta(hours=2),
            single_use=False,
        )
        fields.update(overrides)
        return await store.create(VisitorPassCreate(**fields))

    return _make
