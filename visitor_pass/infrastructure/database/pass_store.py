"""Pass Store - durable table of visitor passes.

Two write paths exist for existing and new rows:
- create(): code allocation + insert
- lock_for_redemption(): per-code exclusive read-modify-write

expire_overdue() is a best-effort conditional sweep; nothing depends on it.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, or_, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from visitor_pass.config import settings
from visitor_pass.domain.civil_time import to_naive_utc, utcnow
from visitor_pass.domain.errors import (
    DuplicateCodeExhausted,
    InvalidPassWindow,
    PassNotFound,
    TransientStoreFailure,
)
from visitor_pass.domain.models import PassStatus, VisitorPass, VisitorPassCreate, VisitorType
from visitor_pass.domain.pass_codes import generate_pass_code, normalize_pass_code

from .connection import get_session_maker

logger = structlog.get_logger()


class KeyedLocks:
    """Per-key asyncio locks; entries are dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("pass_lock_timeout", key=key, timeout=timeout)
                raise TransientStoreFailure(f"Timed out waiting for lock on {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]


# Shared by every PassStore in the process so that two stores over the same
# database still serialize redemptions of one code.
process_locks = KeyedLocks()


class PassStore:
    def __init__(
        self,
        session_maker: Optional[sessionmaker] = None,
        *,
        locks: Optional[KeyedLocks] = None,
        code_factory: Callable[[], str] = generate_pass_code,
        max_attempts: Optional[int] = None,
        lock_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_maker = session_maker
        self._code_factory = code_factory
        self._max_attempts = max_attempts or settings.pass_code_max_attempts
        self._lock_timeout = lock_timeout if lock_timeout is not None else settings.pass_lock_timeout_seconds
        self._clock = clock
        self._locks = locks if locks is not None else process_locks

    def _sessions(self) -> sessionmaker:
        return self._session_maker or get_session_maker()

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return to_naive_utc(now or self._clock())

    async def create(self, fields: VisitorPassCreate, now: Optional[datetime] = None) -> VisitorPass:
        """Allocate a fresh code and insert the pass.

        Raises InvalidPassWindow, DuplicateCodeExhausted or TransientStoreFailure.
        """
        now_utc = self._now(now)
        valid_from = to_naive_utc(fields.valid_from) if fields.valid_from else now_utc
        valid_until = to_naive_utc(fields.valid_until)

        if valid_until <= valid_from:
            raise InvalidPassWindow(valid_from, valid_until)

        visitor_type = VisitorType(fields.visitor_type).value

        for attempt in range(1, self._max_attempts + 1):
            candidate = self._code_factory()
            try:
                async with self._sessions()() as session:
                    res = await session.execute(
                        select(VisitorPass.id).where(VisitorPass.pass_code == candidate)
                    )
                    if res.first() is not None:
                        logger.info("pass_code_collision", attempt=attempt)
                        continue

                    record = VisitorPass(
                        pass_code=candidate,
                        visitor_name=fields.visitor_name.strip(),
                        visitor_phone=fields.visitor_phone,
                        visitor_type=visitor_type,
                        purpose=fields.purpose,
                        created_by_resident_id=fields.created_by_resident_id,
                        unit_id=fields.unit_id,
                        facility_id=fields.facility_id,
                        valid_from=valid_from,
                        valid_until=valid_until,
                        single_use=fields.single_use,
                        extra_data=dict(fields.extra_data or {}),
                        created_at=now_utc,
                        updated_at=now_utc,
                    )
                    session.add(record)
                    await session.commit()

            except IntegrityError as e:
                # Lost a race for the same code; any other constraint is a real error
                if "pass_code" not in str(e.orig):
                    raise
                logger.warning("pass_code_unique_violation", attempt=attempt)
                continue
            except (DBAPIError, OSError, asyncio.TimeoutError) as e:
                logger.error("pass_create_store_error", error=str(e))
                raise TransientStoreFailure(str(e)) from e

            logger.info(
                "pass_created",
                pass_id=str(record.id),
                resident_id=str(record.created_by_resident_id),
                visitor_type=record.visitor_type,
                single_use=record.single_use,
                attempts=attempt,
            )
            return record

        logger.error("pass_code_exhausted", attempts=self._max_attempts)
        raise DuplicateCodeExhausted(self._max_attempts)

    @asynccontextmanager
    async def lock_for_redemption(self, pass_code: str) -> AsyncIterator[VisitorPass]:
        """Exclusive access to one pass for the duration of a transaction.

        Commits when the block exits normally, rolls back when it raises.
        Raises PassNotFound (before entering the block) or TransientStoreFailure.
        """
        code = normalize_pass_code(pass_code)

        async with self._locks.hold(code, self._lock_timeout):
            try:
                async with self._sessions()() as session:
                    if session.bind.dialect.name == "sqlite":
                        # FOR UPDATE is ignored here; take the write lock up front instead
                        await session.execute(text("BEGIN IMMEDIATE"))
                    res = await session.execute(
                        select(VisitorPass).where(VisitorPass.pass_code == code).with_for_update()
                    )
                    record = res.scalar_one_or_none()
                    if record is None:
                        raise PassNotFound(code)

                    try:
                        yield record
                    except BaseException:
                        await session.rollback()
                        raise

                    await session.commit()
            except (DBAPIError, OSError) as e:
                logger.error("pass_lock_store_error", pass_code=code, error=str(e))
                raise TransientStoreFailure(str(e)) from e

    async def get_by_code(self, pass_code: str) -> Optional[VisitorPass]:
        code = normalize_pass_code(pass_code)
        async with self._sessions()() as session:
            res = await session.execute(select(VisitorPass).where(VisitorPass.pass_code == code))
            return res.scalar_one_or_none()

    async def list_for_resident(
        self,
        resident_id: UUID,
        active_only: bool = False,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> List[VisitorPass]:
        query = select(VisitorPass).where(VisitorPass.created_by_resident_id == resident_id)

        if active_only:
            query = query.where(
                VisitorPass.status == PassStatus.ACTIVE.value,
                VisitorPass.valid_until > self._now(now),
            )
            query = query.order_by(VisitorPass.valid_from.asc())
        else:
            query = query.order_by(VisitorPass.created_at.desc())

        async with self._sessions()() as session:
            res = await session.execute(query.limit(limit))
            return list(res.scalars().all())

    async def list_for_facility(
        self,
        facility_id: UUID,
        status: Optional[str] = None,
        visitor_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> List[VisitorPass]:
        """Read-only oversight listing. The status filter matches effective status."""
        now_utc = self._now(now)
        query = select(VisitorPass).where(VisitorPass.facility_id == facility_id)

        if status:
            status = PassStatus(status).value
            if status == PassStatus.ACTIVE.value:
                query = query.where(
                    VisitorPass.status == status,
                    VisitorPass.valid_until > now_utc,
                )
            elif status == PassStatus.EXPIRED.value:
                query = query.where(
                    or_(
                        VisitorPass.status == status,
                        and_(
                            VisitorPass.status == PassStatus.ACTIVE.value,
                            VisitorPass.valid_until <= now_utc,
                        ),
                    )
                )
            else:
                query = query.where(VisitorPass.status == status)

        if visitor_type:
            query = query.where(VisitorPass.visitor_type == VisitorType(visitor_type).value)

        # Window overlap with [date_from, date_to]
        if date_from:
            query = query.where(VisitorPass.valid_until >= to_naive_utc(date_from))
        if date_to:
            query = query.where(VisitorPass.valid_from <= to_naive_utc(date_to))

        query = query.order_by(VisitorPass.created_at.desc()).offset(skip).limit(limit)

        async with self._sessions()() as session:
            res = await session.execute(query)
            return list(res.scalars().all())

    async def expire_overdue(self, now: Optional[datetime] = None, facility_id: Optional[UUID] = None) -> int:
        """Mark active passes past their window as expired. Idempotent.

        Limited to one facility when facility_id is given.
        """
        now_utc = self._now(now)
        conditions = [
            VisitorPass.status == PassStatus.ACTIVE.value,
            VisitorPass.valid_until <= now_utc,
        ]
        if facility_id is not None:
            conditions.append(VisitorPass.facility_id == facility_id)
        try:
            async with self._sessions()() as session:
                res = await session.execute(
                    update(VisitorPass)
                    .where(*conditions)
                    .values(status=PassStatus.EXPIRED.value, updated_at=now_utc)
                )
                await session.commit()
        except (DBAPIError, OSError) as e:
            logger.error("pass_expire_sweep_error", error=str(e))
            raise TransientStoreFailure(str(e)) from e

        expired = res.rowcount or 0
        logger.info(
            "pass_expire_sweep",
            expired=expired,
            facility_id=str(facility_id) if facility_id else None,
        )
        return expired


# Singleton instance shared by the HTTP API and the WhatsApp webhook
pass_store = PassStore()
