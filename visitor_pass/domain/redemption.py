"""Redemption Engine and oversight actions.

Every mutation of an existing pass runs inside PassStore.lock_for_redemption,
so for a given code all attempts are totally ordered by lock acquisition.
Rejections are raised only after the locked block has committed, which lets
the lazy ``active -> expired`` transition persist.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from visitor_pass.domain.civil_time import to_naive_utc, utcnow
from visitor_pass.domain.errors import (
    Expired,
    InvalidCode,
    NotYetValid,
    PassError,
    PassImmutable,
    PassNotActive,
    PassNotFound,
    TransientStoreFailure,
)
from visitor_pass.domain.models import PassStatus, VisitorPass
from visitor_pass.domain.pass_codes import normalize_pass_code

logger = structlog.get_logger()


class RedemptionResult(BaseModel):
    pass_code: str
    visitor_name: str
    visitor_type: str
    purpose: Optional[str] = None
    unit_id: UUID
    facility_id: UUID
    valid_from: datetime
    valid_until: datetime
    single_use: bool
    used_count: int


class RedemptionEngine:
    def __init__(self, store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def redeem(self, pass_code: str, now: Optional[datetime] = None) -> RedemptionResult:
        """Validate and consume a pass atomically.

        Raises InvalidCode, PassNotActive, Expired, NotYetValid or TransientStoreFailure.
        """
        code = normalize_pass_code(pass_code)
        now_utc = to_naive_utc(now or self._clock())
        rejection: Optional[PassError] = None
        result: Optional[RedemptionResult] = None

        try:
            async with self.store.lock_for_redemption(code) as record:
                if record.status != PassStatus.ACTIVE.value:
                    rejection = PassNotActive(code, record.status)

                elif now_utc >= record.valid_until:
                    record.status = PassStatus.EXPIRED.value
                    record.updated_at = now_utc
                    rejection = Expired(code, record.valid_until)

                elif now_utc < record.valid_from:
                    rejection = NotYetValid(code, record.valid_from)

                else:
                    if record.used_at is None:
                        record.used_at = now_utc
                    record.used_count = (record.used_count or 0) + 1
                    if record.single_use:
                        record.status = PassStatus.USED.value
                    record.updated_at = now_utc
                    result = _snapshot(record)
        except PassNotFound:
            rejection = InvalidCode(code)

        if rejection is not None:
            logger.info("redemption_rejected", pass_code=code, reason=rejection.reason)
            raise rejection

        logger.info(
            "pass_redeemed",
            pass_code=code,
            used_count=result.used_count,
            single_use=result.single_use,
        )
        return result

    async def redeem_with_retry(self, pass_code: str, now: Optional[datetime] = None) -> RedemptionResult:
        """Redeem, retrying a transient store failure once."""
        try:
            return await self.redeem(pass_code, now=now)
        except TransientStoreFailure as e:
            logger.warning("redemption_transient_retry", error=str(e))
            return await self.redeem(pass_code, now=now)


def _snapshot(record: VisitorPass) -> RedemptionResult:
    return RedemptionResult(
        pass_code=record.pass_code,
        visitor_name=record.visitor_name,
        visitor_type=record.visitor_type,
        purpose=record.purpose,
        unit_id=record.unit_id,
        facility_id=record.facility_id,
        valid_from=record.valid_from,
        valid_until=record.valid_until,
        single_use=record.single_use,
        used_count=record.used_count,
    )


class PassOversight:
    """Admin review/revoke and resident cancellation, on the locked path."""

    def __init__(self, store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def mark_reviewed(
        self,
        pass_code: str,
        admin_id: UUID,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VisitorPass:
        code = normalize_pass_code(pass_code)
        now_utc = to_naive_utc(now or self._clock())

        try:
            async with self.store.lock_for_redemption(code) as record:
                if record.status == PassStatus.USED.value:
                    raise PassImmutable(code)
                record.admin_reviewed_at = now_utc
                record.admin_reviewed_by = admin_id
                record.admin_notes = notes
                record.updated_at = now_utc
        except PassNotFound:
            raise InvalidCode(code)

        logger.info("pass_reviewed", pass_code=code, admin_id=str(admin_id))
        return record

    async def revoke(
        self,
        pass_code: str,
        admin_id: UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VisitorPass:
        code = normalize_pass_code(pass_code)
        now_utc = to_naive_utc(now or self._clock())

        try:
            async with self.store.lock_for_redemption(code) as record:
                if record.status == PassStatus.USED.value:
                    raise PassImmutable(code)
                if record.status == PassStatus.REVOKED.value:
                    logger.info("pass_already_revoked", pass_code=code)
                    return record
                if record.status != PassStatus.ACTIVE.value:
                    raise PassNotActive(code, record.status)

                # Takes precedence over an unobserved lapse of the window
                record.status = PassStatus.REVOKED.value
                record.revoked_at = now_utc
                record.revoked_by = admin_id
                record.revoke_reason = reason
                record.updated_at = now_utc
        except PassNotFound:
            raise InvalidCode(code)

        logger.info("pass_revoked", pass_code=code, admin_id=str(admin_id))
        return record

    async def cancel_for_resident(
        self,
        pass_code: str,
        resident_id: UUID,
        now: Optional[datetime] = None,
    ) -> VisitorPass:
        code = normalize_pass_code(pass_code)
        now_utc = to_naive_utc(now or self._clock())
        rejection: Optional[PassError] = None

        try:
            async with self.store.lock_for_redemption(code) as record:
                if record.created_by_resident_id != resident_id:
                    rejection = InvalidCode(code)
                elif record.status != PassStatus.ACTIVE.value:
                    rejection = PassNotActive(code, record.status)
                elif now_utc >= record.valid_until:
                    record.status = PassStatus.EXPIRED.value
                    record.updated_at = now_utc
                    rejection = Expired(code, record.valid_until)
                else:
                    record.status = PassStatus.CANCELLED.value
                    record.updated_at = now_utc
        except PassNotFound:
            rejection = InvalidCode(code)

        if rejection is not None:
            raise rejection

        logger.info("pass_cancelled", pass_code=code, resident_id=str(resident_id))
        return record
