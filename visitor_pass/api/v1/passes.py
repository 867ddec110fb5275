"""Visitor Passes API - facility oversight and desk redemption"""
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Header
from pydantic import BaseModel

from visitor_pass.domain.civil_time import to_naive_utc, utcnow
from visitor_pass.domain.errors import (
    DuplicateCodeExhausted,
    Expired,
    InvalidCode,
    InvalidPassWindow,
    NotYetValid,
    PassError,
    PassImmutable,
    PassNotActive,
    TransientStoreFailure,
)
from visitor_pass.domain.models import PassStatus, VisitorPass, VisitorPassRead, VisitorType
from visitor_pass.domain.redemption import PassOversight, RedemptionEngine, RedemptionResult
from visitor_pass.infrastructure.database import PassStore, pass_store

router = APIRouter()

ERROR_STATUS = {
    InvalidCode: 404,
    PassNotActive: 409,
    Expired: 410,
    NotYetValid: 409,
    PassImmutable: 409,
    InvalidPassWindow: 400,
    DuplicateCodeExhausted: 503,
    TransientStoreFailure: 503,
}


def get_facility_id(x_facility_id: UUID = Header(..., description="Facility ID")) -> UUID:
    """Extract facility ID from header for multi-facility isolation"""
    return x_facility_id


def get_pass_store() -> PassStore:
    return pass_store


def get_clock() -> Callable[[], datetime]:
    return utcnow


class RedeemRequest(BaseModel):
    pass_code: str


class ReviewRequest(BaseModel):
    admin_id: UUID
    notes: Optional[str] = None


class RevokeRequest(BaseModel):
    admin_id: UUID
    reason: Optional[str] = None


def _http_error(error: PassError) -> HTTPException:
    detail = {"reason": error.reason, "message": str(error)}
    if isinstance(error, PassNotActive):
        detail["status"] = error.status
    elif isinstance(error, NotYetValid):
        detail["valid_from"] = error.valid_from.isoformat()
    elif isinstance(error, Expired):
        detail["valid_until"] = error.valid_until.isoformat()
    return HTTPException(status_code=ERROR_STATUS.get(type(error), 500), detail=detail)


def _read(record: VisitorPass, now: datetime) -> VisitorPassRead:
    read = VisitorPassRead.model_validate(record)
    read.status = record.effective_status(to_naive_utc(now))
    return read


async def _get_in_facility(store: PassStore, pass_code: str, facility_id: UUID) -> VisitorPass:
    record = await store.get_by_code(pass_code)
    if record is None or record.facility_id != facility_id:
        raise _http_error(InvalidCode(pass_code))
    return record


@router.get("/", response_model=List[VisitorPassRead])
async def list_passes(
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    status: Optional[PassStatus] = None,
    visitor_type: Optional[VisitorType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
):
    """List visitor passes for a facility (status filters on effective status)"""
    now = clock()
    passes = await store.list_for_facility(
        facility_id,
        status=status.value if status else None,
        visitor_type=visitor_type.value if visitor_type else None,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
        now=now,
    )
    return [_read(p, now) for p in passes]


@router.get("/resident/{resident_id}", response_model=List[VisitorPassRead])
async def list_resident_passes(
    resident_id: UUID,
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    active_only: bool = False,
    limit: int = 20,
):
    """List passes created by one resident"""
    now = clock()
    passes = await store.list_for_resident(resident_id, active_only=active_only, limit=limit, now=now)
    return [_read(p, now) for p in passes if p.facility_id == facility_id]


@router.post("/redeem", response_model=RedemptionResult)
async def redeem_pass(
    request: RedeemRequest,
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Redeem a pass code at the front desk or kiosk
    Same rules as WhatsApp check-in
    """
    await _get_in_facility(store, request.pass_code, facility_id)

    engine = RedemptionEngine(store, clock=clock)
    try:
        return await engine.redeem_with_retry(request.pass_code)
    except PassError as e:
        raise _http_error(e)


@router.post("/expire-overdue")
async def expire_overdue(
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Sweep the facility's active passes whose window has closed (for an external scheduler)"""
    try:
        expired = await store.expire_overdue(now=clock(), facility_id=facility_id)
    except TransientStoreFailure as e:
        raise _http_error(e)
    return {"expired": expired}


@router.get("/{pass_code}", response_model=VisitorPassRead)
async def get_pass(
    pass_code: str,
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Get a specific pass by code"""
    record = await _get_in_facility(store, pass_code, facility_id)
    return _read(record, clock())


@router.post("/{pass_code}/review", response_model=VisitorPassRead)
async def review_pass(
    pass_code: str,
    request: ReviewRequest,
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Mark a pass as reviewed by an administrator"""
    await _get_in_facility(store, pass_code, facility_id)

    oversight = PassOversight(store, clock=clock)
    try:
        record = await oversight.mark_reviewed(pass_code, request.admin_id, notes=request.notes)
    except PassError as e:
        raise _http_error(e)
    return _read(record, clock())


@router.post("/{pass_code}/revoke", response_model=VisitorPassRead)
async def revoke_pass(
    pass_code: str,
    request: RevokeRequest,
    facility_id: UUID = Depends(get_facility_id),
    store: PassStore = Depends(get_pass_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Revoke an active pass"""
    await _get_in_facility(store, pass_code, facility_id)

    oversight = PassOversight(store, clock=clock)
    try:
        record = await oversight.revoke(pass_code, request.admin_id, reason=request.reason)
    except PassError as e:
        raise _http_error(e)
    return _read(record, clock())
