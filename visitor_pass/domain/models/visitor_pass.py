"""VisitorPass model - time-bound authorization a resident grants to a visitor."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column


class VisitorType(str, Enum):
    GUEST = "guest"
    DELIVERY = "delivery"
    CONTRACTOR = "contractor"
    SERVICE = "service"
    OTHER = "other"


class PassStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REVOKED = "revoked"


TERMINAL_STATUSES = frozenset(
    {PassStatus.USED.value, PassStatus.EXPIRED.value, PassStatus.CANCELLED.value, PassStatus.REVOKED.value}
)


class VisitorPassBase(SQLModel):
    # Visitor information
    visitor_name: str = Field(max_length=255)
    visitor_phone: Optional[str] = Field(default=None, max_length=50)
    visitor_type: str = Field(default=VisitorType.GUEST.value)
    purpose: Optional[str] = None

    # Scope (foreign references, owned elsewhere)
    created_by_resident_id: UUID = Field(index=True)
    unit_id: UUID
    facility_id: UUID = Field(index=True)

    # Validity window, naive UTC
    valid_until: datetime = Field(index=True)
    single_use: bool = Field(default=False)


class VisitorPass(VisitorPassBase, table=True):
    __tablename__ = "visitor_passes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    pass_code: str = Field(max_length=10, unique=True, index=True)

    valid_from: datetime = Field(default_factory=datetime.utcnow)

    # Usage tracking
    status: str = Field(default=PassStatus.ACTIVE.value, index=True)
    used_at: Optional[datetime] = None
    used_count: int = Field(default=0)

    # Admin oversight
    admin_reviewed_at: Optional[datetime] = None
    admin_reviewed_by: Optional[UUID] = None
    admin_notes: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[UUID] = None
    revoke_reason: Optional[str] = None

    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def effective_status(self, now: datetime) -> str:
        """Status as an unlocked reader sees it (``now`` is naive UTC)."""
        if self.status == PassStatus.ACTIVE.value and now >= self.valid_until:
            return PassStatus.EXPIRED.value
        return self.status


class VisitorPassCreate(VisitorPassBase):
    # None = starts at the moment of creation
    valid_from: Optional[datetime] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict)


class VisitorPassRead(VisitorPassBase):
    id: UUID
    pass_code: str
    valid_from: datetime
    status: str
    used_at: Optional[datetime] = None
    used_count: int
    admin_reviewed_at: Optional[datetime] = None
    admin_reviewed_by: Optional[UUID] = None
    admin_notes: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[UUID] = None
    revoke_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
