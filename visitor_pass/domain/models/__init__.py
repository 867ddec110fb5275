"""Domain models for the visitor pass service"""
from .visitor_pass import (
    PassStatus,
    TERMINAL_STATUSES,
    VisitorPass,
    VisitorPassCreate,
    VisitorPassRead,
    VisitorType,
)

__all__ = [
    "PassStatus",
    "TERMINAL_STATUSES",
    "VisitorPass",
    "VisitorPassCreate",
    "VisitorPassRead",
    "VisitorType",
]
