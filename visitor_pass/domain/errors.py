"""Pass error taxonomy.

Business outcomes (InvalidCode, PassNotActive, Expired, NotYetValid) are
rendered to the user as-is. DuplicateCodeExhausted and TransientStoreFailure
are retried once by the caller before surfacing as "please try again".
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class PassError(Exception):
    """Base class for every pass-related failure."""

    reason: str = "pass_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)


class InvalidCode(PassError):
    reason = "invalid_code"

    def __init__(self, pass_code: str):
        self.pass_code = pass_code
        super().__init__(f"No pass matches code {pass_code!r}")


class PassNotActive(PassError):
    reason = "pass_not_active"

    def __init__(self, pass_code: str, status: str):
        self.pass_code = pass_code
        self.status = str(status)
        super().__init__(f"Pass {pass_code} is {self.status}")


class Expired(PassError):
    reason = "expired"

    def __init__(self, pass_code: str, valid_until: datetime):
        self.pass_code = pass_code
        self.valid_until = valid_until
        super().__init__(f"Pass {pass_code} expired at {valid_until.isoformat()}")


class NotYetValid(PassError):
    reason = "not_yet_valid"

    def __init__(self, pass_code: str, valid_from: datetime):
        self.pass_code = pass_code
        self.valid_from = valid_from
        super().__init__(f"Pass {pass_code} is valid from {valid_from.isoformat()}")


class PassImmutable(PassError):
    """Oversight action attempted on a pass that has already been used."""

    reason = "pass_immutable"

    def __init__(self, pass_code: str):
        self.pass_code = pass_code
        super().__init__(f"Pass {pass_code} has been used and can no longer be changed")


class InvalidPassWindow(PassError, ValueError):
    reason = "invalid_window"

    def __init__(self, valid_from: datetime, valid_until: datetime):
        self.valid_from = valid_from
        self.valid_until = valid_until
        super().__init__(
            f"valid_until ({valid_until.isoformat()}) must be after valid_from ({valid_from.isoformat()})"
        )


class PassNotFound(PassError):
    """Store-level miss on a locked lookup. The redemption engine maps it to InvalidCode."""

    reason = "not_found"

    def __init__(self, pass_code: str):
        self.pass_code = pass_code
        super().__init__(f"Pass {pass_code} not found")


class DuplicateCodeExhausted(PassError):
    reason = "duplicate_code_exhausted"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a free pass code after {attempts} attempts")


class TransientStoreFailure(PassError):
    reason = "transient_store_failure"


RETRYABLE_ERRORS = (DuplicateCodeExhausted, TransientStoreFailure)
