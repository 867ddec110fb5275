"""Human-presentable pass codes: prefix + uppercase hex, e.g. VP3FA91C."""

from __future__ import annotations

import re
import secrets
from typing import Optional

from visitor_pass.config import settings

_HEX_ALPHABET = "0123456789ABCDEF"
_SEPARATORS = re.compile(r"[\s\-]+")


def generate_pass_code(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
    prefix = settings.pass_code_prefix if prefix is None else prefix
    n = settings.pass_code_length if length is None else length
    return prefix + "".join(secrets.choice(_HEX_ALPHABET) for _ in range(n))


def normalize_pass_code(raw: str) -> str:
    return _SEPARATORS.sub("", raw or "").upper()


def looks_like_pass_code(text: str) -> bool:
    """True when free text is shaped like a pass code (visitor check-in)."""
    pattern = rf"^{re.escape(settings.pass_code_prefix)}[0-9A-F]{{{settings.pass_code_length}}}$"
    return re.match(pattern, normalize_pass_code(text)) is not None
