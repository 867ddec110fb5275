"""Visitor Session Scope - reduced capability set after a successful redemption.

A visitor-scoped sender can only reach the allow-list below; everything else
is denied and the allow-list is presented again. Sessions live in memory for
the interaction only and end on EXIT or when the pass window closes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

import structlog

from visitor_pass.config import settings
from visitor_pass.domain.civil_time import as_aware_utc, to_civil_display, utcnow
from visitor_pass.domain.redemption import RedemptionResult

from . import messages as m

logger = structlog.get_logger()

ALLOWED_ACTIONS = frozenset({m.FACILITY_INFO, m.DIRECTIONS, m.EMERGENCY_CONTACT, m.EXIT})


@dataclass(frozen=True)
class VisitorSession:
    visitor_name: str
    unit_id: UUID
    facility_id: UUID
    pass_code: str
    valid_until: datetime
    started_at: datetime

    def is_live(self, now: datetime) -> bool:
        return as_aware_utc(now) < as_aware_utc(self.valid_until)


class VisitorScopeRegistry:
    """sender -> VisitorSession for senders currently acting as visitors."""

    def __init__(self, transport, clock: Callable[[], datetime] = utcnow):
        self.transport = transport
        self._clock = clock
        self._sessions: Dict[str, VisitorSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def grant(self, sender: str, redemption: RedemptionResult, now: Optional[datetime] = None) -> VisitorSession:
        session = VisitorSession(
            visitor_name=redemption.visitor_name,
            unit_id=redemption.unit_id,
            facility_id=redemption.facility_id,
            pass_code=redemption.pass_code,
            valid_until=as_aware_utc(redemption.valid_until),
            started_at=now or self._clock(),
        )
        self._sessions[sender] = session
        logger.info("visitor_session_started", sender=sender[-4:], pass_code=redemption.pass_code)
        return session

    def current(self, sender: str, now: Optional[datetime] = None) -> Optional[VisitorSession]:
        session = self._sessions.get(sender)
        if session is None:
            return None
        if not session.is_live(now or self._clock()):
            del self._sessions[sender]
            logger.info("visitor_session_expired", sender=sender[-4:], pass_code=session.pass_code)
            return None
        return session

    def end(self, sender: str) -> None:
        self._sessions.pop(sender, None)

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        stale = [sender for sender, s in self._sessions.items() if not s.is_live(now)]
        for sender in stale:
            del self._sessions[sender]
        if stale:
            logger.info("visitor_sessions_evicted", count=len(stale))
        return len(stale)

    async def present_menu(self, sender: str, session: VisitorSession, intro: Optional[str] = None) -> None:
        text = intro or f"What would you like to do, {session.visitor_name}?"
        await self.transport.send_choices(sender, text, m.VISITOR_MENU)

    async def handle(self, sender: str, message: m.InboundMessage, now: Optional[datetime] = None) -> bool:
        """Handle one inbound action from a visitor-scoped sender.

        Returns False when the sender holds no live visitor session, so the
        caller can route the message elsewhere.
        """
        session = self.current(sender, now)
        if session is None:
            return False

        action = message.option_id or _action_from_text(message.clean_text)

        if action not in ALLOWED_ACTIONS:
            logger.info("visitor_action_denied", sender=sender[-4:], action=action or message.clean_text[:30])
            await self.present_menu(
                sender,
                session,
                intro="⛔ That option isn't available with a visitor pass. You can choose from:",
            )
            return True

        if action == m.EXIT:
            self.end(sender)
            logger.info("visitor_session_exited", sender=sender[-4:], pass_code=session.pass_code)
            await self.transport.send_text(sender, f"👋 Goodbye, {session.visitor_name}. Enjoy your visit!")
            return True

        if action == m.FACILITY_INFO:
            text = f"ℹ️ {settings.facility_info_text}\n\nYour pass is valid until {to_civil_display(session.valid_until)}."
        elif action == m.DIRECTIONS:
            text = f"🧭 {settings.directions_text}"
        else:
            text = f"🚨 {settings.emergency_contact_text}"

        await self.transport.send_text(sender, text)
        await self.present_menu(sender, session)
        return True


_TEXT_ACTIONS = {
    "info": m.FACILITY_INFO,
    "building info": m.FACILITY_INFO,
    "directions": m.DIRECTIONS,
    "emergency": m.EMERGENCY_CONTACT,
    "exit": m.EXIT,
    "bye": m.EXIT,
}


def _action_from_text(text: str) -> Optional[str]:
    return _TEXT_ACTIONS.get(text.lower())
