"""Creation Wizard - collects pass fields from a resident over several turns.

One wizard per resident, kept in a WizardStore keyed by resident id.
Abandoned wizards are evicted after an idle period; no pass exists until
the resident confirms, so dropping a wizard never leaves partial state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Tuple
from uuid import UUID

import structlog

from visitor_pass.config import settings
from visitor_pass.domain.civil_time import (
    all_day_window,
    civil_today,
    to_absolute,
    to_civil_display,
    to_civil_time_display,
    utcnow,
)
from visitor_pass.domain.errors import RETRYABLE_ERRORS, InvalidPassWindow
from visitor_pass.domain.models import VisitorPass, VisitorPassCreate, VisitorType
from visitor_pass.infrastructure.directory import ResidentProfile

from . import messages as m

logger = structlog.get_logger()

_PHONE = re.compile(r"^\+?[\d\s\-()]{7,20}$")
_DURATION_TEXT = re.compile(r"^(\d+(?:\.\d+)?)\s*(h|hr|hrs|hour|hours)?$")
_START_TEXT = re.compile(r"^([01]?\d|2[0-3])(?::([0-5]\d))?$")

MAX_DAYS_AHEAD = 30


class WizardState(str, Enum):
    COLLECT_VISITOR_NAME = "COLLECT_VISITOR_NAME"
    COLLECT_VISITOR_TYPE = "COLLECT_VISITOR_TYPE"
    COLLECT_WINDOW = "COLLECT_WINDOW"
    COLLECT_DURATION_OR_SINGLE_USE = "COLLECT_DURATION_OR_SINGLE_USE"
    CONFIRM = "CONFIRM"
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"


@dataclass
class WizardSession:
    resident: ResidentProfile
    last_activity: datetime
    state: WizardState = WizardState.COLLECT_VISITOR_NAME

    visitor_name: Optional[str] = None
    visitor_phone: Optional[str] = None
    visitor_type: Optional[str] = None
    purpose: Optional[str] = None
    visit_date: Optional[date] = None
    start: Optional[str] = None
    duration_hours: Optional[float] = None
    all_day: bool = False
    single_use: Optional[bool] = None

    confirm_failures: int = 0
    created_pass: Optional[VisitorPass] = field(default=None, repr=False)


class WizardStore:
    """resident id -> live wizard, with idle eviction."""

    def __init__(self, idle_timeout: Optional[timedelta] = None):
        if idle_timeout is None:
            idle_timeout = timedelta(seconds=settings.wizard_idle_timeout_seconds)
        self.idle_timeout = idle_timeout
        self._sessions: Dict[UUID, WizardSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, resident_id: UUID) -> bool:
        return resident_id in self._sessions

    def get(self, resident_id: UUID, now: datetime) -> Optional[WizardSession]:
        session = self._sessions.get(resident_id)
        if session is None:
            return None
        if now - session.last_activity >= self.idle_timeout:
            del self._sessions[resident_id]
            logger.info("wizard_evicted_idle", resident_id=str(resident_id))
            return None
        return session

    def put(self, session: WizardSession) -> None:
        self._sessions[session.resident.id] = session

    def discard(self, resident_id: UUID) -> None:
        self._sessions.pop(resident_id, None)

    def evict_idle(self, now: datetime) -> int:
        stale = [
            rid for rid, s in self._sessions.items()
            if now - s.last_activity >= self.idle_timeout
        ]
        for rid in stale:
            del self._sessions[rid]
        if stale:
            logger.info("wizard_evicted_idle_batch", count=len(stale))
        return len(stale)


class PassCreationWizard:
    def __init__(
        self,
        store,
        transport,
        wizards: Optional[WizardStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.transport = transport
        self.wizards = wizards if wizards is not None else WizardStore()
        self._clock = clock

    def is_active(self, resident_id: UUID, now: Optional[datetime] = None) -> bool:
        return self.wizards.get(resident_id, now or self._clock()) is not None

    async def start(self, phone: str, resident: ResidentProfile, now: Optional[datetime] = None) -> WizardSession:
        now = now or self._clock()
        session = WizardSession(resident=resident, last_activity=now)
        self.wizards.put(session)
        logger.info("wizard_started", resident_id=str(resident.id))
        await self.transport.send_text(
            phone,
            "Let's create a visitor pass. What is the visitor's full name?\n\n(Type 'cancel' at any time to stop.)"
        )
        return session

    async def handle(
        self,
        phone: str,
        resident: ResidentProfile,
        message: m.InboundMessage,
        now: Optional[datetime] = None,
    ) -> Optional[WizardSession]:
        """Advance the resident's wizard by one input. Returns None if no wizard is live."""
        now = now or self._clock()
        session = self.wizards.get(resident.id, now)
        if session is None:
            return None

        session.last_activity = now
        choice = message.choice

        if choice == m.CANCEL or choice in m.CANCEL_WORDS:
            return await self._cancel(phone, session)

        handler = {
            WizardState.COLLECT_VISITOR_NAME: self._collect_name,
            WizardState.COLLECT_VISITOR_TYPE: self._collect_type,
            WizardState.COLLECT_WINDOW: self._collect_window,
            WizardState.COLLECT_DURATION_OR_SINGLE_USE: self._collect_duration,
            WizardState.CONFIRM: self._confirm,
        }[session.state]

        await handler(phone, session, message, now)
        return session

    async def _cancel(self, phone: str, session: WizardSession) -> WizardSession:
        session.state = WizardState.CANCELLED
        self.wizards.discard(session.resident.id)
        logger.info("wizard_cancelled", resident_id=str(session.resident.id))
        await self.transport.send_text(phone, "Visitor pass creation cancelled. How else can I help you?")
        return session

    # --- COLLECT_VISITOR_NAME (name, then optional phone) ---

    async def _collect_name(self, phone: str, session: WizardSession, message: m.InboundMessage, now: datetime):
        text = message.clean_text

        if session.visitor_name is None:
            if message.option_id or len(text) < 2:
                await self.transport.send_text(phone, "Please provide a valid name for the visitor.")
                return
            session.visitor_name = text
            await self.transport.send_choices(
                phone,
                "What is the visitor's phone number? (Optional - type 'skip' to skip)",
                [m.ChoiceOption(m.SKIP, "⏭️ Skip")]
            )
            return

        if message.choice == m.SKIP or message.choice in m.SKIP_WORDS:
            session.visitor_phone = None
        elif _PHONE.match(text):
            session.visitor_phone = text
        else:
            await self.transport.send_text(
                phone,
                "That doesn't look like a phone number. Send the number or type 'skip'."
            )
            return

        session.state = WizardState.COLLECT_VISITOR_TYPE
        await self.transport.send_choices(phone, "What type of visitor is this?", m.VISITOR_TYPE_OPTIONS)

    # --- COLLECT_VISITOR_TYPE (type, then optional purpose) ---

    async def _collect_type(self, phone: str, session: WizardSession, message: m.InboundMessage, now: datetime):
        if session.visitor_type is None:
            visitor_type = _parse_visitor_type(message)
            if visitor_type is None:
                await self.transport.send_choices(phone, "Please select a visitor type:", m.VISITOR_TYPE_OPTIONS)
                return
            session.visitor_type = visitor_type
            await self.transport.send_choices(
                phone,
                "What is the purpose of the visit? (Brief description, or 'skip')",
                [m.ChoiceOption(m.SKIP, "⏭️ Skip")]
            )
            return

        text = message.clean_text
        if message.choice == m.SKIP or message.choice in m.SKIP_WORDS:
            session.purpose = None
        elif len(text) >= 2:
            session.purpose = text
        else:
            await self.transport.send_text(phone, "Please provide a brief description of the visit purpose.")
            return

        session.state = WizardState.COLLECT_WINDOW
        await self.transport.send_choices(phone, "When will the visitor arrive?", m.DATE_OPTIONS)

    # --- COLLECT_WINDOW (date, then start time) ---

    async def _collect_window(self, phone: str, session: WizardSession, message: m.InboundMessage, now: datetime):
        today = civil_today(now)

        if session.visit_date is None:
            visit_date = _parse_visit_date(message, today)
            if visit_date is None:
                await self.transport.send_choices(
                    phone,
                    "Please select when the visitor will arrive (or type a date as YYYY-MM-DD):",
                    m.DATE_OPTIONS
                )
                return
            session.visit_date = visit_date
            await self.transport.send_choices(
                phone,
                "What time should the pass start?",
                m.start_options(include_now=visit_date == today)
            )
            return

        start = _parse_start(message, allow_now=session.visit_date == today)
        if start is None:
            await self.transport.send_choices(
                phone,
                "Please pick a start time (or type one as HH:MM):",
                m.start_options(include_now=session.visit_date == today)
            )
            return

        session.start = start
        session.state = WizardState.COLLECT_DURATION_OR_SINGLE_USE
        await self.transport.send_choices(
            phone, "How long will the visit last?", m.duration_options(session.visitor_type)
        )

    # --- COLLECT_DURATION_OR_SINGLE_USE (duration, then single-use flag) ---

    async def _collect_duration(self, phone: str, session: WizardSession, message: m.InboundMessage, now: datetime):
        if session.duration_hours is None and not session.all_day:
            parsed = _parse_duration(message, session.visitor_type)
            if parsed is None:
                await self.transport.send_choices(
                    phone,
                    "Please select a duration from the options provided.",
                    m.duration_options(session.visitor_type)
                )
                return

            hours, all_day = parsed
            _, valid_until = compute_window(session.visit_date, session.start, hours, all_day, now)
            if valid_until <= now:
                await self.transport.send_choices(
                    phone,
                    "That window would already be over. Pick a longer duration or type 'cancel'.",
                    m.duration_options(session.visitor_type)
                )
                return

            session.duration_hours = hours
            session.all_day = all_day
            hint = " (recommended for deliveries)" if session.visitor_type == VisitorType.DELIVERY.value else ""
            await self.transport.send_choices(
                phone,
                f"Should the pass work for one entry only{hint}?",
                m.SINGLE_USE_OPTIONS
            )
            return

        choice = message.choice
        if choice == m.SINGLE_USE_YES or choice in m.YES_WORDS:
            session.single_use = True
        elif choice == m.SINGLE_USE_NO or choice in m.NO_WORDS:
            session.single_use = False
        else:
            await self.transport.send_choices(phone, "Please choose one entry or multiple entries:", m.SINGLE_USE_OPTIONS)
            return

        session.state = WizardState.CONFIRM
        await self.transport.send_choices(phone, self._summary(session, now), m.CONFIRM_OPTIONS)

    # --- CONFIRM ---

    async def _confirm(self, phone: str, session: WizardSession, message: m.InboundMessage, now: datetime):
        choice = message.choice

        if choice == m.CONFIRM_NO or choice in m.NO_WORDS:
            await self._cancel(phone, session)
            return

        if choice != m.CONFIRM_YES and choice not in m.YES_WORDS:
            await self.transport.send_choices(phone, "Please confirm or cancel the visitor pass:", m.CONFIRM_OPTIONS)
            return

        valid_from, valid_until = compute_window(
            session.visit_date, session.start, session.duration_hours, session.all_day, now
        )
        if valid_until <= now:
            await self._restart_window(phone, session, "The selected time window has already passed.")
            return

        fields = VisitorPassCreate(
            visitor_name=session.visitor_name,
            visitor_phone=session.visitor_phone,
            visitor_type=session.visitor_type,
            purpose=session.purpose,
            created_by_resident_id=session.resident.id,
            unit_id=session.resident.unit_id,
            facility_id=session.resident.facility_id,
            valid_from=valid_from,
            valid_until=valid_until,
            single_use=bool(session.single_use),
            extra_data={"channel": "whatsapp"},
        )

        try:
            record = await self._create_with_retry(fields, now)
        except InvalidPassWindow:
            await self._restart_window(phone, session, "The selected time window is not valid.")
            return
        except RETRYABLE_ERRORS as e:
            session.confirm_failures += 1
            logger.error(
                "wizard_create_failed",
                resident_id=str(session.resident.id),
                reason=e.reason,
                confirm_failures=session.confirm_failures,
            )
            if session.confirm_failures >= 2:
                self.wizards.discard(session.resident.id)
                session.state = WizardState.CANCELLED
                await self.transport.send_text(
                    phone,
                    "Sorry, we still couldn't create the visitor pass. Please try again later."
                )
                return
            await self.transport.send_choices(
                phone,
                "Sorry, there was a temporary problem creating the pass. "
                "Your details are saved - tap Confirm to try again.",
                m.CONFIRM_OPTIONS
            )
            return

        session.state = WizardState.CREATED
        session.created_pass = record
        self.wizards.discard(session.resident.id)

        await self.transport.send_text(
            phone,
            f"✅ *Visitor Pass Created!*\n\n"
            f"🎫 Pass Code: *{record.pass_code}*\n\n"
            f"Share this code with {record.visitor_name}. They can use it to check in when they arrive.\n\n"
            f"⏰ Valid: {to_civil_display(record.valid_from)} - {to_civil_display(record.valid_until)}\n"
            f"{'1️⃣ Single entry' if record.single_use else '🔁 Multiple entries'}"
        )

    async def _create_with_retry(self, fields: VisitorPassCreate, now: datetime) -> VisitorPass:
        try:
            return await self.store.create(fields, now=now)
        except RETRYABLE_ERRORS as e:
            logger.warning("wizard_create_retry", reason=e.reason)
            return await self.store.create(fields, now=now)

    async def _restart_window(self, phone: str, session: WizardSession, reason: str) -> None:
        session.visit_date = None
        session.start = None
        session.duration_hours = None
        session.all_day = False
        session.single_use = None
        session.state = WizardState.COLLECT_WINDOW
        await self.transport.send_choices(
            phone, f"{reason} When will the visitor arrive?", m.DATE_OPTIONS
        )

    def _summary(self, session: WizardSession, now: datetime) -> str:
        valid_from, valid_until = compute_window(
            session.visit_date, session.start, session.duration_hours, session.all_day, now
        )
        starts = valid_from or now
        return (
            "📋 *Visitor Pass Summary*\n\n"
            f"👤 Visitor: {session.visitor_name}\n"
            f"📱 Phone: {session.visitor_phone or 'Not provided'}\n"
            f"🏷️ Type: {session.visitor_type}\n"
            f"📝 Purpose: {session.purpose or 'Not provided'}\n"
            f"📅 Date: {session.visit_date.isoformat()}\n"
            f"⏰ Valid: {to_civil_time_display(starts)} - {to_civil_display(valid_until)}\n"
            f"🎟️ Entries: {'one' if session.single_use else 'multiple'}\n\n"
            "Is this correct?"
        )


def compute_window(
    visit_date: date,
    start: str,
    duration_hours: Optional[float],
    all_day: bool,
    now: datetime,
) -> Tuple[Optional[datetime], datetime]:
    """(valid_from, valid_until) as aware UTC instants.

    valid_from is None for "now": the store stamps the creation instant.
    """
    if all_day:
        return all_day_window(visit_date)

    duration = timedelta(hours=duration_hours)
    if start == "now":
        anchor = to_absolute(visit_date, "now", now=now)
        return None, anchor + duration

    valid_from = to_absolute(visit_date, start)
    return valid_from, valid_from + duration


def _parse_visitor_type(message: m.InboundMessage) -> Optional[str]:
    choice = message.choice
    if choice.startswith("VISITOR_TYPE_"):
        choice = choice[len("VISITOR_TYPE_"):].lower()
    try:
        return VisitorType(choice).value
    except ValueError:
        return None


def _parse_visit_date(message: m.InboundMessage, today: date) -> Optional[date]:
    choice = message.choice
    if choice in m.DATE_OFFSETS:
        return today + timedelta(days=m.DATE_OFFSETS[choice])
    if choice in m.DATE_WORDS:
        return today + timedelta(days=m.DATE_WORDS[choice])
    try:
        typed = date.fromisoformat(choice)
    except ValueError:
        return None
    if today <= typed <= today + timedelta(days=MAX_DAYS_AHEAD):
        return typed
    return None


def _parse_start(message: m.InboundMessage, allow_now: bool) -> Optional[str]:
    choice = message.choice
    selector = m.START_SELECTORS.get(choice, choice)

    if selector == "now":
        return "now" if allow_now else None
    if selector in ("morning", "afternoon", "evening"):
        return selector

    match = _START_TEXT.match(selector)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2) or '00'}"
    return None


def _parse_duration(message: m.InboundMessage, visitor_type: Optional[str]) -> Optional[Tuple[float, bool]]:
    offered = {opt.id for opt in m.duration_options(visitor_type)}
    choice = message.choice

    if choice in ("all day", "allday"):
        choice = m.DURATION_ALL_DAY
    elif not choice.startswith("DURATION_"):
        match = _DURATION_TEXT.match(choice)
        if match:
            hours = float(match.group(1))
            choice = f"DURATION_{hours:g}"

    if choice not in offered:
        return None
    if choice == m.DURATION_ALL_DAY:
        return 0.0, True
    return float(choice[len("DURATION_"):]), False
