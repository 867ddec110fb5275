"""
Webhook Handler for Evolution API
Routes inbound WhatsApp messages to the visitor scope, the pass wizard,
visitor check-in or the resident menu
"""
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
import structlog

from visitor_pass.domain.civil_time import to_civil_display, utcnow
from visitor_pass.domain.errors import (
    Expired,
    InvalidCode,
    NotYetValid,
    PassNotActive,
    TransientStoreFailure,
)
from visitor_pass.domain.models import PassStatus
from visitor_pass.domain.pass_codes import looks_like_pass_code, normalize_pass_code
from visitor_pass.domain.redemption import PassOversight, RedemptionEngine
from visitor_pass.infrastructure.database import PassStore, pass_store
from visitor_pass.infrastructure.directory import ResidentProfile, resident_directory
from visitor_pass.infrastructure.whatsapp import evolution_client

from . import messages as m
from .visitor_scope import VisitorScopeRegistry
from .wizard import PassCreationWizard

logger = structlog.get_logger()

_CANCEL_PASS = re.compile(r"^cancel\s+(\S.*)$", re.I)

NOT_ACTIVE_MESSAGES = {
    PassStatus.USED.value: "❌ This pass has already been used.",
    PassStatus.EXPIRED.value: "❌ This pass has expired.",
    PassStatus.REVOKED.value: "❌ This pass has been revoked by building management.",
    PassStatus.CANCELLED.value: "❌ This pass was cancelled by the resident.",
}


def parse_inbound(webhook_data: Dict[str, Any]) -> Optional[m.InboundMessage]:
    """Extract sender, text and selected option from an Evolution API payload."""
    if webhook_data.get("event") != "messages.upsert":
        return None  # Ignore non-message events

    message_data = webhook_data.get("data", {})
    message_info = message_data.get("key", {})
    message_content = message_data.get("message") or {}

    if message_info.get("fromMe"):
        return None

    phone = message_info.get("remoteJid", "").replace("@s.whatsapp.net", "")
    message_id = message_info.get("id")

    text = None
    option_id = None

    if "conversation" in message_content:
        text = message_content["conversation"]
    elif "extendedTextMessage" in message_content:
        text = message_content["extendedTextMessage"].get("text")
    elif "buttonsResponseMessage" in message_content:
        # User clicked a button
        reply = message_content["buttonsResponseMessage"]
        option_id = reply.get("selectedButtonId")
        text = reply.get("selectedDisplayText")
    elif "listResponseMessage" in message_content:
        reply = message_content["listResponseMessage"]
        option_id = (reply.get("singleSelectReply") or {}).get("selectedRowId")
        text = reply.get("title")
    elif "templateButtonReplyMessage" in message_content:
        reply = message_content["templateButtonReplyMessage"]
        option_id = reply.get("selectedId")
        text = reply.get("selectedDisplayText")

    if not phone or (not text and not option_id):
        return None

    return m.InboundMessage(sender=phone, text=text, option_id=option_id, message_id=message_id)


class WebhookHandler:
    """Handle incoming WhatsApp webhooks from Evolution API"""

    def __init__(
        self,
        store: Optional[PassStore] = None,
        transport=None,
        directory=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store if store is not None else pass_store
        self.transport = transport if transport is not None else evolution_client
        self.directory = directory if directory is not None else resident_directory
        self._clock = clock

        self.engine = RedemptionEngine(self.store, clock=clock)
        self.oversight = PassOversight(self.store, clock=clock)
        self.wizard = PassCreationWizard(self.store, self.transport, clock=clock)
        self.visitors = VisitorScopeRegistry(self.transport, clock=clock)

    async def process_message(self, webhook_data: Dict[str, Any]) -> None:
        """
        Process incoming WhatsApp message

        Args:
            webhook_data: Webhook payload from Evolution API
        """
        message = parse_inbound(webhook_data)
        if message is None:
            logger.debug("webhook_ignored", event_type=webhook_data.get("event"))
            return

        logger.info(
            "message_received",
            phone=message.sender[-4:],
            option_id=message.option_id,
            message_preview=(message.text or "")[:50],
            message_id=message.message_id,
        )

        if message.message_id:
            await self.transport.mark_as_read(message.message_id)

        try:
            await self.handle(message)
        except Exception as e:
            logger.exception("webhook_process_error", error=str(e), phone=message.sender[-4:])
            await self.transport.send_text(
                message.sender,
                "Sorry, something went wrong. Please try again."
            )

    async def handle(self, message: m.InboundMessage, now: Optional[datetime] = None) -> None:
        now = now or self._clock()
        phone = message.sender

        self.wizard.wizards.evict_idle(now)
        self.visitors.evict_expired(now)

        # Visitor-scoped senders never reach anything beyond the visitor menu
        if await self.visitors.handle(phone, message, now=now):
            return

        try:
            resident = await self.directory.get_by_phone(phone)
        except httpx.HTTPError as e:
            logger.error("get_resident_error", error=str(e), phone=phone[-4:])
            # Check-in does not need the directory
            if message.text and looks_like_pass_code(message.text):
                await self._handle_check_in(phone, message.text, now)
                return
            await self.transport.send_text(
                phone,
                "Sorry, we couldn't look up your account right now. Please try again in a moment."
            )
            return

        if resident is not None:
            if await self.wizard.handle(phone, resident, message, now=now) is not None:
                return

        if message.text and looks_like_pass_code(message.text):
            await self._handle_check_in(phone, message.text, now)
            return

        if resident is None:
            await self._handle_unregistered_number(phone)
            return

        await self._handle_resident(phone, resident, message, now)

    async def _handle_check_in(self, phone: str, raw_code: str, now: datetime) -> None:
        """Handle visitor check-in with pass code"""
        code = normalize_pass_code(raw_code)

        try:
            result = await self.engine.redeem_with_retry(code, now=now)
        except InvalidCode:
            await self.transport.send_text(
                phone, "❌ Invalid pass code.\n\nPlease check your pass code and try again."
            )
            return
        except PassNotActive as e:
            await self.transport.send_text(
                phone, NOT_ACTIVE_MESSAGES.get(e.status, f"❌ This pass is {e.status}.")
            )
            return
        except Expired:
            await self.transport.send_text(phone, "❌ This pass has expired.")
            return
        except NotYetValid as e:
            await self.transport.send_text(
                phone,
                f"⏳ This pass is not valid yet. It becomes valid from {to_civil_display(e.valid_from)}."
            )
            return
        except TransientStoreFailure:
            await self.transport.send_text(
                phone, "Sorry, we couldn't validate your pass right now. Please try again."
            )
            return

        session = self.visitors.grant(phone, result, now=now)
        logger.info("visitor_checked_in", pass_code=code, unit_id=str(result.unit_id))

        await self.transport.send_text(
            phone,
            f"✅ *Welcome, {result.visitor_name}!*\n\n"
            "Your visitor pass has been validated.\n\n"
            f"⏰ This pass is valid until: {to_civil_display(result.valid_until)}\n\n"
            "Please proceed to the building. Have a great visit!"
        )
        await self.visitors.present_menu(phone, session)

    async def _handle_resident(
        self,
        phone: str,
        resident: ResidentProfile,
        message: m.InboundMessage,
        now: datetime,
    ) -> None:
        choice = message.choice

        if choice == m.CREATE_PASS or choice in ("new pass", "visitor pass"):
            await self.wizard.start(phone, resident, now=now)
            return

        if choice == m.LIST_PASSES or choice in ("my passes", "passes"):
            await self._list_passes(phone, resident, now)
            return

        if choice == m.CANCEL_PASS:
            await self.transport.send_text(phone, "To cancel a pass, reply with: cancel <pass code>")
            return

        match = _CANCEL_PASS.match(message.clean_text)
        if match and not message.option_id:
            await self._cancel_pass(phone, resident, match.group(1), now)
            return

        await self.transport.send_choices(
            phone, f"Hi {resident.name}! What would you like to do?", m.RESIDENT_MENU
        )

    async def _list_passes(self, phone: str, resident: ResidentProfile, now: datetime) -> None:
        """List active visitor passes for a resident"""
        passes = await self.store.list_for_resident(resident.id, active_only=True, limit=5, now=now)

        if not passes:
            await self.transport.send_text(phone, "You don't have any active visitor passes at the moment.")
            return

        lines = ["📋 *Your Active Visitor Passes:*\n"]
        for p in passes:
            lines.append(f"🎫 Code: {p.pass_code}")
            lines.append(f"👤 Visitor: {p.visitor_name}")
            lines.append(f"📅 Valid: {to_civil_display(p.valid_from)} - {to_civil_display(p.valid_until)}")
            lines.append(f"Status: {f'Used {p.used_count} time(s)' if p.used_count else 'Not used yet'}")
            lines.append("---")

        await self.transport.send_text(phone, "\n".join(lines))

    async def _cancel_pass(self, phone: str, resident: ResidentProfile, raw_code: str, now: datetime) -> None:
        code = normalize_pass_code(raw_code)
        try:
            await self.oversight.cancel_for_resident(code, resident.id, now=now)
        except InvalidCode:
            await self.transport.send_text(phone, f"❌ You don't have a visitor pass with code {code}.")
            return
        except PassNotActive as e:
            await self.transport.send_text(
                phone, NOT_ACTIVE_MESSAGES.get(e.status, f"❌ This pass is {e.status}.")
            )
            return
        except Expired:
            await self.transport.send_text(phone, NOT_ACTIVE_MESSAGES[PassStatus.EXPIRED.value])
            return
        except TransientStoreFailure:
            await self.transport.send_text(phone, "Sorry, please try cancelling again in a moment.")
            return

        await self.transport.send_text(phone, f"✅ Visitor pass {code} has been cancelled successfully.")

    async def _handle_unregistered_number(self, phone: str) -> None:
        """
        Messages from numbers that are not residents: visitors checking in.
        """
        logger.info("unregistered_number_message", phone=phone[-4:])
        await self.transport.send_text(
            phone,
            "👋 Welcome! If you are a visitor, please send the pass code you received "
            "from your host (for example VP1A2B3C)."
        )


# Singleton instance
webhook_handler = WebhookHandler()
