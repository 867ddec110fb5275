"""
Evolution API Client
Sends WhatsApp texts and choice prompts (buttons / lists)
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Sequence

import httpx
import structlog

from visitor_pass.config import settings

logger = structlog.get_logger()

MAX_BUTTONS = 3


@dataclass(frozen=True)
class ChoiceOption:
    """A selectable option; ``id`` comes back in the inbound webhook."""
    id: str
    title: str


class EvolutionAPIClient:
    """Client for Evolution API (WhatsApp Business)"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.evolution_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.evolution_api_key
        self.instance = instance or settings.evolution_instance
        self.headers = {
            "apikey": self.api_key,
            "Content-Type": "application/json"
        }

    async def _post(self, endpoint: str, payload: Dict[str, Any], timeout: float = 10.0) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}/{self.instance}"
        async with httpx.AsyncClient() as client:
            response = await client.post(
                url,
                headers=self.headers,
                json=payload,
                timeout=timeout
            )
            response.raise_for_status()
            return response.json()

    async def send_text(self, phone: str, message: str) -> Dict[str, Any]:
        """
        Send text message to WhatsApp number

        Args:
            phone: Destination phone (5215512345678 format)
            message: Text message
        """
        try:
            result = await self._post("message/sendText", {"number": phone, "text": message})
            logger.info("whatsapp_message_sent", phone=phone[-4:], message_preview=message[:50])
            return result

        except httpx.HTTPError as e:
            logger.error("whatsapp_send_failed", error=str(e), phone=phone[-4:])
            raise

    async def send_choices(
        self,
        phone: str,
        message: str,
        options: Sequence[ChoiceOption],
        footer: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send a prompt with selectable options.

        Up to three options go out as reply buttons, longer menus as a list message.
        """
        if len(options) <= MAX_BUTTONS:
            return await self.send_buttons(phone, message, options, footer=footer)
        return await self.send_list(phone, message, options, footer=footer)

    async def send_buttons(
        self,
        phone: str,
        message: str,
        options: Sequence[ChoiceOption],
        footer: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {
            "number": phone,
            "title": "",
            "description": message,
            "footer": footer or "",
            "buttons": [
                {"type": "reply", "displayText": opt.title, "id": opt.id}
                for opt in options[:MAX_BUTTONS]
            ]
        }

        try:
            result = await self._post("message/sendButtons", payload)
            logger.info("whatsapp_buttons_sent", phone=phone[-4:], buttons=len(options))
            return result

        except httpx.HTTPError as e:
            logger.error("whatsapp_buttons_failed", error=str(e), phone=phone[-4:])
            raise

    async def send_list(
        self,
        phone: str,
        message: str,
        options: Sequence[ChoiceOption],
        footer: Optional[str] = None,
        button_text: str = "Options"
    ) -> Dict[str, Any]:
        rows: List[Dict[str, str]] = [
            {"title": opt.title, "description": "", "rowId": opt.id}
            for opt in options
        ]
        payload = {
            "number": phone,
            "title": "",
            "description": message,
            "buttonText": button_text,
            "footerText": footer or "",
            "sections": [{"title": button_text, "rows": rows}]
        }

        try:
            result = await self._post("message/sendList", payload)
            logger.info("whatsapp_list_sent", phone=phone[-4:], rows=len(rows))
            return result

        except httpx.HTTPError as e:
            logger.error("whatsapp_list_failed", error=str(e), phone=phone[-4:])
            raise

    async def mark_as_read(self, message_id: str) -> None:
        """Mark message as read"""
        try:
            await self._post("chat/markMessageAsRead", {"readMessages": [{"id": message_id}]}, timeout=5.0)
        except httpx.HTTPError as e:
            logger.warning("mark_read_failed", error=str(e))

    async def get_instance_status(self) -> Dict[str, Any]:
        """Get Evolution API instance status"""
        url = f"{self.base_url}/instance/connectionState/{self.instance}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url,
                    headers=self.headers,
                    timeout=5.0
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPError as e:
            logger.error("instance_status_failed", error=str(e))
            raise


# Singleton instance
evolution_client = EvolutionAPIClient()
