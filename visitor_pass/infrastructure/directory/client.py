"""
Resident directory client
Resolves a WhatsApp sender to the resident profile that owns passes
"""
from typing import Optional
from uuid import UUID

import httpx
import structlog
from pydantic import BaseModel

from visitor_pass.config import settings

logger = structlog.get_logger()


class ResidentProfile(BaseModel):
    id: UUID
    name: str
    unit_id: UUID
    facility_id: UUID
    unit_label: Optional[str] = None


class ResidentDirectoryClient:
    """Looks residents up by phone in the property-management backend"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or settings.resident_directory_url).rstrip("/")
        api_key = api_key if api_key is not None else settings.resident_directory_api_key
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def get_by_phone(self, phone: str) -> Optional[ResidentProfile]:
        """
        Get resident data from the directory.

        Returns None for unknown numbers; network failures propagate so the
        caller can tell "not a resident" from "directory down".
        """
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{self.base_url}/api/v1/residents/by-phone/{phone}",
                headers=self.headers,
                timeout=5.0
            )

        if response.status_code == 404:
            return None
        response.raise_for_status()

        data = response.json()
        if not data:
            return None

        return ResidentProfile(
            id=data["id"],
            name=data.get("name", ""),
            unit_id=data["unit_id"],
            facility_id=data.get("facility_id") or data["condominium_id"],
            unit_label=data.get("unit"),
        )


# Singleton instance
resident_directory = ResidentDirectoryClient()
