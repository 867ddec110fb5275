"""
Visitor Pass Service Configuration
Facility timezone, pass code policy, WhatsApp transport and directory settings
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Service
    service_name: str = "visitor-pass-service"
    port: int = 8003
    debug: bool = False

    # Database (postgresql://... in production, sqlite+aiosqlite:// for local runs)
    database_url: str = ""

    # Evolution API (WhatsApp transport)
    evolution_api_url: str = "http://localhost:8080"
    evolution_api_key: str = ""
    evolution_instance: str = "visitor-pass"

    # Resident directory (resolves a WhatsApp number to a resident profile)
    resident_directory_url: str = "http://localhost:8000"
    resident_directory_api_key: Optional[str] = None

    # Facility civil time: fixed UTC offset, no DST (UTC+8 = Asia/Manila)
    facility_utc_offset_hours: float = 8.0

    # Pass codes: "VP" + 6 hex chars
    pass_code_prefix: str = "VP"
    pass_code_length: int = 6
    pass_code_max_attempts: int = 10

    # Bounded wait for the per-code redemption lock
    pass_lock_timeout_seconds: float = 5.0

    # Abandoned wizards are dropped after this long without input
    wizard_idle_timeout_seconds: int = 900

    # Visitor menu texts
    facility_name: str = "the building"
    facility_info_text: str = (
        "Lobby reception is open 7:00 AM - 11:00 PM. "
        "Please register at the front desk on arrival."
    )
    directions_text: str = (
        "Enter through the main lobby and take the elevators to your host's floor."
    )
    emergency_contact_text: str = "Building security: 911 / front desk extension 0."

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
