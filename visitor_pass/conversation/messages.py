"""Inbound message shape and the option ids used in chat prompts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from visitor_pass.infrastructure.whatsapp import ChoiceOption


@dataclass(frozen=True)
class InboundMessage:
    """One inbound event: free text and/or a selected option id."""
    sender: str
    text: Optional[str] = None
    option_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def clean_text(self) -> str:
        return (self.text or "").strip()

    @property
    def choice(self) -> str:
        """Option id when one was selected, otherwise the lowercased text."""
        if self.option_id:
            return self.option_id
        return self.clean_text.lower()


# Wizard controls
CANCEL = "CANCEL"
SKIP = "SKIP"
CANCEL_WORDS = {"cancel", "stop", "quit"}
SKIP_WORDS = {"skip", "none", "-"}

VISITOR_TYPE_OPTIONS = [
    ChoiceOption("VISITOR_TYPE_GUEST", "👥 Guest"),
    ChoiceOption("VISITOR_TYPE_DELIVERY", "📦 Delivery"),
    ChoiceOption("VISITOR_TYPE_CONTRACTOR", "🔧 Contractor"),
    ChoiceOption("VISITOR_TYPE_SERVICE", "🏥 Service"),
    ChoiceOption("VISITOR_TYPE_OTHER", "📝 Other"),
]

DATE_TODAY = "VISIT_DATE_TODAY"
DATE_TOMORROW = "VISIT_DATE_TOMORROW"
DATE_DAY_AFTER = "VISIT_DATE_DAY_AFTER"
DATE_OFFSETS = {DATE_TODAY: 0, DATE_TOMORROW: 1, DATE_DAY_AFTER: 2}
DATE_WORDS = {"today": 0, "tomorrow": 1, "day after": 2}

DATE_OPTIONS = [
    ChoiceOption(DATE_TODAY, "📅 Today"),
    ChoiceOption(DATE_TOMORROW, "📅 Tomorrow"),
    ChoiceOption(DATE_DAY_AFTER, "📅 Day After"),
]

START_SELECTORS = {
    "START_NOW": "now",
    "START_MORNING": "morning",
    "START_AFTERNOON": "afternoon",
    "START_EVENING": "evening",
}


def start_options(include_now: bool) -> List[ChoiceOption]:
    options = [
        ChoiceOption("START_MORNING", "🌅 Morning (9:00 AM)"),
        ChoiceOption("START_AFTERNOON", "☀️ Afternoon (2:00 PM)"),
        ChoiceOption("START_EVENING", "🌆 Evening (6:00 PM)"),
    ]
    if include_now:
        options.insert(0, ChoiceOption("START_NOW", "⚡ Now"))
    return options


DURATION_ALL_DAY = "DURATION_ALL_DAY"


def duration_options(visitor_type: Optional[str]) -> List[ChoiceOption]:
    # Different durations based on visitor type
    if visitor_type == "delivery":
        return [
            ChoiceOption("DURATION_0.5", "⏱️ 30 minutes"),
            ChoiceOption("DURATION_1", "⏱️ 1 hour"),
            ChoiceOption("DURATION_2", "⏱️ 2 hours"),
        ]
    return [
        ChoiceOption("DURATION_2", "⏱️ 2 hours"),
        ChoiceOption("DURATION_4", "⏱️ 4 hours"),
        ChoiceOption("DURATION_8", "⏱️ 8 hours"),
        ChoiceOption(DURATION_ALL_DAY, "📅 All day"),
    ]


SINGLE_USE_YES = "SINGLE_USE_YES"
SINGLE_USE_NO = "SINGLE_USE_NO"
SINGLE_USE_OPTIONS = [
    ChoiceOption(SINGLE_USE_YES, "1️⃣ One entry only"),
    ChoiceOption(SINGLE_USE_NO, "🔁 Multiple entries"),
]

CONFIRM_YES = "CONFIRM_PASS_YES"
CONFIRM_NO = "CONFIRM_PASS_NO"
CONFIRM_OPTIONS = [
    ChoiceOption(CONFIRM_YES, "✅ Confirm"),
    ChoiceOption(CONFIRM_NO, "❌ Cancel"),
]

YES_WORDS = {"yes", "y", "confirm", "ok"}
NO_WORDS = {"no", "n"}

# Resident menu
CREATE_PASS = "CREATE_PASS"
LIST_PASSES = "LIST_PASSES"
CANCEL_PASS = "CANCEL_PASS"
MAINTENANCE = "MAINTENANCE_REQUEST"
BOOKING = "BOOK_AMENITY"

RESIDENT_MENU = [
    ChoiceOption(CREATE_PASS, "🎫 New visitor pass"),
    ChoiceOption(LIST_PASSES, "📋 My visitor passes"),
    ChoiceOption(CANCEL_PASS, "🚫 Cancel a pass"),
]

# Visitor menu (the whole capability set of a redeemed pass)
FACILITY_INFO = "FACILITY_INFO"
DIRECTIONS = "DIRECTIONS"
EMERGENCY_CONTACT = "EMERGENCY_CONTACT"
EXIT = "EXIT"

VISITOR_MENU = [
    ChoiceOption(FACILITY_INFO, "ℹ️ Building info"),
    ChoiceOption(DIRECTIONS, "🧭 Directions"),
    ChoiceOption(EMERGENCY_CONTACT, "🚨 Emergency contact"),
    ChoiceOption(EXIT, "👋 Exit"),
]
