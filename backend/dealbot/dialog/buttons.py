"""
Button id grammar.

    share_location_prompt | how_it_works | about
    search_(food|fashion|events|groceries)_deals
    get_directions_<i> | share_deal_<i> | set_reminder_<i>
    reminder_(1hour|2hours|4hours)
    more_deals | share_deals | new_search

Older clients still send a few legacy ids; they are rewritten to the
canonical form before parsing so the state machine only sees the ids above.
"""
import re
from dataclasses import dataclass
from typing import Optional

from dealbot.errors import InvalidInput
from dealbot.messages.deal_cards import INVALID_BUTTON_TEXT

SIMPLE_ACTIONS = (
    "share_location_prompt",
    "how_it_works",
    "about",
    "more_deals",
    "share_deals",
    "new_search",
)

SEARCH = re.compile(r"^search_(food|fashion|events|groceries)_deals$")
DEAL_ACTION = re.compile(r"^(get_directions|share_deal|set_reminder)_(\d+)$")
REMINDER = re.compile(r"^reminder_(1hour|2hours|4hours)$")

REMINDER_HOURS = {"1hour": 1, "2hours": 2, "4hours": 4}

LEGACY_IDS = {
    "about_lobangLah": "about",
    "about_lobanglah": "about",
    "food_deals": "search_food_deals",
    "fashion_deals": "search_fashion_deals",
    "clothes_deals": "search_fashion_deals",
    "search_clothes_deals": "search_fashion_deals",
    "events_deals": "search_events_deals",
    "groceries_deals": "search_groceries_deals",
    "search_new_area": "new_search",
    "search_new_deals": "new_search",
    "reminder_1h": "reminder_1hour",
    "reminder_2h": "reminder_2hours",
    "reminder_4h": "reminder_4hours",
}

# Not part of the public grammar; kept so old "Chat with AI" buttons still work
CHAT_IDS = ("chat_ai", "chat_with_ai")


@dataclass(frozen=True)
class Button:
    action: str                      # canonical action name, e.g. "search", "get_directions"
    raw_id: str                      # canonical id after legacy rewriting
    category: Optional[str] = None
    index: Optional[int] = None
    hours: Optional[int] = None


def canonical_id(button_id: str) -> str:
    stripped = (button_id or "").strip()
    return LEGACY_IDS.get(stripped, stripped)


def parse_button(button_id: Optional[str]) -> Button:
    """Parse a button/list reply id; anything outside the grammar raises InvalidInput."""
    canonical = canonical_id(button_id or "")
    if not canonical:
        raise InvalidInput(INVALID_BUTTON_TEXT, "empty button id")

    if canonical in SIMPLE_ACTIONS:
        return Button(action=canonical, raw_id=canonical)
    if canonical in CHAT_IDS:
        return Button(action="chat", raw_id=canonical)

    match = SEARCH.match(canonical)
    if match:
        return Button(action="search", raw_id=canonical, category=match.group(1))

    match = DEAL_ACTION.match(canonical)
    if match:
        return Button(action=match.group(1), raw_id=canonical, index=int(match.group(2)))

    match = REMINDER.match(canonical)
    if match:
        return Button(action="reminder", raw_id=canonical, hours=REMINDER_HOURS[match.group(1)])

    raise InvalidInput(INVALID_BUTTON_TEXT, f"unknown button id {button_id!r}")
