"""
Chat follow-up mode.

Entered with free text after deals are shown. The deals on screen are frozen
into a ChatContext and every further text is one turn against it, until the
user exits, asks for a new location, or the turn quota runs out.
"""
import re
from typing import Awaitable, Callable, Optional

from dealbot.config.settings import settings
from dealbot.messages.deal_cards import chat_exit_text, chat_new_location_text, directions_message
from dealbot.schemas.deal import ChatContext, Deal
from dealbot.schemas.session import DialogStep, UserSession
from dealbot.services.chat_service import ChatService, chat_service
from dealbot.utils.keywords import intent_phrases
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

DEAL_NUMBER = re.compile(r"(?:deal|number|no\.?|#)\s*#?(\d+)")


def _matches(text: str, phrases_key: str, exact_key: Optional[str] = None) -> bool:
    if exact_key and text in intent_phrases(exact_key):
        return True
    return any(phrase in text for phrase in intent_phrases(phrases_key))


def detect_intent(text: str) -> str:
    lowered = (text or "").lower().strip()
    if _matches(lowered, "exit_phrases", "exit_exact"):
        return "exit"
    if _matches(lowered, "new_location_phrases"):
        return "new_location"
    if _matches(lowered, "more_deals_phrases"):
        return "more_deals"
    if _matches(lowered, "directions_phrases"):
        return "directions"
    return "question"


def pick_deal_index(text: str, deals: list[Deal]) -> int:
    """Deal the user refers to by ordinal, number or business name; the first one otherwise."""
    if not deals:
        return 0
    lowered = (text or "").lower()

    for position, words in enumerate(intent_phrases("ordinals")):
        if position < len(deals) and any(re.search(rf"\b{re.escape(w)}\b", lowered) for w in words):
            return position

    match = DEAL_NUMBER.search(lowered)
    if match and 1 <= int(match.group(1)) <= len(deals):
        return int(match.group(1)) - 1

    for position, deal in enumerate(deals):
        if deal.normalized_name and deal.normalized_name in lowered:
            return position
    return 0


def freeze_context(session: UserSession) -> ChatContext:
    state = session.user_state
    label = state.location.label if state.location else settings.region_name
    return ChatContext(deals=list(state.last_deals or []), category=state.category, location_label=label)


class ChatMode:
    def __init__(self, chat: ChatService = chat_service):
        self.chat = chat

    def enter(self, session: UserSession) -> None:
        state = session.user_state
        state.chat_context = freeze_context(session)
        state.chat_interaction_count = 0
        state.step = DialogStep.CHAT_MODE
        logger.info("enter — chat mode over %d deals", len(state.chat_context.deals))

    async def turn(
        self,
        session: UserSession,
        text: str,
        *,
        restart: Callable[[], list[dict]],
        search_more: Callable[[], Awaitable[list[Deal]]],
        no_more: Callable[[], list[dict]],
        show_deals: Callable[[list[Deal]], list[dict]],
    ) -> list[dict]:
        state = session.user_state
        if state.chat_context is None:
            self.enter(session)

        if state.chat_interaction_count >= settings.chat_turn_quota:
            logger.info("turn — chat quota of %d reached, restarting", settings.chat_turn_quota)
            return restart()
        state.chat_interaction_count += 1

        intent = detect_intent(text)
        context = state.chat_context
        logger.info("turn — #%d intent=%s", state.chat_interaction_count, intent)

        if intent == "exit":
            state.chat_context = None
            state.chat_interaction_count = 0
            state.step = DialogStep.DEALS_SHOWN
            return [chat_exit_text()]

        if intent == "new_location":
            state.location = None
            state.last_deals = None
            state.chat_context = None
            state.chat_interaction_count = 0
            state.step = DialogStep.AWAITING_LOCATION
            return [chat_new_location_text()]

        if intent == "directions" and context.deals:
            return [directions_message(context.deals[pick_deal_index(text, context.deals)])]

        if intent == "more_deals":
            found = await search_more()
            if not found:
                state.step = DialogStep.CHAT_MODE
                return no_more()
            messages = show_deals(found)
            context.deals.extend(found)
            state.step = DialogStep.CHAT_MODE
            return messages

        return [await self.chat.answer(context, session.conversation, text)]


chat_mode = ChatMode()
