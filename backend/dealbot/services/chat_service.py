from dealbot.config.settings import settings
from dealbot.messages.deal_cards import chat_failure_text, chat_reply_text
from dealbot.prompts.chat_prompts import chat_system_prompt
from dealbot.schemas.deal import ChatContext
from dealbot.schemas.session import ConversationEntry
from dealbot.services.llm_service import LLMService, llm_service
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 200


class ChatService:
    """Answers free-text follow-up questions about a frozen set of deals."""

    def __init__(self, llm: LLMService = llm_service):
        self.llm = llm

    async def answer(self, context: ChatContext, conversation: list[ConversationEntry], question: str) -> dict:
        recent = conversation[-settings.chat_history_window:]
        result = await self.llm.complete(
            chat_system_prompt(context, recent),
            question,
            temperature=CHAT_TEMPERATURE,
            max_tokens=CHAT_MAX_TOKENS,
        )
        if not result.ok:
            logger.warning("answer — chat model failed (%s), sending fallback", result.kind.value)
            return chat_failure_text(context.category, context.location_label)
        return chat_reply_text(result.value)


chat_service = ChatService()
