from dealbot.config.settings import settings
from dealbot.schemas.deal import ChatContext
from dealbot.schemas.session import ConversationEntry


def _deal_lines(context: ChatContext) -> str:
    blocks = []
    for i, deal in enumerate(context.deals, 1):
        blocks.append(
            f"{i}. {deal.business_name}\n"
            f"   Offer: {deal.offer or 'Special Deal'}\n"
            f"   Location: {deal.address or 'Address not available'}\n"
            f"   Validity: {deal.validity or 'Limited time'}\n"
            f"   Description: {deal.description or ''}"
        )
    return "\n\n".join(blocks)


def chat_system_prompt(context: ChatContext, recent: list[ConversationEntry]) -> str:
    history = "\n".join(
        f"{'User' if e.role == 'user' else 'Bot'}: {e.content}" for e in recent
    )
    category = context.category or "local"
    return f"""You are a helpful AI assistant for {settings.brand_name}, a {settings.region_name} deals bot. You are chatting with a user about {category} deals near {context.location_label}.

Here are the {len(context.deals)} deals I just showed the user:

{_deal_lines(context)}

Recent conversation context:
{history or '(none)'}

Answer the user's question about these deals in a helpful, friendly and personalized way. Focus only on the deals listed above. Use emojis to keep it engaging. Keep responses under {settings.chat_reply_max_chars} characters to fit WhatsApp limits.

If the user asks about:
- Best value: compare offers and recommend based on savings
- Closest location: recommend based on the addresses shown
- A specific business: give details about that business
- Family-friendly options: consider meal sizes and variety
- Earlier questions: reference what we discussed before

Always end with a helpful suggestion, like asking if they want directions or more details about a specific deal."""
