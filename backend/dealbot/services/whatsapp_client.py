import httpx

from dealbot.config.settings import settings
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


class WhatsAppClient:
    """Messaging egress over the WhatsApp Cloud API (Graph API /messages)."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def send(self, user_id: str, message: dict) -> bool:
        if not settings.whatsapp_token or not settings.whatsapp_phone_number_id:
            logger.warning("send — WhatsApp credentials not configured, dropping %s message to %s", message.get("type"), user_id)
            return False

        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": user_id, **message}
        headers = {"Authorization": f"Bearer {settings.whatsapp_token}"}

        try:
            async with httpx.AsyncClient(timeout=settings.timeout_default_seconds, transport=self._transport) as client:
                response = await client.post(settings.whatsapp_messages_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "send — Graph API returned %s for %s message to %s: %s",
                e.response.status_code, message.get("type"), user_id, e.response.text[:settings.request_log_body_limit],
            )
            return False
        except httpx.RequestError as e:
            logger.error("send — could not reach Graph API for %s: %s", user_id, e)
            return False

        logger.info("send — %s message delivered to %s", message.get("type"), user_id)
        return True


whatsapp_client = WhatsAppClient()
