import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from dealbot.config.settings import settings
from dealbot.schemas.events import EventKind, InboundEvent
from dealbot.services.event_processor import event_processor
from dealbot.utils.logger import get_logger
from dealbot.utils.security import verify_wa_signature

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])
logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────
# Payload normalization
# ─────────────────────────────────────────────────────────────

def to_inbound_event(message: dict, contacts: list[dict], store_id: str) -> Optional[InboundEvent]:
    """Map one Cloud API message onto an InboundEvent; unsupported types yield None."""
    user_id = message.get("from")
    if not user_id:
        return None
    contact_name = None
    for contact in contacts:
        if contact.get("wa_id") == user_id:
            contact_name = (contact.get("profile") or {}).get("name")

    common = {
        "store_id": store_id,
        "user_id": user_id,
        "message_id": message.get("id"),
        "contact_name": contact_name,
    }
    kind = message.get("type")

    if kind == "text":
        return InboundEvent(kind=EventKind.TEXT, text=(message.get("text") or {}).get("body", ""), **common)

    if kind == "location":
        location = message.get("location") or {}
        return InboundEvent(
            kind=EventKind.LOCATION,
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            **common,
        )

    if kind == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return InboundEvent(kind=EventKind.INTERACTIVE, button_id=reply.get("id"), **common)

    if kind == "button":
        # quick-reply buttons on template messages
        return InboundEvent(kind=EventKind.INTERACTIVE, button_id=(message.get("button") or {}).get("payload"), **common)

    return None


def extract_events(payload: dict) -> list[InboundEvent]:
    events = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            store_id = (value.get("metadata") or {}).get("phone_number_id") or settings.default_store_id
            contacts = value.get("contacts") or []
            for message in value.get("messages") or []:
                event = to_inbound_event(message, contacts, store_id)
                if event is None:
                    logger.info("extract_events — ignoring unsupported message type=%s", message.get("type"))
                    continue
                events.append(event)
    return events


# ─────────────────────────────────────────────────────────────
# Endpoint 1 — Webhook verification  (Meta → You)
# GET /api/whatsapp/webhook
# ─────────────────────────────────────────────────────────────

@router.get("/webhook", response_class=PlainTextResponse)
def verify_webhook(
    hub_mode: str = Query(default="", alias="hub.mode"),
    hub_verify_token: str = Query(default="", alias="hub.verify_token"),
    hub_challenge: str = Query(default="", alias="hub.challenge"),
):
    if hub_mode == "subscribe" and settings.whatsapp_verify_token and hub_verify_token == settings.whatsapp_verify_token:
        logger.info("/webhook — verification succeeded")
        return hub_challenge
    logger.warning("/webhook — verification failed (mode=%s)", hub_mode)
    raise HTTPException(status_code=403, detail="Verification failed")


# ─────────────────────────────────────────────────────────────
# Endpoint 2 — Incoming messages  (Meta → You)
# POST /api/whatsapp/webhook
# ─────────────────────────────────────────────────────────────

@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str = Header(default=None),
):
    """
    Acknowledge immediately and process each message in the background.
    Status callbacks (delivered / read) carry no messages and are ignored.
    """
    raw_body = await request.body()

    # ── Signature verification ──────────────────────────────
    if settings.whatsapp_app_secret:
        if not x_hub_signature_256:
            logger.warning("/webhook — missing X-Hub-Signature-256 header")
            raise HTTPException(status_code=401, detail="Missing signature")
        if not verify_wa_signature(raw_body, x_hub_signature_256, settings.whatsapp_app_secret):
            logger.warning("/webhook — invalid X-Hub-Signature-256")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
        events = extract_events(payload)
    except (ValueError, AttributeError, TypeError) as e:
        logger.warning("/webhook — malformed payload dropped: %s", e)
        return {"received": True}

    for event in events:
        logger.info(
            "/webhook — from=%s (%s) | msg_id=%s | kind=%s | text=%r | button=%s",
            event.user_id, event.contact_name, event.message_id, event.kind.value, event.text, event.button_id,
        )
        background_tasks.add_task(event_processor.process, event)

    return {"received": True}
