"""
Outbound message constructors.

Messages are plain dicts in WhatsApp Cloud API shape without the envelope
(``messaging_product`` / ``to``), which the client adds at send time. Keeping
them as dicts makes them trivially hashable (canonical JSON) and storable.
"""
from typing import Optional

MAX_BUTTONS = 3
BUTTON_TITLE_MAX = 20
HEADER_TEXT_MAX = 60
BODY_TEXT_MAX = 1024
TEXT_BODY_MAX = 4096
LIST_ROW_TITLE_MAX = 24
LIST_ROW_DESCRIPTION_MAX = 72


def clip(text: str, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def text_message(body: str) -> dict:
    return {"type": "text", "text": {"body": clip(body, TEXT_BODY_MAX)}}


def location_message(latitude: float, longitude: float, name: str, address: str) -> dict:
    return {
        "type": "location",
        "location": {"latitude": latitude, "longitude": longitude, "name": name, "address": address},
    }


def _header(header_text: Optional[str], image_url: Optional[str]) -> Optional[dict]:
    if image_url:
        return {"type": "image", "image": {"link": image_url}}
    if header_text:
        return {"type": "text", "text": clip(header_text, HEADER_TEXT_MAX)}
    return None


def button_message(
    body: str,
    buttons: list[tuple[str, str]],
    header_text: Optional[str] = None,
    footer: Optional[str] = None,
    image_url: Optional[str] = None,
) -> dict:
    """Reply-button card. ``buttons`` are (id, title) pairs; at most three are allowed."""
    if not buttons or len(buttons) > MAX_BUTTONS:
        raise ValueError(f"button messages take 1-{MAX_BUTTONS} buttons, got {len(buttons)}")
    interactive = {
        "type": "button",
        "body": {"text": clip(body, BODY_TEXT_MAX)},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": button_id, "title": clip(title, BUTTON_TITLE_MAX)}}
                for button_id, title in buttons
            ]
        },
    }
    header = _header(header_text, image_url)
    if header:
        interactive["header"] = header
    if footer:
        interactive["footer"] = {"text": footer}
    return {"type": "interactive", "interactive": interactive}


def list_message(
    body: str,
    button_label: str,
    sections: list[dict],
    header_text: Optional[str] = None,
    footer: Optional[str] = None,
) -> dict:
    """Single-choice list. Each section is {"title": str, "rows": [(id, title, description), ...]}."""
    interactive = {
        "type": "list",
        "body": {"text": clip(body, BODY_TEXT_MAX)},
        "action": {
            "button": clip(button_label, BUTTON_TITLE_MAX),
            "sections": [
                {
                    "title": clip(section["title"], LIST_ROW_TITLE_MAX),
                    "rows": [
                        {
                            "id": row_id,
                            "title": clip(title, LIST_ROW_TITLE_MAX),
                            "description": clip(description, LIST_ROW_DESCRIPTION_MAX),
                        }
                        for row_id, title, description in section["rows"]
                    ],
                }
                for section in sections
            ],
        },
    }
    if header_text:
        interactive["header"] = {"type": "text", "text": clip(header_text, HEADER_TEXT_MAX)}
    if footer:
        interactive["footer"] = {"text": footer}
    return {"type": "interactive", "interactive": interactive}


def carousel_template(name: str, language: str, cards: list[dict]) -> dict:
    """
    Media-card carousel template. Each card is
    {"image_url": str, "body_params": [str, ...], "button_payloads": [str, ...]}.
    """
    components = []
    for index, card in enumerate(cards):
        card_components = [
            {"type": "header", "parameters": [{"type": "image", "image": {"link": card["image_url"]}}]},
            {"type": "body", "parameters": [{"type": "text", "text": p} for p in card.get("body_params", [])]},
        ]
        for button_index, payload in enumerate(card.get("button_payloads", [])):
            card_components.append({
                "type": "button",
                "sub_type": "quick_reply",
                "index": str(button_index),
                "parameters": [{"type": "payload", "payload": payload}],
            })
        components.append({"card_index": index, "components": card_components})
    return {
        "type": "template",
        "template": {
            "name": name,
            "language": {"code": language},
            "components": [{"type": "carousel", "cards": components}],
        },
    }


def message_kind(message: dict) -> str:
    return message.get("type", "text")


def message_preview(message: dict) -> str:
    """Short human-readable rendition, used for the conversation log."""
    kind = message_kind(message)
    if kind == "text":
        return message["text"]["body"]
    if kind == "location":
        loc = message["location"]
        return f"[Location: {loc.get('name', '')}]"
    if kind == "interactive":
        return message["interactive"]["body"]["text"]
    if kind == "template":
        return f"[Template: {message['template']['name']}]"
    return f"[{kind}]"
