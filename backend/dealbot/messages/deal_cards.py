"""
User-facing cards and texts.

Every outbound message the dialog produces is built here so wording, button
ids and layout limits live in one place.
"""
import re
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from dealbot.config.settings import settings
from dealbot.messages.builders import (
    button_message,
    carousel_template,
    clip,
    list_message,
    location_message,
    text_message,
)
from dealbot.schemas.deal import Deal
from dealbot.schemas.location import Location
from dealbot.utils.clock import format_local, local_now
from dealbot.utils.keywords import CATEGORIES, category_info

DEAL_BODY_MAX = 950
DEAL_HEADER_MAX = 55
FOOTER_RULE = "──────────"
UTM_PARAMS = "utm_source={brand}&utm_medium=whatsapp&utm_campaign=deals"

CONFIRMATION_CATEGORIES = ("food", "fashion", "groceries")

APOLOGY_TEXT = "Sorry, I encountered an error. Please try again! 😅"
NO_DEALS_TEXT = "😅 Sorry, I couldn't find any deals at the moment. Please try a different category or location!"
NO_MORE_DEALS_TEXT = (
    "😅 Sorry, I couldn't find any new deals at the moment. You've already seen all the best deals available!"
    "\n\n💡 Try searching in a different category or check back later for fresh deals!"
)
NEED_LOCATION_TEXT = "❌ Please share your location first so I can find deals near you! 📍"
SHARE_LOCATION_TEXT = "📍 Please share your location to find amazing deals near you!"
OUT_OF_REGION_PREFIX = "❌ Location is not in"
INVALID_LOCATION_TEXT = (
    "🤔 I couldn't read that location. Please tap 📎 → Location and share your current location again."
)
INVALID_BUTTON_TEXT = "🤔 Sorry, I didn't understand that option. Please use the buttons below the latest message."
LOCATION_NOT_FOUND_TEXT = (
    "🔍 I couldn't find that place. Try a mall, MRT station or neighbourhood name "
    "(e.g. Orchard Road, Tampines Mall), or share your location with 📎 → Location."
)


def _brand() -> str:
    return settings.brand_name


def category_emoji(category: Optional[str]) -> str:
    return category_info(category).get("emoji", "🎯")


def category_label(category: Optional[str]) -> str:
    return category_info(category).get("label", "Deals")


def maps_url(address: str) -> str:
    return f"https://www.google.com/maps/search/?api=1&query={quote(address or '', safe='')}"


def with_utm(url: str) -> str:
    params = UTM_PARAMS.format(brand=_brand())
    return f"{url}&{params}" if "?" in url else f"{url}?{params}"


# ── Welcome & information ─────────────────────────────────────

def greeting_line(text: Optional[str]) -> str:
    lowered = (text or "").lower()
    if "hello" in lowered or re.search(r"\bhi\b", lowered):
        return "Hello! Great to meet you! 👋"
    if "good morning" in lowered:
        return "Good morning! Hope you're having a wonderful day! 🌅"
    if "good afternoon" in lowered:
        return "Good afternoon! Perfect timing for some deal hunting! ☀️"
    if "good evening" in lowered:
        return "Good evening! Let's find you some amazing deals! 🌆"
    if "help" in lowered:
        return "I'm here to help you find the best deals! 🤝"
    return "Hi there! 👋"


def welcome_card(text: Optional[str] = None) -> dict:
    body = (
        f"{greeting_line(text)}\n\n"
        f"I'm your personal AI deal hunter from *{_brand()}*, {settings.region_name}'s smartest deal discovery platform! 🤖\n\n"
        "🎯 *What I offer:*\n"
        "• AI-powered search across thousands of deals\n"
        "• Real-time weather + hourly forecasts for today\n"
        "• Location-based recommendations\n"
        "• Food, fashion, groceries & more!\n\n"
        "📍 *Ready to start saving?* Share your location and I'll find amazing deals nearby with today's weather forecast!"
    )
    return button_message(
        body,
        [
            ("share_location_prompt", "📍 Share Location"),
            ("how_it_works", "❓ How It Works"),
            ("about", "🎯 About Us"),
        ],
        header_text="Welcome",
        footer=f"🚀 {settings.region_name}'s Smartest Deal Discovery Platform",
    )


def how_it_works_text() -> dict:
    return text_message(
        f"🤖 *How {_brand()} Works:*\n\n"
        "1️⃣ *Share Location* - Tell us where you are\n"
        "2️⃣ *Choose Category* - Food, fashion, events, etc.\n"
        "3️⃣ *Get Deals* - AI finds the best deals nearby\n"
        "4️⃣ *Chat & Explore* - Ask questions about deals\n\n"
        "🎯 *Smart Features:*\n"
        "• Real-time weather integration\n"
        "• Location-based recommendations\n"
        "• Deal deduplication (no repeats!)\n"
        "• Reminders for deals you like\n\n"
        "📍 Ready to start? Share your location!"
    )


def about_text() -> dict:
    return text_message(
        f"🎯 *About {_brand()}:*\n\n"
        f"We're {settings.region_name}'s smartest deal discovery platform! 🤖\n\n"
        "*What makes us special:*\n"
        "• AI-powered deal search\n"
        "• Real-time location & weather\n"
        "• No repeated deals\n"
        "• Interactive WhatsApp experience\n\n"
        "💡 *Lobang* = Singaporean slang for 'good deal'\n\n"
        "📍 Let's find you some amazing lobangs!"
    )


def share_location_text() -> dict:
    return text_message(SHARE_LOCATION_TEXT)


def out_of_region_text(country: Optional[str] = None) -> dict:
    where = f" (that looks like {country})" if country and not country.startswith("outside") else ""
    return text_message(
        f"{OUT_OF_REGION_PREFIX} {settings.region_name}{where}. "
        f"{_brand()} currently finds deals in {settings.region_name} only. "
        f"Please share a location within {settings.region_name}! 🇸🇬"
    )


# ── Location confirmation & category choice ───────────────────

def weather_lines(location: Location) -> str:
    lines = []
    if location.weather:
        lines.append(f"🌤️ *Weather now:* {location.weather.emoji} {location.weather.display_text}")
    else:
        lines.append("🌤️ *Weather now:* weather unavailable")
    if location.hourly_forecast:
        upcoming = location.hourly_forecast[:3]
        lines.append("🕐 *Next hours:*\n" + "\n".join(f"• {entry.display_text}" for entry in upcoming))
    return "\n".join(lines)


def location_confirmation_card(location: Location) -> dict:
    area = location.area or settings.region_name
    body = (
        f"🎉 Location confirmed! I found {location.display_name} in {area}.\n\n"
        f"{weather_lines(location)}\n\n"
        "What kind of amazing deals should I find for you today?"
    )
    return button_message(
        body,
        [(f"search_{c}_deals", category_info(c)["button_title"]) for c in CONFIRMATION_CATEGORIES],
        header_text=f"📍 {location.display_name}",
        footer="Choose your deal category",
    )


def category_prompt_card(location: Location) -> dict:
    return button_message(
        f"📍 Searching around *{location.label}*.\n\n"
        "Which deals would you like? Pick a category below, or type *events* for events & attractions.",
        [(f"search_{c}_deals", category_info(c)["button_title"]) for c in CONFIRMATION_CATEGORIES],
        footer="Choose your deal category",
    )


def category_list_message(location: Location) -> dict:
    rows = [
        (f"search_{c}_deals", category_info(c)["button_title"], f"{category_label(c)} deals near {location.label}")
        for c in CATEGORIES
    ]
    return list_message(
        f"🔄 Let's start a new search around *{location.label}*.\n\nWhich category should I look at?",
        "Choose Category",
        [{"title": "Categories", "rows": rows}],
        header_text="🔍 New Search",
        footer="Share a new location anytime to search elsewhere",
    )


# ── Deal cards ────────────────────────────────────────────────

def _stars(rating: float) -> str:
    return "⭐" * int(rating + 0.5)


def clean_details(deal: Deal) -> str:
    raw = deal.full_description or deal.description or ""
    raw = re.sub(r"\n\n🔗 Source:.*$", "", raw, flags=re.DOTALL)
    raw = re.sub(r"\n\n⏰ Checked:.*$", "", raw, flags=re.DOTALL)
    name = (deal.business_name or "").lower()
    offer = (deal.offer or "").lower()
    kept = []
    for line in raw.split("\n"):
        lowered = line.lower().strip()
        if not lowered or lowered == name or lowered == offer:
            continue
        if name in lowered and offer in lowered and len(line) < 100:
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def fit_body(text: str, limit: int = DEAL_BODY_MAX) -> str:
    """Cut the body to ``limit`` characters, keeping the footer block intact."""
    if len(text) <= limit:
        return text
    footer_start = text.rfind(FOOTER_RULE)
    if footer_start <= 0:
        return text[: limit - 3] + "..."
    footer = text[footer_start:]
    main = text[:footer_start]
    available = limit - len(footer) - 10
    return main[:available] + "...\n\n" + footer


def deal_body(deal: Deal, index: int, total: int) -> str:
    emoji = category_emoji(deal.category)
    text = f"{emoji} *Deal {index + 1} of {total}*\n\n"
    text += f"🏢 *{deal.business_name}*\n"
    if deal.rating:
        text += f"{_stars(deal.rating)} *{deal.rating:.1f} / 5.0*\n"
    text += f"💰 *{deal.offer}*\n"
    text += f"📍 {deal.address}\n"
    text += f"⏰ {deal.validity}\n"

    details = clean_details(deal)
    if details:
        text += f"\n\n📝 *Details:*\n{details}"
    if deal.source_url:
        text += f"\n\n🔗 *Source:* {with_utm(deal.source_url)}"
    if deal.checked_at:
        text += f"\n\n⏰ *Verified:* {format_local(deal.checked_at)} {settings.timezone_label}"

    stamp = deal.checked_at or deal.created_at
    date_text = format_local(stamp, with_time=False) if stamp else local_now().strftime("%d %b %Y")
    source = (deal.social_media_source or "web").capitalize()
    text += f"\n\n{FOOTER_RULE}\n🔍 *Source:* {source} | {date_text}\n🎆 *{_brand()}*"
    return fit_body(text)


def deal_header(deal: Deal) -> str:
    header = f"{category_emoji(deal.category)} {deal.business_name}"
    if len(header) > DEAL_HEADER_MAX:
        header = header[: DEAL_HEADER_MAX - 3] + "..."
    return header


def deal_card(deal: Deal, index: int, total: int) -> dict:
    return button_message(
        deal_body(deal, index, total),
        [
            (f"get_directions_{index}", "📍 Directions"),
            (f"set_reminder_{index}", "⏰ Set Reminder"),
            (f"share_deal_{index}", "📤 Share Deal"),
        ],
        header_text=None if deal.photo_url else deal_header(deal),
        footer=f"🔍 {_brand()} | Tap for actions",
        image_url=deal.photo_url,
    )


def trailing_card(count: int, category: Optional[str]) -> dict:
    label = category_label(category)
    return button_message(
        f"🎉 Found {count} amazing {label.lower()} deals for you!\n\n"
        "✨ You can:\n"
        "• Get more deals in this area\n"
        "• Share the whole list with friends\n"
        "• Start a new search\n"
        "• Use the buttons on each deal for directions, reminders and sharing\n\n"
        "💬 Or just type a question about these deals!\n\n"
        "🛍️ Happy deal hunting!",
        [
            ("more_deals", "🔍 More Deals"),
            ("share_deals", "📤 Share Deals"),
            ("new_search", "🔄 New Search"),
        ],
        header_text=f"{category_emoji(category)} All {label} Deals Shown!",
        footer=f"🔍 Sources: Instagram, Facebook, TikTok & Web | {_brand()} 🎯",
    )


def deal_carousel(deals: list[Deal]) -> dict:
    cards = [
        {
            "image_url": deal.photo_url,
            "body_params": [clip(deal.business_name, 60), clip(deal.offer, 60), clip(deal.address, 80)],
            "button_payloads": [f"get_directions_{i}", f"share_deal_{i}"],
        }
        for i, deal in enumerate(deals)
    ]
    return carousel_template(settings.deal_carousel_template, settings.deal_carousel_language, cards)


def deal_messages(deals: list[Deal], category: Optional[str]) -> list[dict]:
    """Per-deal cards plus the trailing action card, or one carousel when configured and every deal has a photo."""
    if settings.deal_carousel_template and deals and all(d.photo_url for d in deals):
        return [deal_carousel(deals), trailing_card(len(deals), category)]
    messages = [deal_card(deal, i, len(deals)) for i, deal in enumerate(deals)]
    messages.append(trailing_card(len(deals), category))
    return messages


# ── Deal actions ──────────────────────────────────────────────

def directions_message(deal: Deal) -> dict:
    if deal.has_coordinates and deal.place_id:
        return location_message(deal.latitude, deal.longitude, deal.business_name, deal.address)
    return text_message(
        f"📍 *Directions to {deal.business_name}*\n\n"
        f"🏠 {deal.address}\n\n"
        f"🗺️ Open in Google Maps:\n{maps_url(deal.address)}"
    )


def share_deal_text(deal: Deal) -> dict:
    text = (
        f"🎉 *Check out this deal!*\n\n"
        f"🏢 *{deal.business_name}*\n"
        f"💰 {deal.offer}\n"
        f"📍 {deal.address}\n"
        f"⏰ {deal.validity}\n\n"
        f"🗺️ {maps_url(deal.address)}"
    )
    if deal.source_url:
        text += f"\n🔗 {with_utm(deal.source_url)}"
    text += f"\n\nShared via {_brand()} 🎆"
    return text_message(text)


def share_deals_text(deals: list[Deal], category: Optional[str], location_label: str) -> dict:
    lines = [f"{category_emoji(category)} *{category_label(category)} deals near {location_label}*\n"]
    for i, deal in enumerate(deals, 1):
        lines.append(f"{i}. *{deal.business_name}*\n   💰 {deal.offer}\n   📍 {deal.address}\n   ⏰ {deal.validity}")
    lines.append(f"\nFound with {_brand()} 🎆 Forward this to your friends!")
    return text_message("\n".join(lines))


# ── Reminders ─────────────────────────────────────────────────

def reminder_prompt_card(deal: Deal) -> dict:
    return button_message(
        f"🎯 *{deal.business_name}*\n💰 {deal.offer}\n\n"
        "⏰ *When should I remind you about this deal?*\n\n"
        "Pick a time below, or type something like _in 30 minutes_ or _at 7pm_ (within the next 24 hours).",
        [
            ("reminder_1hour", "⏰ In 1 Hour"),
            ("reminder_2hours", "⏰ In 2 Hours"),
            ("reminder_4hours", "⏰ In 4 Hours"),
        ],
        header_text="⏰ Set Deal Reminder",
        footer=f"🔔 {_brand()} Reminder Service",
    )


def reminder_confirmation_text(deal: Deal, remind_at: datetime) -> dict:
    return text_message(
        f"✅ *Reminder set!*\n\n"
        f"I'll remind you about *{deal.business_name}* ({deal.offer}) on "
        f"{format_local(remind_at)} {settings.timezone_label}. 🔔"
    )


def reminder_time_invalid_text() -> dict:
    return text_message(
        "🤔 I couldn't work out that time. Tap one of the buttons, or type something like "
        "_in 2 hours_, _in 45 minutes_ or _at 7pm_ (within the next 24 hours)."
    )


def reminder_notification_text(deal: Deal, title: str, remind_at: datetime) -> dict:
    text = f"🔔 *REMINDER: {title or 'Deal Alert'}*\n\n"
    text += f"🎯 *{deal.business_name}*\n"
    text += f"💰 *{deal.offer}*\n"
    text += f"📍 *{deal.address or settings.region_name}*\n\n"
    if deal.description:
        text += f"📋 *Details*: {deal.description}\n\n"
    if deal.source_url:
        text += f"🔗 *Link*: {deal.source_url}\n\n"
    text += f"⏰ _Reminder set for: {format_local(remind_at)} {settings.timezone_label}_\n\n"
    text += f"🎆 *{_brand()}* - Never miss a great deal!"
    return text_message(text)


# ── Chat follow-up ────────────────────────────────────────────

def chat_restart_messages(quota: int) -> list[dict]:
    return [
        text_message(
            "🔄 *Chat Session Restarted*\n\n"
            f"You've had {quota} interactions! Let's start fresh to find you the best deals."
        ),
        welcome_card(),
    ]


def chat_exit_text() -> dict:
    return text_message(
        "👋 Chat mode ended! Your deals are still here: use the buttons on each deal, "
        "tap *More Deals*, or share a new location to search elsewhere."
    )


def chat_new_location_text() -> dict:
    return text_message(
        "🔄 *Location Change Requested*\n\n"
        "📍 Please share your new location (📎 → Location) or type a place name, and I'll find deals there!"
    )


def chat_reply_text(reply: str) -> dict:
    if len(reply) > settings.chat_reply_max_chars:
        reply = reply[: settings.chat_reply_max_chars - 3] + "..."
    return text_message(
        f"🤖 {reply}\n\n💡 Ask me more about these deals or share a new location to search elsewhere!"
    )


def chat_failure_text(category: Optional[str], location_label: str) -> dict:
    label = category_label(category).lower()
    return text_message(
        f"🤖 Sorry, I had trouble answering your question about {label} deals near {location_label}.\n\n"
        "💬 Please try asking in a simpler way, like:\n"
        "• \"Which is the best deal?\"\n"
        "• \"Tell me about deal #1\"\n"
        "• \"What's the cheapest option?\""
    )
