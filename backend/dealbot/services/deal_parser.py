"""
Model reply parser
──────────────────
Turns the free-text answer of the search model into Deal objects.

Two strategies, tried in order:

  1. Labelled items:  ``1. **Business Name**: X`` followed by
     ``**Address**: / **Deal Details**: / **Contact**: / **Validity**:`` lines.
  2. Bold-name items: ``1. **X**`` followed by loosely formatted lines.
     The address falls back to any bullet mentioning the region name, the
     offer to any bullet mentioning discount / off / promotion.

The second strategy only runs when the first finds nothing. Items whose name
is empty or a placeholder ("Deal 3", "Business 2") are dropped.
"""
import re
from typing import Optional

from dealbot.config.settings import settings
from dealbot.schemas.deal import Deal, dedupe_by_name
from dealbot.schemas.location import Location
from dealbot.utils.keywords import detect_social_source
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

MAX_ITEMS = 5

PRIMARY_ITEM = re.compile(r"\d+\. \*\*Business Name\*\*: ([^\n]+)[\s\S]*?(?=\d+\. \*\*Business Name\*\*|\Z)")
SECONDARY_ITEM = re.compile(r"\d+\. \*\*([^*]+)\*\*[\s\S]*?(?=\d+\. \*\*|\Z)")
SECONDARY_NAME = re.compile(r"\d+\. \*\*([^*]+)\*\*")
GENERIC_NAME = re.compile(r"^(deal|business)\s*\d+$", re.IGNORECASE)
URL = re.compile(r"https?://[^\s)\]>*]+")


def _first(text: str, *patterns: str) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            value = match.group(1).strip()
            if value:
                return value
    return None


def _field(text: str, label: str) -> Optional[str]:
    return _first(text, rf"\*\*{label}\*\*: ([^\n]+)", rf"{label}: ([^\n]+)")


def _source_url(text: str) -> Optional[str]:
    source = _field(text, "Source") or ""
    match = URL.search(source) or URL.search(text)
    return match.group(0).rstrip(".,;") if match else None


def _social_source(text: str) -> str:
    declared = _first(text, r"Social media source:\*\*\s*([^\n]+)", r"Social media source:\s*([^\n]+)")
    if declared:
        return detect_social_source(declared)
    return detect_social_source(text)


def _parse_labelled(content: str, category: str, location: Optional[Location]) -> list[Deal]:
    deals = []
    fallback_address = (location.display_name if location else None) or settings.region_name
    for i, match in enumerate(list(PRIMARY_ITEM.finditer(content))[:MAX_ITEMS]):
        item = match.group(0)
        offer = _field(item, "Deal Details") or "Special Deal"
        deals.append(Deal(
            business_name=_field(item, "Business Name") or f"Deal {i + 1}",
            offer=offer,
            description=offer,
            full_description=item.strip(),
            address=_field(item, "Address") or fallback_address,
            contact=_field(item, "Contact"),
            validity=_field(item, "Validity") or "Limited time",
            category=category,
            social_media_source=_social_source(item),
            source_url=_source_url(item),
        ))
    return deals


def _parse_bold_names(content: str, category: str, location: Optional[Location]) -> list[Deal]:
    deals = []
    near = (location.display_name if location else None) or settings.region_name
    region = re.escape(settings.region_name)
    for i, match in enumerate(list(SECONDARY_ITEM.finditer(content))[:MAX_ITEMS]):
        item = match.group(0)
        name_match = SECONDARY_NAME.search(item)
        offer = _first(
            item,
            r"- \*\*Deal Details\*\*: ([^\n]+)",
            r"Deal Details: ([^\n]+)",
            r"- ([^\n]*discount[^\n]*)",
            r"- ([^\n]*off[^\n]*)",
            r"- ([^\n]*promotion[^\n]*)",
        ) or "Special promotion available"
        deals.append(Deal(
            business_name=name_match.group(1).strip() if name_match else f"Business {i + 1}",
            offer=offer,
            description=offer,
            full_description=item.strip(),
            address=_first(
                item,
                r"- \*\*Address\*\*: ([^\n]+)",
                r"Address: ([^\n]+)",
                rf"- ([^\n]+{region}[^\n]*)",
            ) or f"Near {near}",
            contact=_first(item, r"- \*\*Contact\*\*: ([^\n]+)", r"Contact: ([^\n]+)", r"Phone: ([^\n]+)"),
            validity=_first(item, r"- \*\*Validity\*\*: ([^\n]+)", r"Validity: ([^\n]+)") or "Limited time offer",
            category=category,
            social_media_source=detect_social_source(item),
            source_url=_source_url(item),
        ))
    return deals


def is_generic_name(name: str) -> bool:
    stripped = (name or "").strip()
    return not stripped or bool(GENERIC_NAME.match(stripped))


def parse_deals(content: str, category: str, location: Optional[Location] = None) -> list[Deal]:
    """Parse a model reply; an unparseable reply yields an empty list."""
    if not content:
        return []

    deals = _parse_labelled(content, category, location)
    if deals:
        logger.info("parse_deals — labelled format matched %d items", len(deals))
    else:
        deals = _parse_bold_names(content, category, location)
        logger.info("parse_deals — labelled format absent, bold-name format matched %d items", len(deals))

    kept = [d for d in deals if not is_generic_name(d.business_name)]
    if len(kept) < len(deals):
        logger.info("parse_deals — dropped %d placeholder names", len(deals) - len(kept))
    return dedupe_by_name(kept)
