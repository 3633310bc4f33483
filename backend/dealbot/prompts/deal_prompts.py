from dealbot.config.settings import settings
from dealbot.schemas.location import Location
from dealbot.utils.keywords import category_info

MAX_EXCLUDED_NAMES = 10


def deal_search_system_prompt(category: str) -> str:
    label = category_info(category).get("search_label", category)
    return f"""You are a deals-discovery agent for {settings.brand_name}, a deal finder for people in {settings.region_name}.
You search the web for real, currently running {label} promotions from businesses operating in {settings.region_name}.

## Rules
- Only report businesses that exist and offers that are running now.
- Prefer official brand pages, official social media accounts and well-known deal aggregators.
- Never invent addresses, phone numbers or prices. Leave a field out rather than guess.
- Answer in English using the exact numbered format the user asks for."""


def location_context(location: Location) -> str:
    """Most specific description of where the user is."""
    if location.formatted_address:
        return location.formatted_address
    if location.display_name:
        return f"{location.display_name}, {settings.region_name}"
    if location.postal_code:
        return f"postal code {location.postal_code}, {settings.region_name}"
    return f"{location.latitude}, {location.longitude}, {settings.region_name}"


def exclusion_summary(excluded_names: list[str]) -> str:
    names = [n for n in excluded_names if n][:MAX_EXCLUDED_NAMES]
    if not names:
        return ""
    listed = "\n".join(f"- {name}" for name in names)
    return (
        "\n\n**ALREADY SHOWN (do not repeat these businesses):**\n"
        f"{listed}\n"
        "Find different businesses with different offers."
    )


def deal_search_user_prompt(location: Location, category: str, excluded_names: list[str] | None = None) -> str:
    info = category_info(category)
    keywords = ", ".join(info.get("keywords", []))
    popular_areas = ", ".join(info.get("popular_areas", []))
    label = info.get("search_label", category)

    return f"""Find {settings.deals_per_search} real, current {label} deals and promotions near {location_context(location)}. I need actual {settings.region_name} businesses with active offers right now.

For each deal, provide it in this exact format:

1. **Business Name**: Full name of the establishment
**Address**: Complete address with postal code
**Deal Details**: Specific offer (e.g. "20% off all items", "1-for-1 main course", "Set meal $15.90")
**Contact**: Phone number and/or website
**Validity**: When the deal is valid (if known)
**Source**: Where this information comes from

Focus on deals like: {keywords}

Popular areas to check: {popular_areas}

Focus on:
- Well-known chains and local businesses close to the location above
- Promotions that are actually running
- Businesses that are currently operating
- Official sources and verified deals

Avoid generic or made-up information. Be specific and accurate.{exclusion_summary(excluded_names or [])}"""
