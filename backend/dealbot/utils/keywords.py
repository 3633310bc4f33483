import json
import re
from functools import lru_cache
from pathlib import Path

_DATA_FILE = Path(__file__).resolve().parent.parent / "data" / "regional_keywords.json"

CATEGORIES = ("food", "fashion", "events", "groceries")


@lru_cache(maxsize=1)
def regional_keywords() -> dict:
    with _DATA_FILE.open(encoding="utf-8") as fh:
        return json.load(fh)


def category_info(category: str | None) -> dict:
    return regional_keywords()["categories"].get(category or "", {})


def intent_phrases(name: str) -> list[str]:
    return regional_keywords()["intents"].get(name, [])


def locality_stop_words() -> set[str]:
    return set(regional_keywords()["locality_stop_words"])


def detect_social_source(text: str | None) -> str:
    """
    First platform (in priority-list order) whose keyword appears in the text,
    else 'web'. Keywords of three characters or fewer ('ig', 'fb', 'wa', ...)
    only match as whole words.
    """
    lowered = (text or "").lower()
    if not lowered:
        return "web"
    for platform, keywords in regional_keywords()["social_sources"]:
        for keyword in keywords:
            if len(keyword) <= 3 and keyword.isalpha():
                if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                    return platform
            elif keyword in lowered:
                return platform
    return "web"


def category_from_text(text: str | None) -> str | None:
    lowered = (text or "").strip().lower()
    if not lowered:
        return None
    for category in CATEGORIES:
        for synonym in category_info(category).get("synonyms", []):
            if re.search(rf"\b{re.escape(synonym)}\b", lowered):
                return category
    return None
