"""
Deal Acquisition Pipeline
─────────────────────────
cached lookup → model search → parse → enrich with places → dedupe → persist

Only storage failures escape ``acquire``; every provider problem degrades to
an empty result.
"""
import asyncio
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dealbot.config.settings import settings
from dealbot.database.engine import SessionLocal
from dealbot.database.repositories.deal_repository import DealRepository
from dealbot.prompts.deal_prompts import MAX_EXCLUDED_NAMES, deal_search_system_prompt, deal_search_user_prompt
from dealbot.schemas.deal import Deal, Photo, dedupe_by_name, normalize_name
from dealbot.schemas.location import Location, Place
from dealbot.services.deal_parser import parse_deals
from dealbot.services.llm_service import LLMService, WebSearch, llm_service
from dealbot.services.place_matcher import best_photo, find_matching_place
from dealbot.services.places_service import PlacesService, places_service
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


class DealPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        llm: LLMService = llm_service,
        places: PlacesService = places_service,
    ):
        self._session_factory = session_factory
        self.llm = llm
        self.places = places

    async def acquire(
        self,
        location: Location,
        category: str,
        exclude_deal_ids: Optional[list[str]] = None,
        limit: int = settings.deals_per_search,
    ) -> list[Deal]:
        exclude = list(exclude_deal_ids or [])

        logger.info("━" * 60)
        logger.info("🔍 DEAL SEARCH")
        logger.info("   category : %s", category)
        logger.info("   location : %s (%s)", location.label, location.source.value)
        logger.info("   exclude  : %d deal ids", len(exclude))
        logger.info("━" * 60)

        # ── Stage 1: cached lookup ──────────────────────────────
        with self._session_factory() as db:
            cached = DealRepository(db).find_more(location, category, exclude, limit)
        if cached:
            logger.info("✅ Cache hit: %d %s deals near %s", len(cached), category, location.label)
            return cached

        # ── Stage 2: model search ───────────────────────────────
        with self._session_factory() as db:
            excluded_names = DealRepository(db).names_for(exclude)[-MAX_EXCLUDED_NAMES:]

        reply, nearby = await asyncio.gather(
            self._search(location, category, excluded_names),
            self._nearby_places(location, category),
        )
        if not reply:
            return []

        # ── Stage 3: parse ──────────────────────────────────────
        excluded = {normalize_name(n) for n in excluded_names}
        parsed = [d for d in parse_deals(reply, category, location) if d.normalized_name not in excluded]
        if not parsed:
            logger.info("⚠️  Model reply yielded no usable deals")
            return []

        # ── Stage 4: enrich, dedupe, truncate ───────────────────
        enriched = [self._enrich(deal, location, nearby) for deal in parsed]
        final = dedupe_by_name(enriched)[:limit]

        # ── Stage 5: persist ────────────────────────────────────
        with self._session_factory() as db:
            repo = DealRepository(db)
            stored = [repo.write(deal) for deal in final]

        logger.info("💾 Stored %d new %s deals for %s", len(stored), category, location.label)
        return stored

    async def _search(self, location: Location, category: str, excluded_names: list[str]) -> Optional[str]:
        result = await self.llm.complete(
            deal_search_system_prompt(category),
            deal_search_user_prompt(location, category, excluded_names),
            web_search=WebSearch(
                city=location.area or location.display_name or settings.region_name,
                region=settings.region_name,
                country=settings.region,
            ),
            timeout=settings.timeout_language_model_seconds,
        )
        if not result.ok:
            logger.warning("⚠️  Model search failed (%s: %s), treating as no deals", result.kind.value, result.detail)
            return None
        logger.info("🤖 Model search returned %d characters", len(result.value))
        return result.value

    async def _nearby_places(self, location: Location, category: str) -> list[Place]:
        result = await self.places.nearby(location.latitude, location.longitude, category)
        if not result.ok:
            logger.info("Places lookup unavailable (%s), deals will not carry photos", result.kind.value)
            return []
        return result.value

    def _enrich(self, deal: Deal, location: Location, nearby: list[Place]) -> Deal:
        enriched = deal.model_copy(deep=True)
        enriched.location_label = location.label
        enriched.latitude = location.latitude
        enriched.longitude = location.longitude

        match = find_matching_place(deal.business_name, nearby)
        if match is None:
            return enriched

        photo = best_photo(match.place)
        if photo is not None:
            enriched.photos = [Photo(
                url=self.places.photo_url(photo.reference, settings.photo_max_width_px),
                width=photo.width,
                height=photo.height,
            )]
        if not match.matched:
            return enriched

        place = match.place
        enriched.place_id = place.place_id
        enriched.rating = place.rating
        if place.latitude is not None and place.longitude is not None:
            enriched.latitude = place.latitude
            enriched.longitude = place.longitude
        if place.address and enriched.address.startswith("Near "):
            enriched.address = place.address
        if not enriched.contact:
            enriched.contact = place.phone or place.website
        return enriched


deal_pipeline = DealPipeline()
