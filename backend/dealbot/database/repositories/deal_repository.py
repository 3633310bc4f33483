"""
Deal Repository
───────────────
Persists discovered deals and reads them back for later searches.

``find_more`` is the cached-lookup stage of the acquisition pipeline:
category + validity + ttl are filtered in SQL, proximity / exclusion /
dedupe / ranking in Python.
"""
import json
import uuid
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealbot.config.settings import settings
from dealbot.database.models.deal_record import DealRecord
from dealbot.errors import StorageUnavailable
from dealbot.schemas.deal import Deal, Photo, dedupe_by_name, social_priority
from dealbot.schemas.location import Location
from dealbot.utils.clock import as_utc, format_local, now_s, utc_now
from dealbot.utils.geo import haversine_km
from dealbot.utils.keywords import detect_social_source
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

MIN_TERM_LENGTH = 3
# Too broad to place a deal: they would match every address in the region
GENERIC_TERMS = {"your location"}


def location_terms(location: Location) -> list[str]:
    """Lower-cased tokens used for textual proximity when coordinates can't decide."""
    skip = GENERIC_TERMS | {settings.region_name.lower(), settings.region.lower()}
    terms = []
    for value in (location.display_name, location.area, location.formatted_address, location.postal_code):
        if value:
            terms.append(value.strip().lower())
    # "349 Hougang Ave 7" also matches deals stored against "hougang ave 7"
    parts = (location.display_name or "").split()
    if len(parts) > 2:
        terms.append(" ".join(parts[1:]).lower())
    unique = []
    for term in terms:
        if len(term) >= MIN_TERM_LENGTH and term not in skip and term not in unique:
            unique.append(term)
    return unique


def _text_match(record: DealRecord, terms: list[str]) -> bool:
    haystacks = [
        (record.location or "").lower(),
        (record.address or "").lower(),
        (record.description or "").lower(),
        (record.full_description or "").lower(),
    ]
    return any(term in hay for term in terms for hay in haystacks)


def _to_deal(record: DealRecord) -> Deal:
    return Deal(
        deal_id=record.deal_id,
        business_name=record.business_name,
        offer=record.offer,
        description=record.description,
        full_description=record.full_description,
        address=record.address,
        location_label=record.location,
        latitude=record.latitude,
        longitude=record.longitude,
        place_id=record.place_id,
        category=record.category,
        validity=record.validity,
        contact=record.contact,
        start_date=as_utc(record.start_date),
        end_date=as_utc(record.end_date),
        social_media_source=record.social_media_source,
        rating=record.rating,
        photos=[Photo(**p) for p in json.loads(record.photos_json or "[]")],
        source_url=record.source_url,
        checked_at=as_utc(record.checked_at),
        created_at=as_utc(record.created_at),
        timestamp=record.timestamp,
        ttl=record.ttl,
    )


def rank_key(deal: Deal):
    """createdAt first, then social priority, then timestamp; used with reverse=True."""
    created = deal.created_at.timestamp() if deal.created_at else 0.0
    return (created, social_priority(deal.social_media_source), deal.timestamp or 0)


class DealRepository:
    def __init__(self, db: Session):
        self.db = db

    def write(self, deal: Deal) -> Deal:
        """Stamp defaults, persist, and return the stored deal (with its dealId)."""
        now = utc_now()
        stored = deal.model_copy(deep=True)
        stored.deal_id = stored.deal_id or str(uuid.uuid4())
        stored.created_at = stored.created_at or now
        stored.checked_at = stored.checked_at or now
        stored.start_date = stored.start_date or now
        stored.end_date = stored.end_date or now + timedelta(days=settings.deal_end_date_days)
        stored.timestamp = stored.timestamp or int(now.timestamp() * 1000)
        stored.ttl = stored.ttl or now_s() + settings.deal_ttl_days * 24 * 3600

        details = stored.full_description or stored.description or ""
        if stored.social_media_source in (None, "", "web"):
            stored.social_media_source = detect_social_source(f"{details} {stored.source_url or ''}")
        meta = f"\n\n🔗 Source: {stored.source_url}" if stored.source_url else ""
        meta += f"\n\n⏰ Checked: {format_local(stored.checked_at)} {settings.timezone_label}"
        stored.full_description = f"{details}{meta}"

        record = DealRecord(
            deal_id=stored.deal_id,
            category=stored.category,
            business_name=stored.business_name or "Unknown",
            offer=stored.offer or "Special Deal",
            description=stored.description or "",
            full_description=stored.full_description,
            address=stored.address or settings.region_name,
            validity=stored.validity or "Limited time",
            contact=stored.contact,
            location=stored.location_label,
            latitude=stored.latitude,
            longitude=stored.longitude,
            place_id=stored.place_id,
            social_media_source=stored.social_media_source,
            rating=stored.rating,
            photos_json=json.dumps([p.model_dump() for p in stored.photos]),
            source_url=stored.source_url,
            start_date=stored.start_date,
            end_date=stored.end_date,
            checked_at=stored.checked_at,
            created_at=stored.created_at,
            timestamp=stored.timestamp,
            ttl=stored.ttl,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("write — deal store write failed for %r: %s", stored.business_name, e)
            raise StorageUnavailable(f"deal write failed: {e}") from e

        logger.info(
            "write — deal_id=%s business=%r category=%s source=%s",
            stored.deal_id, stored.business_name, stored.category, stored.social_media_source,
        )
        return stored

    def find_more(
        self,
        location: Location,
        category: str,
        exclude_deal_ids: list[str] | set[str],
        max_results: int,
    ) -> list[Deal]:
        now = utc_now()
        precise = location.latitude is not None and location.longitude is not None

        stmt = select(DealRecord).where(
            DealRecord.category == category,
            DealRecord.end_date > now,
            DealRecord.ttl > now_s(),
        )
        if precise:
            stmt = stmt.where(DealRecord.checked_at >= now - timedelta(days=settings.deal_freshness_days))
        stmt = stmt.order_by(DealRecord.created_at.desc()).limit(settings.deal_scan_limit)

        try:
            records = list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("find_more — deal store scan failed: %s", e)
            raise StorageUnavailable(f"deal scan failed: {e}") from e

        terms = location_terms(location)
        nearby = []
        for record in records:
            if precise and record.latitude is not None and record.longitude is not None:
                distance = haversine_km(location.latitude, location.longitude, record.latitude, record.longitude)
                if distance <= settings.radius_km_exact:
                    nearby.append(record)
            elif _text_match(record, terms):
                nearby.append(record)

        excluded = set(exclude_deal_ids or [])
        fresh = [_to_deal(r) for r in nearby if r.deal_id not in excluded]
        ranked = sorted(dedupe_by_name(fresh), key=rank_key, reverse=True)[:max_results]

        logger.info(
            "find_more — category=%s scanned=%d nearby=%d excluded=%d returned=%d",
            category, len(records), len(nearby), len(excluded), len(ranked),
        )
        return ranked

    def names_for(self, deal_ids: list[str]) -> list[str]:
        """Business names for already-shown deals, oldest id first."""
        if not deal_ids:
            return []
        try:
            rows = self.db.execute(
                select(DealRecord.deal_id, DealRecord.business_name).where(DealRecord.deal_id.in_(list(deal_ids)))
            ).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"deal lookup failed: {e}") from e
        by_id = {deal_id: name for deal_id, name in rows}
        return [by_id[d] for d in deal_ids if d in by_id]

    def purge_expired(self) -> int:
        try:
            result = self.db.execute(delete(DealRecord).where(DealRecord.ttl <= now_s()))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"deal purge failed: {e}") from e
        return result.rowcount or 0
