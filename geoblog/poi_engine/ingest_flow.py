"""
Core crawl orchestration for the POI engine.

Prefect-free on purpose; the Prefect wrapper lives in flows/poi_engine_flow.py.

Per region:
  boundary (cached) -> for each category: source fetch -> per candidate:
    coordinate range check -> strict title check -> identity key -> seen?
    -> geocode when coordinates are missing -> exists_near? -> sanitize
    -> build record -> insert -> mark seen

Operational rules:
- Regions run sequentially, categories sequentially, candidates sequentially.
- A region whose boundary can't be resolved is skipped, not failed; the run continues.
- Source failures read as zero candidates; candidate failures are counted and skipped.
- Progress is persisted after every category; the in-progress marker is
  cleared however the region ends.
- A key is marked seen once its outcome is final (inserted, already stored,
  or rejected by the unique constraint), never before.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .completeness import score_record
from .config import EngineSettings, load_categories, load_regions
from .errors import BoundaryNotFound
from .geo import is_valid_coordinate
from .identity import IdentityResolver, JsonFileSeenBackend
from .models import (
    BoundingBox,
    Candidate,
    CatalogRecord,
    CategoryTemplate,
    CrawlProgress,
    Region,
    RegionStatus,
)
from .progress import ProgressStore
from .quality import DEFAULT_RULES, QualityRules, load_quality_rules, rejection_reason, sanitize_title
from .sources.base import BaseCandidateSource
from .sources.boundaries import RegionBoundaryResolver
from .sources.events import EventListingSource
from .sources.geocoder import EnrichmentGeocoder
from .sources.overpass import OverpassCandidateSource
from .store import BaseCatalogStore, SqlCatalogStore

logger = logging.getLogger(__name__)

SOURCE_LABELS = {
    "overpass": "openstreetmap",
    "events": "event_listing",
}

# (tag, value or None for "any value") -> sub-kind; first match wins
SUBKIND_TAGS: Tuple[Tuple[str, Optional[str], str], ...] = (
    ("tourism", "museum", "музей"),
    ("amenity", "restaurant", "ресторан"),
    ("amenity", "cafe", "кафе"),
    ("tourism", "hotel", "отель"),
    ("leisure", "park", "парк"),
    ("historic", None, "историческое место"),
)

MAX_TITLE_HASHTAGS = 2


# -----------------------------
# Record building
# -----------------------------
def pick_subkind(tags: Dict[str, object], category: CategoryTemplate) -> Optional[str]:
    for tag, value, subkind in SUBKIND_TAGS:
        present = tags.get(tag)
        if present and (value is None or present == value):
            return subkind
    return category.subkinds[0] if category.subkinds else None


def make_hashtags(region_name: str, category_label: str, title: str) -> List[str]:
    tags = [
        region_name.lower().replace(" ", ""),
        category_label.lower().replace(" ", ""),
    ]
    words = [w.lower() for w in title.split() if len(w) > 3]
    tags.extend(words[:MAX_TITLE_HASHTAGS])

    out: List[str] = []
    for t in tags:
        if t and t not in out:
            out.append(t)
    return out


def build_record(
    candidate: Candidate,
    title: str,
    category: CategoryTemplate,
    region: Region,
    identity_key: str,
    parsed_at: Optional[datetime] = None,
) -> CatalogRecord:
    parsed_at = parsed_at or datetime.now(timezone.utc)
    source = SOURCE_LABELS.get(category.source, category.source)

    metadata: Dict[str, object] = {
        "source": source,
        "parsed_at": parsed_at.isoformat(),
        "needs_completion": True,
        "region": region.key,
        "category_key": category.key,
    }
    if candidate.external_id is not None and category.source == "overpass":
        metadata["osm_id"] = candidate.external_id
        metadata["osm_type"] = candidate.osm_type
    for k, v in (candidate.extra or {}).items():
        if k != "description" and v is not None:
            metadata[k] = v

    record = CatalogRecord(
        title=title,
        description=str((candidate.extra or {}).get("description") or ""),
        latitude=float(candidate.latitude),
        longitude=float(candidate.longitude),
        category=category.code,
        subcategory=pick_subkind(candidate.tags or {}, category),
        address=candidate.address,
        hashtags=make_hashtags(region.name, category.label, title),
        source=source,
        identity_key=identity_key,
        metadata=metadata,
    )
    scored = score_record(record)
    record.completeness_score = scored.score
    record.needs_completion = scored.needs_completion
    return record


# -----------------------------
# Result types
# -----------------------------
@dataclass
class RegionResult:
    region: str
    status: str = RegionStatus.NOT_STARTED
    fetched: int = 0
    rejected: int = 0
    seen: int = 0
    unresolved: int = 0
    existing: int = 0
    inserted: int = 0
    conflicts: int = 0
    errors: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class CrawlSummary:
    regions: List[RegionResult] = field(default_factory=list)
    already_completed: List[str] = field(default_factory=list)
    total_records: int = 0

    def _sum(self, attr: str) -> int:
        return sum(int(getattr(r, attr)) for r in self.regions)

    @property
    def fetched(self) -> int:
        return self._sum("fetched")

    @property
    def inserted(self) -> int:
        return self._sum("inserted")

    @property
    def skipped_regions(self) -> List[str]:
        return [r.region for r in self.regions if r.status == "skipped"]

    @property
    def failed_regions(self) -> List[str]:
        return [r.region for r in self.regions if r.status == "failed"]

    def to_dict(self) -> Dict[str, object]:
        return {
            "regions": [asdict(r) for r in self.regions],
            "already_completed": list(self.already_completed),
            "total_records": self.total_records,
            "total_fetched": self.fetched,
            "total_inserted": self.inserted,
            "skipped_regions": self.skipped_regions,
            "failed_regions": self.failed_regions,
        }


# -----------------------------
# Orchestrator
# -----------------------------
class CrawlOrchestrator:
    def __init__(
        self,
        *,
        settings: EngineSettings,
        categories: List[CategoryTemplate],
        regions: List[Region],
        boundaries: RegionBoundaryResolver,
        sources: Dict[str, BaseCandidateSource],
        geocoder: EnrichmentGeocoder,
        store: BaseCatalogStore,
        identity: IdentityResolver,
        progress_store: ProgressStore,
        quality_rules: QualityRules = DEFAULT_RULES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.categories = categories
        self.regions = regions
        self.boundaries = boundaries
        self.sources = sources
        self.geocoder = geocoder
        self.store = store
        self.identity = identity
        self.progress_store = progress_store
        self.quality_rules = quality_rules
        self.sleep = sleep

    # ---- operator helpers ----
    def list_regions(self) -> List[Tuple[Region, str]]:
        progress = self.progress_store.load()
        return [(r, progress.status_of(r.key)) for r in self.regions]

    def status_of(self, region_key: str) -> str:
        return self.progress_store.load().status_of(region_key)

    def reset_progress(self) -> CrawlProgress:
        return self.progress_store.reset()

    # ---- run ----
    def run(self, regions: Optional[List[Region]] = None) -> CrawlSummary:
        regions = list(regions if regions is not None else self.regions)
        progress = self.progress_store.load()

        if progress.in_progress:
            # previous run died mid-region; it is not completed, so it is crawled again
            logger.warning("clearing stale in-progress marker for %s", progress.in_progress)
            progress.in_progress = None

        progress.statistics["total_regions"] = len(self.regions)
        for r in regions:
            cached = progress.bbox.get(r.key)
            if cached and r.query_name not in self.boundaries.cache:
                self.boundaries.cache[r.query_name] = BoundingBox.from_list(cached)
        self.progress_store.save(progress)

        summary = CrawlSummary()
        first = True
        for region in regions:
            if region.key in progress.completed:
                summary.already_completed.append(region.key)
                continue
            if not first:
                self._pause(self.settings.delay_ms)
            first = False
            summary.regions.append(self.crawl_region(region, progress))

        summary.total_records = int(progress.statistics.get("total_records", 0))
        logger.info(
            "crawl done: regions=%d inserted=%d skipped=%s failed=%s total_records=%d",
            len(summary.regions), summary.inserted, summary.skipped_regions,
            summary.failed_regions, summary.total_records,
        )
        return summary

    def crawl_region(self, region: Region, progress: Optional[CrawlProgress] = None) -> RegionResult:
        progress = progress if progress is not None else self.progress_store.load()
        result = RegionResult(region=region.key, status=RegionStatus.IN_PROGRESS)

        logger.info("region %s (%s): start", region.key, region.name)
        progress.in_progress = region.key
        self.progress_store.save(progress)

        try:
            bbox = self.boundaries.resolve(region.query_name)
            progress.bbox[region.key] = bbox.as_list()

            for i, category in enumerate(self.categories):
                if i > 0:
                    self._pause(self.settings.delay_ms)
                result.by_category[category.key] = self._crawl_category(region, category, bbox, result)
                progress.statistics["total_records"] = self.store.count_all()
                self.progress_store.save(progress)
        except BoundaryNotFound as e:
            logger.warning("region %s skipped: %s", region.key, e)
            result.status = "skipped"
            result.error = str(e)
        except Exception as e:
            logger.exception("region %s failed", region.key)
            result.status = "failed"
            result.error = f"{type(e).__name__}: {str(e)[:500]}"
        else:
            result.status = RegionStatus.COMPLETED
            if region.key not in progress.completed:
                progress.completed.append(region.key)
        finally:
            progress.in_progress = None
            progress.statistics["completed_regions"] = len(progress.completed)
            self.progress_store.save(progress)

        logger.info(
            "region %s: %s fetched=%d inserted=%d rejected=%d seen=%d existing=%d unresolved=%d errors=%d",
            region.key, result.status, result.fetched, result.inserted, result.rejected,
            result.seen, result.existing, result.unresolved, result.errors,
        )
        return result

    # ---- internals ----
    def _pause(self, ms: int) -> None:
        if ms > 0:
            self.sleep(ms / 1000.0)

    def _crawl_category(
        self,
        region: Region,
        category: CategoryTemplate,
        bbox: BoundingBox,
        result: RegionResult,
    ) -> int:
        source = self.sources.get(category.source)
        if source is None:
            logger.error("no source registered for %r (category %s)", category.source, category.key)
            result.errors += 1
            return 0

        try:
            candidates = source.fetch(category, bbox, region=region)
        except Exception as e:
            logger.warning("category %s/%s: source error: %s", region.key, category.key, e)
            result.errors += 1
            return 0

        result.fetched += len(candidates)
        inserted = 0
        for candidate in candidates:
            try:
                outcome = self._admit(candidate, category, region)
            except Exception as e:
                logger.warning(
                    "candidate %r (%s) failed: %s: %s",
                    candidate.name, candidate.external_id, type(e).__name__, e,
                )
                result.errors += 1
                continue

            setattr(result, outcome, getattr(result, outcome) + 1)
            if outcome == "inserted":
                inserted += 1
            if outcome in ("inserted", "conflicts"):
                self._pause(self.settings.record_delay_ms)

        logger.info("category %s/%s: fetched=%d inserted=%d", region.key, category.key, len(candidates), inserted)
        return inserted

    def _admit(self, candidate: Candidate, category: CategoryTemplate, region: Region) -> str:
        """Run one candidate through the admission pipeline; return the RegionResult counter to bump."""
        if candidate.has_coordinates and not is_valid_coordinate(candidate.latitude, candidate.longitude):
            return "rejected"

        title = sanitize_title(candidate.name)
        reason = rejection_reason(title, self.quality_rules, strict=True) if title else "empty"
        if reason:
            logger.debug("rejected %r: %s", candidate.name, reason)
            return "rejected"

        key: Optional[str] = None
        if candidate.external_id:
            key = self.identity.canonical_key(candidate, category.code)
            if self.identity.has_seen(key):
                return "seen"

        if not candidate.has_coordinates:
            coords = self.geocoder.resolve(candidate.address) if candidate.address else None
            if coords is None or not is_valid_coordinate(coords.latitude, coords.longitude):
                return "unresolved"
            candidate.latitude = coords.latitude
            candidate.longitude = coords.longitude

        if key is None:
            key = self.identity.canonical_key(candidate, category.code)
            if self.identity.has_seen(key):
                return "seen"

        if self.store.exists_near(title, candidate.latitude, candidate.longitude, self.settings.exists_tolerance_deg):
            self.identity.mark_seen(key)
            return "existing"

        record = build_record(candidate, title, category, region, key)
        new_id = self.store.insert(record)
        self.identity.mark_seen(key)
        return "inserted" if new_id is not None else "conflicts"


def build_orchestrator(
    settings: Optional[EngineSettings] = None,
    engine=None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
    create_schema: bool = False,
) -> CrawlOrchestrator:
    """Wire the production collaborators from settings (config files, JSON state, SQL catalog)."""
    settings = settings or EngineSettings.from_env()
    if engine is None:
        from geoblog.db import get_engine

        engine = get_engine()

    store = SqlCatalogStore(engine)
    if create_schema:
        store.ensure_schema()

    return CrawlOrchestrator(
        settings=settings,
        categories=load_categories(settings.categories_file),
        regions=load_regions(settings.regions_file),
        boundaries=RegionBoundaryResolver(session=session, settings=settings),
        sources={
            "overpass": OverpassCandidateSource(session=session, settings=settings),
            "events": EventListingSource(settings.events_file),
        },
        geocoder=EnrichmentGeocoder(session=session, settings=settings, sleep=sleep),
        store=store,
        identity=IdentityResolver(JsonFileSeenBackend(settings.seen_path)),
        progress_store=ProgressStore(settings.progress_path),
        quality_rules=load_quality_rules(settings.quality_file),
        sleep=sleep,
    )
