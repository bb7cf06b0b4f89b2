"""
Curated event listing source.

Reads a YAML (or JSON, which YAML parses too) document:

  events:
    - region: kazan
      title: ...
      category: Фестиваль            # label; mapped to an event_type
      location: Казань, ...          # used as the address / geocoding input
      latitude: 55.8                 # optional
      longitude: 49.1                # optional
      description: ...               # optional
      start_datetime: 2026-06-20T10:00:00+03:00
      duration_hours: 8

An entry belongs to a crawl when its region key matches the region being
crawled, or when it has coordinates inside the bbox.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..config import DATA_DIR
from ..models import BoundingBox, Candidate, CategoryTemplate, Region
from .base import BaseCandidateSource

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "Фестиваль": "festival",
    "Концерт": "meetup",
}
DEFAULT_EVENT_TYPE = "other"
DEFAULT_DURATION_HOURS = 2


def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        # unquoted YAML dates load as date
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def _float_or_none(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def entry_to_candidate(entry: Dict[str, Any], category: CategoryTemplate) -> Candidate:
    label = str(entry.get("category") or "").strip()
    start = _parse_dt(entry.get("start_datetime"))
    try:
        hours = float(entry.get("duration_hours") or DEFAULT_DURATION_HOURS)
    except (TypeError, ValueError):
        hours = DEFAULT_DURATION_HOURS
    end = start + timedelta(hours=hours) if start is not None else None

    external_id = entry.get("id")
    return Candidate(
        external_id=str(external_id) if external_id not in (None, "") else None,
        name=str(entry.get("title") or "").strip(),
        latitude=_float_or_none(entry.get("latitude")),
        longitude=_float_or_none(entry.get("longitude")),
        tags={},
        address=(str(entry.get("location")).strip() or None) if entry.get("location") else None,
        category=category.code,
        extra={
            "event_type": EVENT_TYPES.get(label, DEFAULT_EVENT_TYPE),
            "event_label": label or None,
            "description": str(entry.get("description") or "").strip(),
            "start_datetime": start.isoformat() if start else None,
            "end_datetime": end.isoformat() if end else None,
            "region": entry.get("region"),
        },
    )


class EventListingSource(BaseCandidateSource):
    name = "events"

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else DATA_DIR / "events.yaml"
        self._entries: Optional[List[Dict[str, Any]]] = None

    def _load(self) -> List[Dict[str, Any]]:
        if self._entries is not None:
            return self._entries
        entries: List[Dict[str, Any]] = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("events: couldn't read %s: %s", self.path, e)
            raw = None

        if isinstance(raw, dict):
            raw = raw.get("events")
        if isinstance(raw, list):
            entries = [e for e in raw if isinstance(e, dict)]
        elif raw is not None:
            logger.warning("events: unexpected document shape in %s", self.path)
        self._entries = entries
        return entries

    @staticmethod
    def _belongs(entry: Dict[str, Any], bbox: BoundingBox, region: Optional[Region]) -> bool:
        if region is not None and entry.get("region") == region.key:
            return True
        lat = _float_or_none(entry.get("latitude"))
        lng = _float_or_none(entry.get("longitude"))
        return lat is not None and lng is not None and bbox.contains(lat, lng)

    def fetch(
        self,
        category: CategoryTemplate,
        bbox: BoundingBox,
        region: Optional[Region] = None,
    ) -> List[Candidate]:
        out = [
            entry_to_candidate(e, category)
            for e in self._load()
            if self._belongs(e, bbox, region)
        ]
        logger.info("events %s: %d entries", region.key if region else bbox.as_overpass(), len(out))
        return out
