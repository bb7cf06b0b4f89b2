"""
OSM / Overpass candidate source.

One POST per (category, region). The category template carries the full
Overpass QL; we only substitute {{bbox}}.

Output:
- Candidate per element, external_id = OSM id, osm_type kept alongside.
- name prefers the localized tag (name:<locale>), then name, else "".
- coordinates from the node itself, else the way/relation center, else None.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import BBOX_PLACEHOLDER, EngineSettings
from ..errors import SourceQueryFailed
from ..models import BoundingBox, Candidate, CategoryTemplate, Region
from .base import BaseCandidateSource

logger = logging.getLogger(__name__)


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def pick_name(tags: Dict[str, Any], locale: str = "ru") -> str:
    for key in (f"name:{locale}", "name"):
        v = _clean(tags.get(key))
        if v:
            return v
    return ""


def build_address(tags: Dict[str, Any], street_prefix: str = "ул.") -> Optional[str]:
    """"<prefix> <street>, <housenumber>, <city>" from whichever fragments exist."""
    parts: List[str] = []
    street = _clean(tags.get("addr:street"))
    if street:
        parts.append(f"{street_prefix} {street}" if street_prefix else street)
    housenumber = _clean(tags.get("addr:housenumber"))
    if housenumber:
        parts.append(housenumber)
    city = _clean(tags.get("addr:city"))
    if city:
        parts.append(city)
    return ", ".join(parts) if parts else None


def _coords(el: Dict[str, Any]):
    lat = el.get("lat")
    lon = el.get("lon")
    if lat is None or lon is None:
        center = el.get("center") or {}
        lat = center.get("lat")
        lon = center.get("lon")
    try:
        return (float(lat), float(lon)) if lat is not None and lon is not None else (None, None)
    except (TypeError, ValueError):
        return None, None


def element_to_candidate(
    el: Dict[str, Any],
    category: CategoryTemplate,
    settings: EngineSettings,
) -> Optional[Candidate]:
    osm_id = el.get("id")
    if osm_id is None:
        return None
    tags = el.get("tags") or {}
    lat, lon = _coords(el)
    return Candidate(
        external_id=str(osm_id),
        name=pick_name(tags, settings.name_locale),
        latitude=lat,
        longitude=lon,
        tags=dict(tags),
        address=build_address(tags, settings.street_prefix),
        category=category.code,
        osm_type=el.get("type"),
    )


class OverpassCandidateSource(BaseCandidateSource):
    name = "overpass"

    def __init__(self, session=None, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()
        self.session = session or requests.Session()

    def _query(self, category: CategoryTemplate, bbox: BoundingBox) -> Dict[str, Any]:
        query = category.query.replace(BBOX_PLACEHOLDER, bbox.as_overpass())
        try:
            r = self.session.post(
                self.settings.overpass_url,
                data={"data": query},
                headers={"User-Agent": self.settings.user_agent},
                timeout=self.settings.source_timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise SourceQueryFailed(category.key, str(e)) from e
        if not isinstance(data, dict):
            raise SourceQueryFailed(category.key, "response is not a JSON object")
        return data

    def fetch(
        self,
        category: CategoryTemplate,
        bbox: BoundingBox,
        region: Optional[Region] = None,
    ) -> List[Candidate]:
        try:
            data = self._query(category, bbox)
        except SourceQueryFailed as e:
            logger.warning("%s", e)
            return []

        out: List[Candidate] = []
        for el in data.get("elements") or []:
            if not isinstance(el, dict):
                continue
            c = element_to_candidate(el, category, self.settings)
            if c is not None:
                out.append(c)
        logger.info("overpass %s: %d elements", category.key, len(out))
        return out
