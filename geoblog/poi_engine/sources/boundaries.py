"""
Region name -> bounding box, via the Nominatim search API.

Nominatim returns boundingbox as [south, north, west, east] (strings); we
normalize to BoundingBox(south, west, north, east), the order Overpass wants.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from ..config import EngineSettings
from ..errors import BoundaryNotFound
from ..models import BoundingBox

logger = logging.getLogger(__name__)


class RegionBoundaryResolver:
    def __init__(
        self,
        session=None,
        settings: Optional[EngineSettings] = None,
        cache: Optional[Dict[str, BoundingBox]] = None,
    ):
        self.settings = settings or EngineSettings()
        self.session = session or requests.Session()
        self.cache: Dict[str, BoundingBox] = dict(cache or {})

    def resolve(self, region_name: str) -> BoundingBox:
        if region_name in self.cache:
            return self.cache[region_name]

        params = {"q": region_name, "format": "json", "limit": 1}
        headers = {"User-Agent": self.settings.user_agent}
        try:
            r = self.session.get(
                self.settings.nominatim_url,
                params=params,
                headers=headers,
                timeout=self.settings.boundary_timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise BoundaryNotFound(region_name, f"lookup failed: {e}") from e

        if not isinstance(data, list) or not data:
            raise BoundaryNotFound(region_name, "no result")

        raw = data[0].get("boundingbox") if isinstance(data[0], dict) else None
        if not isinstance(raw, list) or len(raw) != 4:
            raise BoundaryNotFound(region_name, "result has no boundingbox")

        try:
            south, north, west, east = (float(v) for v in raw)
        except (TypeError, ValueError) as e:
            raise BoundaryNotFound(region_name, f"malformed boundingbox {raw!r}") from e

        bbox = BoundingBox(south=south, west=west, north=north, east=east)
        self.cache[region_name] = bbox
        logger.info("boundary %s -> %s", region_name, bbox.as_overpass())
        return bbox
