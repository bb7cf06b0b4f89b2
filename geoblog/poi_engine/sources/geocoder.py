"""
Address -> coordinates via the Yandex Geocoder HTTP API.

Enrichment only: every failure mode (no credential, HTTP error, timeout, empty
or malformed response) yields None and the caller skips the candidate.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from ..config import GEOCODER_CREDENTIAL_ENV, EngineSettings, geocoder_credential
from ..errors import MissingCredential
from ..models import Coordinates

logger = logging.getLogger(__name__)


def parse_point(data: Any) -> Optional[Coordinates]:
    """First featureMember's Point.pos, which Yandex renders as "lon lat"."""
    try:
        members = data["response"]["GeoObjectCollection"]["featureMember"]
        pos = members[0]["GeoObject"]["Point"]["pos"]
        lon_s, lat_s = str(pos).split()
        return Coordinates(latitude=float(lat_s), longitude=float(lon_s))
    except (KeyError, IndexError, TypeError, ValueError):
        return None


class EnrichmentGeocoder:
    def __init__(
        self,
        session=None,
        settings: Optional[EngineSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or EngineSettings()
        self.session = session or requests.Session()
        self.sleep = sleep

    def _api_key(self) -> str:
        name, value = geocoder_credential()
        if not value:
            raise MissingCredential(GEOCODER_CREDENTIAL_ENV)
        logger.debug("geocoder credential from %s", name)
        return value

    def resolve(self, address: Optional[str]) -> Optional[Coordinates]:
        if not address or not address.strip():
            return None

        try:
            api_key = self._api_key()
        except MissingCredential as e:
            logger.warning("geocoder disabled: %s", e)
            return None

        query = address.strip()
        if self.settings.country_suffix:
            query = f"{query}, {self.settings.country_suffix}"

        # provider rate limit
        self.sleep(self.settings.geocode_delay_ms / 1000.0)

        try:
            r = self.session.get(
                self.settings.geocoder_url,
                params={"apikey": api_key, "geocode": query, "format": "json", "results": 1},
                headers={"User-Agent": self.settings.user_agent},
                timeout=self.settings.geocode_timeout_s,
            )
            if r.status_code != 200:
                logger.warning("geocoder HTTP %s for %r", r.status_code, query)
                return None
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("geocoder failed for %r: %s", query, e)
            return None

        coords = parse_point(data)
        if coords is None:
            logger.info("geocoder: no result for %r", query)
        return coords
