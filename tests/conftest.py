"""
Pytest configuration and shared fixtures for the POI engine tests.

No network: HTTP collaborators get a FakeSession. The catalog runs on an
in-memory sqlite engine.
"""

from typing import Any, Dict, List, Optional

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from geoblog.poi_engine.config import EngineSettings
from geoblog.poi_engine.models import CatalogRecord
from geoblog.poi_engine.store import SqlCatalogStore


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, raise_json: bool = False):
        self.payload = payload
        self.status_code = status_code
        self.raise_json = raise_json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        if self.raise_json:
            raise ValueError("not json")
        return self.payload


class FakeSession:
    """Replays queued responses (or exceptions) and records every call."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise requests.ConnectionError("no response queued")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._next("POST", url, **kwargs)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        delay_ms=0,
        record_delay_ms=0,
        geocode_delay_ms=0,
        state_dir=str(tmp_path / "progress"),
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    s = SqlCatalogStore(engine)
    s.ensure_schema()
    return s


@pytest.fixture
def make_record():
    def _make(title: str, lat: float, lng: float, **kwargs) -> CatalogRecord:
        kwargs.setdefault("category", "attraction")
        return CatalogRecord(title=title, latitude=lat, longitude=lng, **kwargs)

    return _make


@pytest.fixture
def no_geocoder_env(monkeypatch):
    for name in (
        "VITE_YANDEX_MAPS_API_KEY",
        "YANDEX_MAPS_API_KEY",
        "YANDEX_API_KEY",
        "YANDEX_GEOCODER_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
