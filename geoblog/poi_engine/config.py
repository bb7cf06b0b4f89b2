"""
Configuration for the POI engine.

This module controls:
- Operational knobs (delays, timeouts, radii, file locations), env-driven.
- Which categories we crawl and how each maps onto an internal catalog code.
- Which regions we crawl, in order.

Categories and regions are declarative YAML under data/ and are validated at
startup, so a typo in a category code fails the run before any request is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError
from .models import CategoryTemplate, Region

DATA_DIR = Path(__file__).resolve().parent / "data"

# Internal catalog categories a template may map onto.
CATALOG_CATEGORIES: Tuple[str, ...] = (
    "attraction",
    "culture",
    "restaurant",
    "hotel",
    "nature",
    "shopping",
    "transport",
    "healthcare",
    "education",
    "entertainment",
    "services",
    "event",
    "other",
)

CANDIDATE_SOURCES: Tuple[str, ...] = ("overpass", "events")

BBOX_PLACEHOLDER = "{{bbox}}"

# Checked in order; the first one set wins.
GEOCODER_CREDENTIAL_ENV: Tuple[str, ...] = (
    "VITE_YANDEX_MAPS_API_KEY",
    "YANDEX_MAPS_API_KEY",
    "YANDEX_API_KEY",
    "YANDEX_GEOCODER_API_KEY",
)


# -----------------------------
# Env helpers
# -----------------------------
def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)) or str(default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or str(default))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass
class EngineSettings:
    # pacing (milliseconds)
    delay_ms: int = 1000
    record_delay_ms: int = 500
    geocode_delay_ms: int = 500

    # external call timeouts (seconds)
    boundary_timeout_s: float = 10.0
    source_timeout_s: float = 30.0
    geocode_timeout_s: float = 5.0

    # endpoints
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    geocoder_url: str = "https://geocode-maps.yandex.ru/1.x/"
    user_agent: str = "Geoblog-POI-Engine/1.0"

    # candidate mapping
    name_locale: str = "ru"
    street_prefix: str = "ул."
    country_suffix: Optional[str] = None

    # local state
    state_dir: str = "progress"
    events_file: Optional[str] = None
    categories_file: Optional[str] = None
    regions_file: Optional[str] = None
    quality_file: Optional[str] = None

    # duplicate detection
    duplicate_radius_m: float = 100.0
    exists_tolerance_deg: float = 0.001

    batch_size: int = 50

    @property
    def progress_path(self) -> Path:
        return Path(self.state_dir) / "regions-progress.json"

    @property
    def seen_path(self) -> Path:
        return Path(self.state_dir) / "seen-ids.json"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        delay_ms = max(0, _env_int("POI_ENGINE_DELAY_MS", 1000))
        # inter-record pacing is never below half the inter-category delay
        record_delay_ms = max(delay_ms // 2, _env_int("POI_ENGINE_RECORD_DELAY_MS", delay_ms // 2))
        return cls(
            delay_ms=delay_ms,
            record_delay_ms=record_delay_ms,
            geocode_delay_ms=max(0, _env_int("POI_ENGINE_GEOCODE_DELAY_MS", 500)),
            boundary_timeout_s=_env_float("POI_ENGINE_BOUNDARY_TIMEOUT_S", 10.0),
            source_timeout_s=_env_float("POI_ENGINE_SOURCE_TIMEOUT_S", 30.0),
            geocode_timeout_s=_env_float("POI_ENGINE_GEOCODE_TIMEOUT_S", 5.0),
            overpass_url=_env_str("POI_ENGINE_OVERPASS_URL", cls.overpass_url),
            nominatim_url=_env_str("POI_ENGINE_NOMINATIM_URL", cls.nominatim_url),
            geocoder_url=_env_str("POI_ENGINE_GEOCODER_URL", cls.geocoder_url),
            user_agent=_env_str("POI_ENGINE_USER_AGENT", cls.user_agent),
            name_locale=_env_str("POI_ENGINE_NAME_LOCALE", "ru"),
            street_prefix=_env_str("POI_ENGINE_STREET_PREFIX", "ул."),
            country_suffix=os.environ.get("POI_ENGINE_COUNTRY_SUFFIX") or None,
            state_dir=_env_str("POI_ENGINE_STATE_DIR", "progress"),
            events_file=os.environ.get("POI_ENGINE_EVENTS_FILE") or None,
            categories_file=os.environ.get("POI_ENGINE_CATEGORIES_FILE") or None,
            regions_file=os.environ.get("POI_ENGINE_REGIONS_FILE") or None,
            quality_file=os.environ.get("POI_ENGINE_QUALITY_FILE") or None,
            duplicate_radius_m=_env_float("POI_ENGINE_DUPLICATE_RADIUS_M", 100.0),
            exists_tolerance_deg=_env_float("POI_ENGINE_EXISTS_TOLERANCE_DEG", 0.001),
            batch_size=max(1, _env_int("POI_ENGINE_BATCH_SIZE", 50)),
        )


def geocoder_credential() -> Tuple[Optional[str], Optional[str]]:
    """Return (env name, value) of the first configured geocoder key, or (None, None)."""
    for name in GEOCODER_CREDENTIAL_ENV:
        value = (os.environ.get(name) or "").strip()
        if value:
            return name, value
    return None, None


# -----------------------------
# Declarative data
# -----------------------------
def _load_yaml(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot load {path}: {e}") from e


def validate_categories(raw: Any) -> List[CategoryTemplate]:
    if not isinstance(raw, dict) or not isinstance(raw.get("categories"), list):
        raise ConfigError("categories file must contain a 'categories' list")

    out: List[CategoryTemplate] = []
    seen_keys = set()
    problems: List[str] = []

    for i, item in enumerate(raw["categories"]):
        if not isinstance(item, dict):
            problems.append(f"#{i}: not a mapping")
            continue
        key = str(item.get("key") or "").strip()
        label = str(item.get("label") or "").strip()
        code = str(item.get("code") or "").strip()
        query = str(item.get("query") or "")
        source = str(item.get("source") or "overpass").strip()
        subkinds = item.get("subkinds") or []

        where = key or f"#{i}"
        if not key:
            problems.append(f"{where}: missing key")
        elif key in seen_keys:
            problems.append(f"{where}: duplicate key")
        if not label:
            problems.append(f"{where}: missing label")
        if code not in CATALOG_CATEGORIES:
            problems.append(f"{where}: unknown catalog code {code!r}")
        if source not in CANDIDATE_SOURCES:
            problems.append(f"{where}: unknown source {source!r}")
        if source == "overpass" and BBOX_PLACEHOLDER not in query:
            problems.append(f"{where}: query lacks {BBOX_PLACEHOLDER}")
        if not isinstance(subkinds, list):
            problems.append(f"{where}: subkinds must be a list")
            subkinds = []

        seen_keys.add(key)
        out.append(CategoryTemplate(
            key=key,
            label=label,
            code=code,
            query=query,
            subkinds=tuple(str(s) for s in subkinds),
            source=source,
        ))

    if problems:
        raise ConfigError("invalid category config: " + "; ".join(problems))
    if not out:
        raise ConfigError("category config is empty")
    return out


def load_categories(path: Optional[str] = None) -> List[CategoryTemplate]:
    return validate_categories(_load_yaml(Path(path) if path else DATA_DIR / "categories.yaml"))


def load_regions(path: Optional[str] = None) -> List[Region]:
    """
    Flatten the nested region config (region -> subject -> cities) into an ordered list.

    Regions with the same key are kept once (first wins).
    """
    raw = _load_yaml(Path(path) if path else DATA_DIR / "regions.yaml")
    if not isinstance(raw, dict) or not isinstance(raw.get("regions"), dict):
        raise ConfigError("regions file must contain a 'regions' mapping")

    country = raw.get("country")
    out: List[Region] = []
    keys = set()
    for region in raw["regions"].values():
        for subject in (region or {}).get("subjects", {}).values():
            for city in (subject or {}).get("cities", []) or []:
                key = str(city.get("key") or "").strip()
                name = str(city.get("name") or "").strip()
                if not key or not name:
                    raise ConfigError(f"region entry missing key/name: {city!r}")
                if key in keys:
                    continue
                keys.add(key)
                out.append(Region(
                    key=key,
                    name=name,
                    country=city.get("country") or country,
                    subject=(subject or {}).get("name"),
                    priority=int(city.get("priority") or 3),
                ))
    return out


def category_code_map(categories: List[CategoryTemplate]) -> Dict[str, str]:
    """label -> internal code, the lookup older tooling kept by hand."""
    return {c.label: c.code for c in categories}
