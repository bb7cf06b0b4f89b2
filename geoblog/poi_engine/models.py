from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class RegionStatus:
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    def as_overpass(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"

    def as_list(self) -> List[float]:
        return [self.south, self.west, self.north, self.east]

    @classmethod
    def from_list(cls, values: List[Any]) -> "BoundingBox":
        south, west, north, east = (float(v) for v in values)
        return cls(south=south, west=west, north=north, east=east)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Region:
    key: str
    name: str
    country: Optional[str] = None
    subject: Optional[str] = None
    priority: int = 3

    @property
    def query_name(self) -> str:
        """Free-text name handed to the boundary lookup."""
        return f"{self.name}, {self.country}" if self.country else self.name


@dataclass(frozen=True)
class CategoryTemplate:
    """
    One spatial query template; drives one CandidateSource call per region.

    `code` is the internal catalog category the label maps to.
    """
    key: str
    label: str
    code: str
    query: str
    subkinds: tuple = ()
    source: str = "overpass"


@dataclass
class Candidate:
    """
    A POI/event proposed by an external source, before admission into the catalog.

    `name` is "" (never a placeholder) when the source carries no usable name.
    """
    external_id: Optional[str]
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    tags: Dict[str, Any] = field(default_factory=dict)
    address: Optional[str] = None
    category: Optional[str] = None
    osm_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class CatalogRecord:
    title: str
    latitude: float
    longitude: float
    category: str
    description: str = ""
    id: Optional[int] = None
    subcategory: Optional[str] = None
    address: Optional[str] = None
    hashtags: List[str] = field(default_factory=list)
    completeness_score: int = 0
    needs_completion: bool = True
    creator_id: Optional[str] = None
    source: Optional[str] = None
    identity_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class NearRow:
    """A catalog row returned by a proximity query, with its precise distance in meters."""
    record: CatalogRecord
    distance_m: float


@dataclass
class DuplicateMatch:
    record: CatalogRecord
    distance_m: int
    title_similarity: float
    duplication_type: str
    recommended_action: str


@dataclass
class Alternative:
    id: Optional[int]
    title: str
    action: str  # use_existing | contribute
    message: str
    distance_m: Optional[int] = None
    completeness: Optional[int] = None


@dataclass
class OverallRecommendation:
    action: str  # allow | warn | block
    message: str
    alternatives: List[Alternative] = field(default_factory=list)
    requires_confirmation: bool = False


@dataclass
class DuplicationReport:
    risk_level: str  # none | low | medium | high | critical
    can_proceed: bool
    message: str
    matches: List[DuplicateMatch]
    recommendation: OverallRecommendation
    requires_confirmation: bool = False
    primary_issue: Optional[str] = None
    affected: int = 0

    @property
    def has_duplicates(self) -> bool:
        return len(self.matches) > 0

    @property
    def is_blocked(self) -> bool:
        return not self.can_proceed

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["has_duplicates"] = self.has_duplicates
        out["duplicates_count"] = len(self.matches)
        return out


@dataclass
class CreatorAllowance:
    can_create: bool
    recent_count: int
    remaining_today: int
    reason: Optional[str] = None  # rate_limit
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrawlProgress:
    completed: List[str] = field(default_factory=list)
    in_progress: Optional[str] = None
    statistics: Dict[str, int] = field(default_factory=lambda: {
        "total_regions": 0,
        "completed_regions": 0,
        "total_records": 0,
    })
    bbox: Dict[str, List[float]] = field(default_factory=dict)

    def status_of(self, region_key: str) -> str:
        if region_key in self.completed:
            return RegionStatus.COMPLETED
        if self.in_progress == region_key:
            return RegionStatus.IN_PROGRESS
        return RegionStatus.NOT_STARTED
