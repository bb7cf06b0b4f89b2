"""
Catalog persistence for the POI engine.

BaseCatalogStore is the interface the engine depends on; SqlCatalogStore is the
SQLAlchemy implementation over the `map_markers` table.

Title matching and precise distances are computed in Python rather than SQL:
sqlite's lower() only folds ASCII, and we need Cyrillic titles to behave the
same in tests (sqlite) and production (Postgres).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from geoblog.schema import Base, MapMarker

from .completeness import NEEDS_COMPLETION_BELOW
from .geo import Rectangle, haversine_distance, search_rectangle
from .models import CatalogRecord, NearRow
from .textsim import titles_overlap

logger = logging.getLogger(__name__)

_markers = MapMarker.__table__


class BaseCatalogStore:
    """
    Interface all catalog stores must implement.

    insert() returns the new id, or None when a unique constraint says the row
    already exists. Any other datastore failure raises.
    """

    def insert(self, record: CatalogRecord) -> Optional[int]:
        raise NotImplementedError

    def exists_near(self, title: str, lat: float, lng: float, tolerance: float = 0.001) -> bool:
        raise NotImplementedError

    def count_all(self) -> int:
        raise NotImplementedError

    def query_near(
        self,
        lat: float,
        lng: float,
        rectangle: Rectangle,
        title_filter: str,
        exclude_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[NearRow]:
        raise NotImplementedError

    def query_incomplete(
        self,
        lat: float,
        lng: float,
        rectangle: Rectangle,
        category: Optional[str] = None,
    ) -> List[NearRow]:
        raise NotImplementedError

    def count_recent_by_creator(
        self,
        creator_id: str,
        lat: float,
        lng: float,
        radius_m: float,
        since: datetime,
    ) -> int:
        """Active markers by `creator_id` created after `since` within `radius_m` of the point."""
        raise NotImplementedError


def _record_to_params(record: CatalogRecord) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "title": record.title,
        "description": record.description or "",
        "latitude": float(record.latitude),
        "longitude": float(record.longitude),
        "category": record.category or "other",
        "subcategory": record.subcategory,
        "address": record.address,
        "hashtags": list(record.hashtags or []),
        "completeness_score": int(record.completeness_score),
        "needs_completion": bool(record.needs_completion),
        "is_active": bool(record.is_active),
        "creator_id": record.creator_id,
        "source": record.source,
        "identity_key": record.identity_key,
        "metadata": dict(record.metadata or {}),
    }
    if record.created_at is not None:
        params["created_at"] = record.created_at
    return params


def _row_to_record(row) -> CatalogRecord:
    m = row._mapping
    return CatalogRecord(
        id=m["id"],
        title=m["title"],
        description=m["description"] or "",
        latitude=float(m["latitude"]),
        longitude=float(m["longitude"]),
        category=m["category"],
        subcategory=m["subcategory"],
        address=m["address"],
        hashtags=list(m["hashtags"] or []),
        completeness_score=int(m["completeness_score"] or 0),
        needs_completion=bool(m["needs_completion"]),
        is_active=bool(m["is_active"]),
        creator_id=m["creator_id"],
        source=m["source"],
        identity_key=m["identity_key"],
        metadata=dict(m["metadata"] or {}),
        created_at=m["created_at"],
        updated_at=m["updated_at"],
    )


class SqlCatalogStore(BaseCatalogStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    def ensure_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def insert(self, record: CatalogRecord) -> Optional[int]:
        params = _record_to_params(record)
        try:
            with self.engine.begin() as conn:
                res = conn.execute(insert(_markers).values(**params))
                new_id = res.inserted_primary_key[0]
        except IntegrityError as e:
            logger.warning("marker already exists: %s (%s)", record.title, type(e.orig).__name__)
            return None
        logger.info("inserted marker id=%s title=%s", new_id, record.title)
        return int(new_id)

    def get(self, record_id: int) -> Optional[CatalogRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(select(_markers).where(_markers.c.id == record_id)).first()
        return _row_to_record(row) if row is not None else None

    def exists_near(self, title: str, lat: float, lng: float, tolerance: float = 0.001) -> bool:
        stmt = (
            select(_markers.c.id)
            .where(_markers.c.title == title)
            .where(func.abs(_markers.c.latitude - lat) < tolerance)
            .where(func.abs(_markers.c.longitude - lng) < tolerance)
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def count_all(self) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(_markers)).scalar() or 0)

    def _in_rectangle(self, rectangle: Rectangle, category: Optional[str]):
        stmt = (
            select(_markers)
            .where(_markers.c.is_active.is_(True))
            .where(_markers.c.latitude.between(rectangle.min_lat, rectangle.max_lat))
            .where(_markers.c.longitude.between(rectangle.min_lng, rectangle.max_lng))
        )
        if category and category != "other":
            stmt = stmt.where(_markers.c.category == category)
        return stmt

    def query_near(
        self,
        lat: float,
        lng: float,
        rectangle: Rectangle,
        title_filter: str,
        exclude_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[NearRow]:
        stmt = self._in_rectangle(rectangle, category)
        if exclude_id is not None:
            stmt = stmt.where(_markers.c.id != exclude_id)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        out: List[NearRow] = []
        for row in rows:
            record = _row_to_record(row)
            if not titles_overlap(record.title, title_filter):
                continue
            out.append(NearRow(record=record, distance_m=haversine_distance(lat, lng, record.latitude, record.longitude)))
        out.sort(key=lambda r: r.distance_m)
        return out

    def query_incomplete(
        self,
        lat: float,
        lng: float,
        rectangle: Rectangle,
        category: Optional[str] = None,
    ) -> List[NearRow]:
        stmt = (
            self._in_rectangle(rectangle, category)
            .where(_markers.c.needs_completion.is_(True))
            .where(_markers.c.completeness_score < NEEDS_COMPLETION_BELOW)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        out = [
            NearRow(record=r, distance_m=haversine_distance(lat, lng, r.latitude, r.longitude))
            for r in (_row_to_record(row) for row in rows)
        ]
        out.sort(key=lambda n: (n.record.completeness_score, n.distance_m))
        return out

    def count_recent_by_creator(
        self,
        creator_id: str,
        lat: float,
        lng: float,
        radius_m: float,
        since: datetime,
    ) -> int:
        stmt = (
            self._in_rectangle(search_rectangle(lat, lng, radius_m), None)
            .where(_markers.c.creator_id == creator_id)
            .where(_markers.c.created_at > since)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        return sum(
            1
            for r in (_row_to_record(row) for row in rows)
            if haversine_distance(lat, lng, r.latitude, r.longitude) <= radius_m
        )
