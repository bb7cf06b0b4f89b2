"""
Error taxonomy for the POI engine.

Isolation rules:
- BoundaryNotFound      -> skip the region, continue the run.
- SourceQueryFailed     -> treat as zero candidates for that category.
- QualityRejected       -> not an error; a normal filter outcome (reporting only).
- DuplicationCheckFailed-> abort the create flow; never read as "no duplicates".
- MissingCredential     -> degrade to unresolved coordinates.
- PersistenceConflict   -> unique-constraint violation, treated as "already exists".
"""

from __future__ import annotations


class PoiEngineError(Exception):
    """Base class for all engine errors."""


class ConfigError(PoiEngineError):
    """Declarative configuration failed startup validation."""


class BoundaryNotFound(PoiEngineError):
    def __init__(self, region_name: str, reason: str = "no result"):
        super().__init__(f"boundary not found for {region_name!r}: {reason}")
        self.region_name = region_name
        self.reason = reason


class SourceQueryFailed(PoiEngineError):
    def __init__(self, category: str, reason: str):
        super().__init__(f"source query failed for category {category!r}: {reason}")
        self.category = category
        self.reason = reason


class QualityRejected(PoiEngineError):
    """Carried only for reporting why a candidate was filtered; never raised past the orchestrator."""

    def __init__(self, title: str, reason: str):
        super().__init__(f"rejected {title!r}: {reason}")
        self.title = title
        self.reason = reason


class DuplicationCheckFailed(PoiEngineError):
    """The datastore was unavailable during a duplicate search."""


DuplicateCheckFailed = DuplicationCheckFailed


class MissingCredential(PoiEngineError):
    def __init__(self, names):
        super().__init__("no credential configured; checked: " + ", ".join(names))
        self.names = list(names)


class PersistenceConflict(PoiEngineError):
    """A write hit a unique constraint; the row already exists."""
