"""
Completeness scoring for catalog records.

A record's score (0-100) says how much descriptive data it holds. Ingested
markers start low on purpose: they carry a title, a category and maybe an
address, and users are expected to fill in the rest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import CatalogRecord

NEEDS_COMPLETION_BELOW = 80

BUSINESS_CATEGORIES = ("restaurant", "cafe", "shop", "shopping", "hotel", "museum", "business")
CONTACT_CATEGORIES = ("restaurant", "cafe", "shop", "shopping", "hotel", "business")

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class FieldCheck:
    field: str
    weight: int
    check: Callable[[CatalogRecord], bool]
    message: str
    priority: str
    only_for: Optional[Tuple[str, ...]] = None


@dataclass
class CompletenessResult:
    score: int
    needs_completion: bool
    suggestions: List[Dict[str, Any]] = field(default_factory=list)
    filled: int = 0
    applicable: int = 0


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _extra(record: CatalogRecord, key: str) -> Any:
    return (record.metadata or {}).get(key)


FIELD_CHECKS: Tuple[FieldCheck, ...] = (
    FieldCheck("title", 15, lambda r: len(_text(r.title)) >= 5,
               "Add a more descriptive title (at least 5 characters)", "high"),
    FieldCheck("description", 20, lambda r: len(_text(r.description)) >= 50,
               "Describe the place in more detail (at least 50 characters)", "high"),
    FieldCheck("category", 10, lambda r: bool(_text(r.category)) and r.category != "other",
               "Pick a fitting category", "medium"),
    FieldCheck("photo_urls", 15, lambda r: bool(_extra(r, "photo_urls")),
               "Upload photos of the place", "high"),
    FieldCheck("address", 10, lambda r: len(_text(r.address)) >= 10,
               "Give the exact address (at least 10 characters)", "medium"),
    FieldCheck("working_hours", 8, lambda r: bool(_text(_extra(r, "working_hours"))),
               "Add opening hours", "medium", only_for=BUSINESS_CATEGORIES),
    FieldCheck("contact_info", 7, lambda r: bool(_text(_extra(r, "contact_info"))),
               "Add contact info (phone, website)", "low", only_for=CONTACT_CATEGORIES),
    FieldCheck("detailed_info", 15, lambda r: len(_text(_extra(r, "detailed_info"))) >= 100,
               "Share practical tips and details (at least 100 characters)", "high"),
)


def score_record(record: CatalogRecord) -> CompletenessResult:
    earned = 0
    possible = 0
    filled = 0
    applicable = 0
    suggestions: List[Dict[str, Any]] = []

    for fc in FIELD_CHECKS:
        if fc.only_for is not None and record.category not in fc.only_for:
            continue
        applicable += 1
        possible += fc.weight
        if fc.check(record):
            earned += fc.weight
            filled += 1
        else:
            suggestions.append({
                "field": fc.field,
                "message": fc.message,
                "priority": fc.priority,
                "weight": fc.weight,
            })

    suggestions.sort(key=lambda s: (-_PRIORITY_ORDER[s["priority"]], -s["weight"]))
    # half-up, not banker's rounding
    score = int(100 * earned / possible + 0.5) if possible else 0
    return CompletenessResult(
        score=score,
        needs_completion=score < NEEDS_COMPLETION_BELOW,
        suggestions=suggestions,
        filled=filled,
        applicable=applicable,
    )
