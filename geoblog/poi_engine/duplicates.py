"""
Duplicate detection for interactively created markers.

check() answers "does this proposed marker duplicate something already in the
catalog?" and returns a DuplicationReport the caller renders:

  critical -> block (can_proceed=False)
  high     -> warn, confirmation required
  medium   -> warn, suggest contributing to an incomplete neighbour
  low/none -> allow

Pipeline:
  1. rectangle pre-filter + two-way title overlap (store.query_near)
  2. haversine distance, drop rows beyond the radius
  3. normalized Levenshtein title similarity
  4. classify each match            (CLASSIFICATION_RULES)
  5. per-match recommended action   (ACTION_RULES)
  6. aggregate risk                 (RISK_RULES)
  7. overall recommendation + up to 3 alternatives

The three cascades are ordered tables evaluated first-match-wins, so thresholds
can be read and changed in one place. Note the 50 m / 0.7 rule outranks the
20 m / same-category rule for points satisfying both.

can_create() is the separate per-creator throttle (recent markers by the same
creator around the point).

Read-only: nothing here writes to the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .errors import DuplicationCheckFailed
from .geo import search_rectangle
from .models import (
    Alternative,
    CatalogRecord,
    CreatorAllowance,
    DuplicateMatch,
    DuplicationReport,
    NearRow,
    OverallRecommendation,
)
from .store import BaseCatalogStore
from .textsim import text_similarity

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_M = 100
MAX_ALTERNATIVES = 3
INCOMPLETE_SCORE_BELOW = 60

CREATOR_DAILY_LIMIT = 10
CREATOR_RADIUS_M = 1000
CREATOR_WINDOW = timedelta(hours=24)


# -----------------------------
# Decision tables
# -----------------------------
@dataclass(frozen=True)
class MatchFacts:
    distance_m: int
    similarity: float
    same_category: bool
    completeness_score: int
    needs_completion: bool


@dataclass(frozen=True)
class Rule:
    outcome: str
    when: Callable[[MatchFacts], bool]


def first_match(rules: Sequence[Rule], facts: MatchFacts, default: str) -> str:
    for rule in rules:
        if rule.when(facts):
            return rule.outcome
    return default


CLASSIFICATION_RULES: Tuple[Rule, ...] = (
    Rule("exact_duplicate", lambda f: f.distance_m <= 10 and f.similarity > 0.8),
    Rule("likely_duplicate", lambda f: f.distance_m <= 50 and f.similarity > 0.7),
    Rule("same_location_different_name", lambda f: f.distance_m <= 100 and f.similarity > 0.9),
    Rule("same_category_close", lambda f: f.distance_m <= 20 and f.same_category),
    Rule("similar_name_nearby", lambda f: f.similarity > 0.8 and f.distance_m <= 200),
)
DEFAULT_DUPLICATION_TYPE = "potential_duplicate"

ACTION_RULES: Tuple[Rule, ...] = (
    Rule("block_creation", lambda f: f.distance_m <= 10 and f.similarity > 0.8),
    Rule("suggest_contribution", lambda f: (
        f.distance_m <= 50 and f.similarity > 0.7
        and f.needs_completion and f.completeness_score < INCOMPLETE_SCORE_BELOW
    )),
    Rule("warn_user", lambda f: f.distance_m <= 50 and f.similarity > 0.7),
    Rule("suggest_contribution", lambda f: f.completeness_score < 40 and f.needs_completion),
)
DEFAULT_ACTION = "allow_with_warning"


def classify_match(facts: MatchFacts) -> str:
    return first_match(CLASSIFICATION_RULES, facts, DEFAULT_DUPLICATION_TYPE)


def recommend_action(facts: MatchFacts) -> str:
    return first_match(ACTION_RULES, facts, DEFAULT_ACTION)


def _is_incomplete(m: DuplicateMatch) -> bool:
    return bool(m.record.needs_completion) and m.record.completeness_score < INCOMPLETE_SCORE_BELOW


@dataclass(frozen=True)
class RiskRule:
    level: str
    primary_issue: str
    select: Callable[[List[DuplicateMatch]], List[DuplicateMatch]]
    can_proceed: bool
    requires_confirmation: bool
    message: str


RISK_RULES: Tuple[RiskRule, ...] = (
    RiskRule("critical", "exact_duplicate",
             lambda ms: [m for m in ms if m.duplication_type == "exact_duplicate"],
             can_proceed=False, requires_confirmation=False,
             message="An exact duplicate exists. Creation is blocked."),
    RiskRule("high", "likely_duplicate",
             lambda ms: [m for m in ms if m.duplication_type == "likely_duplicate"],
             can_proceed=True, requires_confirmation=True,
             message="Likely duplicates found. Please review before creating."),
    RiskRule("medium", "incomplete_nearby",
             lambda ms: [m for m in ms if _is_incomplete(m)],
             can_proceed=True, requires_confirmation=False,
             message="Incomplete markers nearby. Consider completing them instead."),
    RiskRule("low", "similar_nearby",
             lambda ms: list(ms),
             can_proceed=True, requires_confirmation=False,
             message="Similar markers found nearby, but they are not duplicates."),
)

NO_RISK = RiskRule("none", "", lambda ms: [], can_proceed=True, requires_confirmation=False,
                   message="No duplicates found.")


def assess_risk(matches: List[DuplicateMatch]) -> Tuple[RiskRule, List[DuplicateMatch]]:
    for rule in RISK_RULES:
        affected = rule.select(matches)
        if affected:
            return rule, affected
    return NO_RISK, []


RISK_TO_ACTION = {
    "critical": "block",
    "high": "warn",
    "medium": "warn",
    "low": "allow",
    "none": "allow",
}


def _alternatives(level: str, matches: List[DuplicateMatch]) -> List[Alternative]:
    if level == "critical":
        return [
            Alternative(
                id=m.record.id,
                title=m.record.title,
                distance_m=m.distance_m,
                action="use_existing",
                message=f'Use the existing marker "{m.record.title}"',
            )
            for m in matches
            if m.duplication_type == "exact_duplicate"
        ][:MAX_ALTERNATIVES]

    if level == "high":
        out = []
        for m in matches[:MAX_ALTERNATIVES]:
            if m.record.needs_completion:
                out.append(Alternative(
                    id=m.record.id, title=m.record.title, distance_m=m.distance_m, action="contribute",
                    message=f'Complete the existing marker "{m.record.title}" ({m.distance_m} m)',
                ))
            else:
                out.append(Alternative(
                    id=m.record.id, title=m.record.title, distance_m=m.distance_m, action="use_existing",
                    message=f'Use the existing marker "{m.record.title}" ({m.distance_m} m)',
                ))
        return out

    if level == "medium":
        return [
            Alternative(
                id=m.record.id,
                title=m.record.title,
                distance_m=m.distance_m,
                completeness=m.record.completeness_score,
                action="contribute",
                message=(
                    f'Complete "{m.record.title}" '
                    f"({m.record.completeness_score}% filled, {m.distance_m} m)"
                ),
            )
            for m in matches
            if m.record.needs_completion
        ][:2]

    return []


_OVERALL_MESSAGES = {
    "critical": "Marker creation is blocked because of an exact duplicate.",
    "high": "Similar markers exist nearby. Check that you are not duplicating existing content.",
    "medium": "Incomplete markers exist nearby. Consider improving them instead of creating a new one.",
    "low": "The marker can be created. Similar markers were found, but they are not duplicates.",
    "none": "The marker can be created.",
}


def overall_recommendation(level: str, matches: List[DuplicateMatch]) -> OverallRecommendation:
    return OverallRecommendation(
        action=RISK_TO_ACTION[level],
        message=_OVERALL_MESSAGES[level],
        alternatives=_alternatives(level, matches),
        requires_confirmation=(level == "high"),
    )


# -----------------------------
# Service
# -----------------------------
def _round_m(distance_m: float) -> int:
    return int(distance_m + 0.5)


def build_match(row: NearRow, title: str, category: Optional[str]) -> DuplicateMatch:
    record: CatalogRecord = row.record
    distance = _round_m(row.distance_m)
    similarity = text_similarity(title, record.title)
    facts = MatchFacts(
        distance_m=distance,
        similarity=similarity,
        same_category=(record.category == category),
        completeness_score=int(record.completeness_score or 0),
        needs_completion=bool(record.needs_completion),
    )
    return DuplicateMatch(
        record=record,
        distance_m=distance,
        title_similarity=similarity,
        duplication_type=classify_match(facts),
        recommended_action=recommend_action(facts),
    )


class DuplicateDetectionService:
    def __init__(self, store: BaseCatalogStore, radius_m: float = DEFAULT_RADIUS_M):
        self.store = store
        self.radius_m = radius_m

    def check(
        self,
        lat: float,
        lng: float,
        title: str,
        category: Optional[str] = None,
        exclude_id: Optional[int] = None,
        radius_m: Optional[float] = None,
    ) -> DuplicationReport:
        radius = self.radius_m if radius_m is None else radius_m
        rectangle = search_rectangle(lat, lng, radius)

        try:
            rows = self.store.query_near(
                lat, lng, rectangle, title, exclude_id=exclude_id, category=category,
            )
        except Exception as e:
            logger.error("duplicate check failed for %r at (%s, %s): %s", title, lat, lng, e)
            raise DuplicationCheckFailed(f"duplicate check failed: {e}") from e

        matches = [
            build_match(row, title, category)
            for row in rows
            if row.distance_m <= radius
        ]
        matches.sort(key=lambda m: m.distance_m)

        rule, affected = assess_risk(matches)
        report = DuplicationReport(
            risk_level=rule.level,
            can_proceed=rule.can_proceed,
            requires_confirmation=rule.requires_confirmation,
            message=rule.message,
            primary_issue=rule.primary_issue or None,
            affected=len(affected),
            matches=matches,
            recommendation=overall_recommendation(rule.level, matches),
        )
        if matches:
            logger.info(
                "duplicate check %r: risk=%s matches=%d action=%s",
                title, report.risk_level, len(matches), report.recommendation.action,
            )
        return report

    def nearby_incomplete(
        self,
        lat: float,
        lng: float,
        category: Optional[str] = None,
        radius_m: float = 500,
        limit: int = 5,
    ) -> List[NearRow]:
        """Markers worth completing instead of creating a new one, least complete first."""
        rectangle = search_rectangle(lat, lng, radius_m)
        try:
            rows = self.store.query_incomplete(lat, lng, rectangle, category=category)
        except Exception as e:
            raise DuplicationCheckFailed(f"incomplete-nearby lookup failed: {e}") from e
        return [r for r in rows if r.distance_m <= radius_m][:limit]

    def can_create(
        self,
        creator_id: str,
        lat: float,
        lng: float,
        now: Optional[datetime] = None,
    ) -> CreatorAllowance:
        """Per-creator throttle: at most CREATOR_DAILY_LIMIT active markers within 1 km in 24 h."""
        since = (now or datetime.now(timezone.utc)) - CREATOR_WINDOW
        try:
            recent = self.store.count_recent_by_creator(creator_id, lat, lng, CREATOR_RADIUS_M, since)
        except Exception as e:
            raise DuplicationCheckFailed(f"creator limit lookup failed: {e}") from e

        if recent >= CREATOR_DAILY_LIMIT:
            logger.info("creator %s hit the limit at (%s, %s): %d recent", creator_id, lat, lng, recent)
            return CreatorAllowance(
                can_create=False,
                recent_count=recent,
                remaining_today=0,
                reason="rate_limit",
                message=(
                    f"{recent} markers created in this area in the last 24 hours. "
                    f"Limit: {CREATOR_DAILY_LIMIT}."
                ),
            )
        return CreatorAllowance(
            can_create=True,
            recent_count=recent,
            remaining_today=CREATOR_DAILY_LIMIT - recent,
        )
