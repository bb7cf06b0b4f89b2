"""
Duplicate detection: decision tables in isolation, then the full check against sqlite.
"""
from datetime import datetime, timedelta, timezone

import pytest

from geoblog.poi_engine.duplicates import (
    CREATOR_DAILY_LIMIT,
    DuplicateDetectionService,
    MatchFacts,
    build_match,
    classify_match,
    recommend_action,
)
from geoblog.poi_engine.errors import DuplicateCheckFailed, DuplicationCheckFailed
from geoblog.poi_engine.models import CatalogRecord, NearRow
from geoblog.poi_engine.store import BaseCatalogStore

LAT = 55.7601
LNG = 37.6186
DEG_PER_M = 1 / 111195.0  # latitude degrees per meter on the haversine sphere


def facts(distance, similarity, same_category=False, score=100, needs=False):
    return MatchFacts(
        distance_m=distance,
        similarity=similarity,
        same_category=same_category,
        completeness_score=score,
        needs_completion=needs,
    )


class TestClassificationTable:

    @pytest.mark.parametrize("f,expected", [
        (facts(5, 0.9), "exact_duplicate"),
        (facts(10, 0.81), "exact_duplicate"),
        (facts(11, 0.9), "likely_duplicate"),
        (facts(45, 0.75), "likely_duplicate"),
        (facts(80, 0.95), "same_location_different_name"),
        (facts(15, 0.3, same_category=True), "same_category_close"),
        (facts(150, 0.85), "similar_name_nearby"),
        (facts(60, 0.5), "potential_duplicate"),
        (facts(50, 0.71), "likely_duplicate"),
        (facts(51, 0.71), "potential_duplicate"),
        (facts(20, 0.1, same_category=True), "same_category_close"),
        (facts(21, 0.1, same_category=True), "potential_duplicate"),
        (facts(100, 0.91), "same_location_different_name"),
        (facts(101, 0.91), "similar_name_nearby"),
        (facts(200, 0.81), "similar_name_nearby"),
    ])
    def test_first_match_wins(self, f, expected):
        assert classify_match(f) == expected

    def test_likely_outranks_same_category_close(self):
        # both the 50 m / 0.7 and the 20 m / same-category rules hold
        assert classify_match(facts(15, 0.75, same_category=True)) == "likely_duplicate"


class TestActionTable:

    @pytest.mark.parametrize("f,expected", [
        (facts(5, 0.9), "block_creation"),
        (facts(30, 0.8, needs=True, score=50), "suggest_contribution"),
        (facts(30, 0.8, needs=False, score=50), "warn_user"),
        (facts(30, 0.8, needs=True, score=70), "warn_user"),
        (facts(90, 0.2, needs=True, score=30), "suggest_contribution"),
        (facts(90, 0.2, needs=True, score=45), "allow_with_warning"),
        (facts(10, 0.81), "block_creation"),
        (facts(50, 0.71, needs=True, score=59), "suggest_contribution"),
        (facts(50, 0.71, needs=True, score=60), "warn_user"),
        (facts(51, 0.71, needs=True, score=59), "allow_with_warning"),
    ])
    def test_first_match_wins(self, f, expected):
        assert recommend_action(f) == expected


class TestDistanceRounding:

    def _row(self, distance):
        rec = CatalogRecord(id=1, title="Большой театр", latitude=LAT, longitude=LNG, category="culture")
        return NearRow(record=rec, distance_m=distance)

    def test_rounded_before_classification(self):
        m = build_match(self._row(10.4), "Большой театр", "culture")
        assert m.distance_m == 10
        assert m.duplication_type == "exact_duplicate"

    def test_rounds_half_up(self):
        m = build_match(self._row(10.5), "Большой театр", "culture")
        assert m.distance_m == 11
        assert m.duplication_type == "likely_duplicate"


class TestCheck:

    @pytest.fixture
    def service(self, store):
        return DuplicateDetectionService(store)

    def test_no_duplicates(self, service):
        report = service.check(LAT, LNG, "Большой театр")
        assert report.risk_level == "none"
        assert report.can_proceed
        assert not report.has_duplicates
        assert report.message == "No duplicates found."
        assert report.recommendation.action == "allow"
        assert report.recommendation.alternatives == []

    def test_exact_duplicate_blocks(self, service, store, make_record):
        existing_id = store.insert(make_record("Большой театр", LAT, LNG, category="culture"))

        report = service.check(LAT + 5 * DEG_PER_M, LNG, "Большой театр", category="culture")

        assert report.risk_level == "critical"
        assert report.is_blocked
        assert report.primary_issue == "exact_duplicate"
        assert report.matches[0].distance_m == 5
        assert report.matches[0].recommended_action == "block_creation"
        assert report.recommendation.action == "block"
        alt = report.recommendation.alternatives[0]
        assert alt.id == existing_id
        assert alt.action == "use_existing"

    def test_likely_duplicate_requires_confirmation(self, service, store, make_record):
        store.insert(make_record("Большой театр!", LAT, LNG))

        report = service.check(LAT + 30 * DEG_PER_M, LNG, "Большой театр")

        assert report.risk_level == "high"
        assert report.can_proceed
        assert report.requires_confirmation
        assert report.recommendation.requires_confirmation
        assert report.matches[0].duplication_type == "likely_duplicate"
        # stored record still needs completion -> contribute
        assert report.recommendation.alternatives[0].action == "contribute"

    def test_incomplete_neighbour_is_medium(self, service, store, make_record):
        store.insert(make_record("Парк Зарядье", LAT, LNG, category="nature", completeness_score=30))

        report = service.check(LAT + 40 * DEG_PER_M, LNG, "Зарядье")

        assert report.risk_level == "medium"
        assert report.primary_issue == "incomplete_nearby"
        assert report.matches[0].duplication_type == "potential_duplicate"
        assert report.matches[0].recommended_action == "suggest_contribution"
        alt = report.recommendation.alternatives[0]
        assert alt.action == "contribute"
        assert alt.completeness == 30

    def test_complete_neighbour_is_low(self, service, store, make_record):
        store.insert(make_record(
            "Парк Зарядье", LAT, LNG, category="nature", completeness_score=90, needs_completion=False,
        ))

        report = service.check(LAT + 40 * DEG_PER_M, LNG, "Зарядье")

        assert report.risk_level == "low"
        assert report.can_proceed
        assert report.recommendation.action == "allow"
        assert report.recommendation.alternatives == []

    def test_rows_beyond_radius_are_dropped(self, service, store, make_record):
        # inside the pre-filter rectangle (corner), but ~117 m away
        store.insert(make_record("Большой театр", LAT + 0.0008, LNG + 0.0012))
        report = service.check(LAT, LNG, "Большой театр")
        assert report.risk_level == "none"

    def test_larger_radius_finds_it(self, service, store, make_record):
        store.insert(make_record("Большой театр", LAT + 0.0008, LNG + 0.0012))
        report = service.check(LAT, LNG, "Большой театр", radius_m=200)
        assert report.has_duplicates

    def test_exclude_id(self, service, store, make_record):
        rid = store.insert(make_record("Большой театр", LAT, LNG))
        report = service.check(LAT, LNG, "Большой театр", exclude_id=rid)
        assert report.risk_level == "none"

    def test_category_filter(self, service, store, make_record):
        store.insert(make_record("Большой театр", LAT, LNG, category="attraction"))
        assert service.check(LAT, LNG, "Большой театр", category="culture").risk_level == "none"
        assert service.check(LAT, LNG, "Большой театр", category="other").risk_level == "critical"
        assert service.check(LAT, LNG, "Большой театр").risk_level == "critical"

    def test_inactive_rows_ignored(self, service, store, make_record):
        store.insert(make_record("Большой театр", LAT, LNG, is_active=False))
        assert service.check(LAT, LNG, "Большой театр").risk_level == "none"

    def test_to_dict(self, service, store, make_record):
        store.insert(make_record("Большой театр", LAT, LNG))
        d = service.check(LAT, LNG, "Большой театр").to_dict()
        assert d["risk_level"] == "critical"
        assert d["has_duplicates"] is True
        assert d["duplicates_count"] == 1

    def test_store_failure_is_not_no_duplicates(self):
        class DownStore(BaseCatalogStore):
            def query_near(self, *args, **kwargs):
                raise ConnectionError("db down")

        service = DuplicateDetectionService(DownStore())
        with pytest.raises(DuplicationCheckFailed) as exc:
            service.check(LAT, LNG, "Большой театр")
        assert isinstance(exc.value.__cause__, ConnectionError)
        # both names refer to one class
        assert DuplicateCheckFailed is DuplicationCheckFailed


class TestNearbyIncomplete:

    def test_sorted_by_score_then_distance(self, store, make_record):
        store.insert(make_record("Сквер у фонтана", LAT + 100 * DEG_PER_M, LNG, completeness_score=40))
        store.insert(make_record("Старая усадьба", LAT + 200 * DEG_PER_M, LNG, completeness_score=10))
        store.insert(make_record("Готовый музей", LAT, LNG, completeness_score=95, needs_completion=False))
        store.insert(make_record("Далёкая часовня", LAT + 2000 * DEG_PER_M, LNG, completeness_score=5))

        rows = DuplicateDetectionService(store).nearby_incomplete(LAT, LNG, radius_m=500)

        assert [r.record.title for r in rows] == ["Старая усадьба", "Сквер у фонтана"]

    def test_limit(self, store, make_record):
        for i in range(4):
            store.insert(make_record(f"Двор номер {i}", LAT + i * 10 * DEG_PER_M, LNG))
        rows = DuplicateDetectionService(store).nearby_incomplete(LAT, LNG, limit=2)
        assert len(rows) == 2


class TestCreatorLimit:

    NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def _fill(self, store, make_record, n, creator="u1", **kwargs):
        kwargs.setdefault("created_at", self.NOW - timedelta(hours=1))
        for i in range(n):
            store.insert(make_record(f"Точка номер {i}", LAT + i * 10 * DEG_PER_M, LNG, creator_id=creator, **kwargs))

    def test_under_limit(self, store, make_record):
        self._fill(store, make_record, 3)
        allowance = DuplicateDetectionService(store).can_create("u1", LAT, LNG, now=self.NOW)
        assert allowance.can_create
        assert allowance.recent_count == 3
        assert allowance.remaining_today == 7
        assert allowance.reason is None

    def test_limit_reached(self, store, make_record):
        self._fill(store, make_record, CREATOR_DAILY_LIMIT)
        allowance = DuplicateDetectionService(store).can_create("u1", LAT, LNG, now=self.NOW)
        assert not allowance.can_create
        assert allowance.reason == "rate_limit"
        assert allowance.remaining_today == 0
        assert allowance.to_dict()["recent_count"] == CREATOR_DAILY_LIMIT

    @pytest.mark.parametrize("kwargs", [
        {"creator": "someone-else"},
        {"created_at": NOW - timedelta(hours=30)},
        {"is_active": False},
    ])
    def test_only_recent_active_markers_by_the_creator_count(self, store, make_record, kwargs):
        self._fill(store, make_record, CREATOR_DAILY_LIMIT, **kwargs)
        allowance = DuplicateDetectionService(store).can_create("u1", LAT, LNG, now=self.NOW)
        assert allowance.can_create
        assert allowance.recent_count == 0

    def test_markers_beyond_one_km_ignored(self, store, make_record):
        for i in range(CREATOR_DAILY_LIMIT):
            store.insert(make_record(
                f"Далёкая точка {i}", LAT + 1200 * DEG_PER_M, LNG,
                creator_id="u1", created_at=self.NOW - timedelta(hours=1),
            ))
        assert store.count_recent_by_creator("u1", LAT, LNG, 1000, self.NOW - timedelta(hours=24)) == 0
        assert DuplicateDetectionService(store).can_create("u1", LAT, LNG, now=self.NOW).can_create

    def test_store_failure_raises(self):
        class DownStore(BaseCatalogStore):
            def count_recent_by_creator(self, *args, **kwargs):
                raise ConnectionError("db down")

        with pytest.raises(DuplicationCheckFailed):
            DuplicateDetectionService(DownStore()).can_create("u1", LAT, LNG)
