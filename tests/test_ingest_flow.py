"""
CrawlOrchestrator end-to-end with stub collaborators and a sqlite catalog.
"""
import copy

import pytest

from geoblog.poi_engine.config import EngineSettings
from geoblog.poi_engine.errors import BoundaryNotFound
from geoblog.poi_engine.identity import IdentityResolver, MemorySeenBackend
from geoblog.poi_engine.ingest_flow import (
    CrawlOrchestrator,
    build_record,
    make_hashtags,
    pick_subkind,
)
from geoblog.poi_engine.models import BoundingBox, Candidate, CategoryTemplate, Coordinates, Region, RegionStatus
from geoblog.poi_engine.progress import ProgressStore
from geoblog.poi_engine.sources.base import BaseCandidateSource

MUSEUMS = CategoryTemplate(
    key="museums", label="Музеи", code="culture",
    query="({{bbox}});", subkinds=("художественный музей", "галерея"),
)
PARKS = CategoryTemplate(key="parks", label="Парки", code="nature", query="({{bbox}});")

MOSCOW = Region(key="moscow", name="Москва", country="Россия")
KAZAN = Region(key="kazan", name="Казань", country="Россия")
NOWHERE = Region(key="nowhere", name="Нигде", country="Россия")

MOSCOW_BBOX = BoundingBox(south=55.49, west=37.31, north=55.96, east=37.94)


def museum(external_id="101", name="Третьяковская галерея", lat=55.7414, lng=37.6208, **kwargs):
    kwargs.setdefault("tags", {"tourism": "museum"})
    return Candidate(external_id=external_id, name=name, latitude=lat, longitude=lng, category="culture", **kwargs)


class StubBoundaries:
    def __init__(self, boxes=None, error=None):
        self.boxes = dict(boxes or {})
        self.error = error
        self.cache = {}
        self.calls = []

    def resolve(self, name):
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        if name in self.cache:
            return self.cache[name]
        if name not in self.boxes:
            raise BoundaryNotFound(name)
        return self.boxes[name]


class StubSource(BaseCandidateSource):
    def __init__(self, by_category=None, error=None):
        self.by_category = by_category or {}
        self.error = error
        self.calls = []

    def fetch(self, category, bbox, region=None):
        self.calls.append((category.key, region.key if region else None))
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.by_category.get(category.key, []))


class StubGeocoder:
    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []

    def resolve(self, address):
        self.calls.append(address)
        return self.answers.get(address)


@pytest.fixture
def make_orchestrator(store, settings):
    def _make(
        candidates=None,
        categories=(MUSEUMS,),
        regions=(MOSCOW,),
        boundaries=None,
        source=None,
        geocoder=None,
        seen=None,
        sleep=None,
        engine_settings=None,
    ):
        return CrawlOrchestrator(
            settings=engine_settings or settings,
            categories=list(categories),
            regions=list(regions),
            boundaries=boundaries or StubBoundaries({MOSCOW.query_name: MOSCOW_BBOX}),
            sources={"overpass": source or StubSource(candidates or {})},
            geocoder=geocoder or StubGeocoder(),
            store=store,
            identity=IdentityResolver(seen if seen is not None else MemorySeenBackend()),
            progress_store=ProgressStore(settings.progress_path),
            sleep=sleep or (lambda s: None),
        )

    return _make


class TestAdmission:

    def test_same_external_id_twice_inserts_once(self, make_orchestrator, store):
        orch = make_orchestrator({"museums": [museum(), museum()]})

        summary = orch.run()

        assert store.count_all() == 1
        assert summary.inserted == 1
        assert summary.regions[0].seen == 1

    def test_seen_keys_survive_a_reset(self, make_orchestrator, store):
        backend = MemorySeenBackend()
        orch = make_orchestrator({"museums": [museum()]}, seen=backend)
        orch.run()

        orch.reset_progress()
        again = make_orchestrator({"museums": [museum()]}, seen=backend).run()

        assert store.count_all() == 1
        assert again.regions[0].seen == 1
        assert backend.saved == {"ext_101"}

    @pytest.mark.parametrize("name", ["Кафе", "", "???", "12345", "кафе ресторан"])
    def test_low_quality_titles_rejected(self, make_orchestrator, store, name):
        summary = make_orchestrator({"museums": [museum(name=name)]}).run()
        assert store.count_all() == 0
        assert summary.regions[0].rejected == 1

    def test_out_of_range_coordinates_rejected(self, make_orchestrator, store):
        summary = make_orchestrator({"museums": [museum(lat=95.0)]}).run()
        assert store.count_all() == 0
        assert summary.regions[0].rejected == 1

    def test_missing_coordinates_geocoded(self, make_orchestrator, store):
        address = "ул. Лаврушинский переулок, 10, Москва"
        geocoder = StubGeocoder({address: Coordinates(55.7414, 37.6208)})
        orch = make_orchestrator(
            {"museums": [museum(lat=None, lng=None, address=address)]},
            geocoder=geocoder,
        )

        orch.run()

        rec = store.get(1)
        assert (rec.latitude, rec.longitude) == (55.7414, 37.6208)
        assert geocoder.calls == [address]

    def test_unresolved_address_skipped_and_not_marked_seen(self, make_orchestrator, store):
        backend = MemorySeenBackend()
        orch = make_orchestrator(
            {"museums": [museum(lat=None, lng=None, address="ул. Неизвестная")]},
            seen=backend,
        )
        summary = orch.run()
        assert store.count_all() == 0
        assert summary.regions[0].unresolved == 1
        assert backend.saved == set()

    def test_no_address_no_geocoder_call(self, make_orchestrator):
        geocoder = StubGeocoder()
        summary = make_orchestrator({"museums": [museum(lat=None, lng=None)]}, geocoder=geocoder).run()
        assert geocoder.calls == []
        assert summary.regions[0].unresolved == 1

    def test_seen_external_id_skips_geocoding(self, make_orchestrator):
        geocoder = StubGeocoder()
        orch = make_orchestrator(
            {"museums": [museum(lat=None, lng=None, address="somewhere")]},
            geocoder=geocoder,
            seen=MemorySeenBackend(["ext_101"]),
        )
        orch.run()
        assert geocoder.calls == []

    def test_keyless_candidate_uses_coordinate_key(self, make_orchestrator, store):
        backend = MemorySeenBackend()
        make_orchestrator({"museums": [museum(external_id=None)]}, seen=backend).run()
        assert backend.saved == {"culture_55.741400_37.620800"}
        assert store.get(1).identity_key == "culture_55.741400_37.620800"

    def test_existing_record_marked_seen_not_inserted(self, make_orchestrator, store, make_record):
        store.insert(make_record("Третьяковская галерея", 55.7415, 37.6207))
        backend = MemorySeenBackend()

        summary = make_orchestrator({"museums": [museum()]}, seen=backend).run()

        assert store.count_all() == 1
        assert summary.regions[0].existing == 1
        assert backend.saved == {"ext_101"}

    def test_unique_conflict_counts_and_marks_seen(self, make_orchestrator, store, make_record):
        # stored elsewhere under the same identity key, so exists_near misses it
        store.insert(make_record("Старое название", 10.0, 10.0, identity_key="ext_101"))
        backend = MemorySeenBackend()

        summary = make_orchestrator({"museums": [museum()]}, seen=backend).run()

        assert summary.regions[0].conflicts == 1
        assert backend.saved == {"ext_101"}

    @pytest.mark.parametrize("name", ["без  названия", '"кафе   ресторан"', "  Кафе\t", "парк \n сквер"])
    def test_quality_gate_runs_on_the_sanitized_title(self, make_orchestrator, store, name):
        summary = make_orchestrator({"museums": [museum(name=name)]}).run()
        assert store.count_all() == 0
        assert summary.regions[0].rejected == 1

    def test_title_is_sanitized(self, make_orchestrator, store):
        make_orchestrator({"museums": [museum(name="  Третьяковская    галерея ")]}).run()
        assert store.get(1).title == "Третьяковская галерея"


class TestRecordContent:

    def test_built_record(self, make_orchestrator, store):
        make_orchestrator({"museums": [museum(osm_type="node", address="ул. Лаврушинский переулок, 10")]}).run()

        rec = store.get(1)
        assert rec.category == "culture"
        assert rec.subcategory == "музей"
        assert rec.source == "openstreetmap"
        assert rec.hashtags == ["москва", "музеи", "третьяковская", "галерея"]
        assert rec.metadata["osm_id"] == "101"
        assert rec.metadata["osm_type"] == "node"
        assert rec.metadata["needs_completion"] is True
        assert rec.needs_completion
        assert 0 < rec.completeness_score < 80

    def test_pick_subkind(self):
        assert pick_subkind({"amenity": "cafe"}, MUSEUMS) == "кафе"
        assert pick_subkind({"historic": "memorial"}, MUSEUMS) == "историческое место"
        assert pick_subkind({}, MUSEUMS) == "художественный музей"
        assert pick_subkind({}, PARKS) is None

    def test_make_hashtags(self):
        assert make_hashtags("Ростов Великий", "Парки", "Парк Победы и Славы") == [
            "ростоввеликий", "парки", "парк", "победы",
        ]
        # duplicates collapse
        assert make_hashtags("Музеи", "Музеи", "Музеи") == ["музеи"]

    def test_event_metadata(self):
        events = CategoryTemplate(key="events", label="События", code="event", query="", source="events")
        c = Candidate(
            external_id=None, name="Сабантуй", latitude=55.8, longitude=49.1, category="event",
            extra={"event_type": "festival", "description": "Праздник", "start_datetime": "2026-06-20T10:00:00+03:00"},
        )
        rec = build_record(c, "Сабантуй", events, KAZAN, "event_55.800000_49.100000")
        assert rec.source == "event_listing"
        assert rec.description == "Праздник"
        assert rec.metadata["event_type"] == "festival"
        assert "osm_id" not in rec.metadata


class TestRegionFlow:

    def test_boundary_failure_skips_region_and_continues(self, make_orchestrator, store):
        orch = make_orchestrator({"museums": [museum()]}, regions=(NOWHERE, MOSCOW))

        summary = orch.run()

        assert summary.skipped_regions == ["nowhere"]
        assert [r.status for r in summary.regions] == ["skipped", RegionStatus.COMPLETED]
        assert orch.status_of("nowhere") == RegionStatus.NOT_STARTED
        assert orch.status_of("moscow") == RegionStatus.COMPLETED
        assert store.count_all() == 1

    def test_crash_clears_in_progress(self, make_orchestrator, settings):
        orch = make_orchestrator(boundaries=StubBoundaries(error=RuntimeError("boom")))

        summary = orch.run()

        progress = ProgressStore(settings.progress_path).load()
        assert summary.failed_regions == ["moscow"]
        assert progress.in_progress is None
        assert progress.completed == []

    def test_interrupt_still_clears_in_progress(self, make_orchestrator, settings):
        orch = make_orchestrator(boundaries=StubBoundaries(error=KeyboardInterrupt()))
        with pytest.raises(KeyboardInterrupt):
            orch.run()
        assert ProgressStore(settings.progress_path).load().in_progress is None

    def test_completed_regions_not_recrawled(self, make_orchestrator):
        source = StubSource({"museums": [museum()]})
        orch = make_orchestrator(source=source)
        orch.run()
        second = orch.run()

        assert len(source.calls) == 1
        assert second.already_completed == ["moscow"]
        assert second.regions == []

    def test_progress_document(self, make_orchestrator, settings):
        make_orchestrator({"museums": [museum()]}, categories=(MUSEUMS, PARKS)).run()

        progress = ProgressStore(settings.progress_path).load()
        assert progress.completed == ["moscow"]
        assert progress.bbox["moscow"] == MOSCOW_BBOX.as_list()
        assert progress.statistics == {"total_regions": 1, "completed_regions": 1, "total_records": 1}

    def test_cached_bbox_reused(self, make_orchestrator, settings):
        boundaries = StubBoundaries()  # would fail for every name
        progress_store = ProgressStore(settings.progress_path)
        progress = progress_store.load()
        progress.bbox["moscow"] = MOSCOW_BBOX.as_list()
        progress_store.save(progress)

        summary = make_orchestrator({"museums": [museum()]}, boundaries=boundaries).run()

        assert summary.regions[0].status == RegionStatus.COMPLETED

    def test_source_exception_isolated_to_category(self, make_orchestrator):
        summary = make_orchestrator(source=StubSource(error=ValueError("bad payload"))).run()
        assert summary.regions[0].status == RegionStatus.COMPLETED
        assert summary.regions[0].errors == 1

    def test_unknown_source_counts_error(self, make_orchestrator):
        events = CategoryTemplate(key="events", label="События", code="event", query="", source="events")
        summary = make_orchestrator(categories=(events,)).run()
        assert summary.regions[0].errors == 1

    def test_region_passed_to_source(self, make_orchestrator):
        source = StubSource()
        make_orchestrator(source=source).run()
        assert source.calls == [("museums", "moscow")]

    def test_list_regions(self, make_orchestrator):
        orch = make_orchestrator(regions=(MOSCOW, KAZAN))
        orch.crawl_region(MOSCOW)
        assert [(r.key, s) for r, s in orch.list_regions()] == [
            ("moscow", RegionStatus.COMPLETED),
            ("kazan", RegionStatus.NOT_STARTED),
        ]


class TestPacing:

    def test_delays(self, make_orchestrator, settings):
        slept = []
        paced = EngineSettings(delay_ms=1000, record_delay_ms=500, state_dir=settings.state_dir)
        make_orchestrator(
            {"museums": [museum("1", "Третьяковская галерея"), museum("2", "Пушкинский музей", lat=55.747)]},
            categories=(MUSEUMS, PARKS),
            sleep=slept.append,
            engine_settings=paced,
        ).run()

        # two inserts, then one inter-category pause
        assert slept == [0.5, 0.5, 1.0]
