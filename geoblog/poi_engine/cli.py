# geoblog/poi_engine/cli.py
"""
Operator entry point.

  python -m geoblog.poi_engine.cli crawl [--region KEY ...] [--create-schema]
  python -m geoblog.poi_engine.cli progress
  python -m geoblog.poi_engine.cli reset
  python -m geoblog.poi_engine.cli check --lat 55.75 --lng 37.62 --title "Большой театр" [--category culture] [--creator ID]
  python -m geoblog.poi_engine.cli incomplete --lat 55.75 --lng 37.62 [--radius 500]

Exit codes: 0 ok, 1 run/lookup failure, 2 creation blocked (exact duplicate or creator limit).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import EngineSettings, load_regions
from .errors import DuplicationCheckFailed, PoiEngineError
from .models import RegionStatus
from .progress import ProgressStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="poi-engine")
    p.add_argument("--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl unfinished regions")
    crawl.add_argument("--region", action="append", default=None,
                       help="Region key to crawl (repeatable); default = every unfinished region")
    crawl.add_argument("--create-schema", action="store_true",
                       help="Create the map_markers table if it does not exist")

    sub.add_parser("progress", help="Show per-region status and statistics")
    sub.add_parser("reset", help="Forget completed regions (cached boundaries are kept)")

    check = sub.add_parser("check", help="Run the duplicate check for a proposed marker")
    check.add_argument("--lat", type=float, required=True)
    check.add_argument("--lng", type=float, required=True)
    check.add_argument("--title", required=True)
    check.add_argument("--category", default=None)
    check.add_argument("--exclude-id", type=int, default=None)
    check.add_argument("--radius", type=float, default=None, help="Search radius in meters")
    check.add_argument("--creator", default=None, help="Also apply the per-creator daily limit")

    inc = sub.add_parser("incomplete", help="List incomplete markers worth completing nearby")
    inc.add_argument("--lat", type=float, required=True)
    inc.add_argument("--lng", type=float, required=True)
    inc.add_argument("--category", default=None)
    inc.add_argument("--radius", type=float, default=500)
    inc.add_argument("--limit", type=int, default=5)
    return p.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def cmd_progress(settings: EngineSettings) -> int:
    progress = ProgressStore(settings.progress_path).load()
    regions = load_regions(settings.regions_file)
    marks = {
        RegionStatus.COMPLETED: "[x]",
        RegionStatus.IN_PROGRESS: "[~]",
        RegionStatus.NOT_STARTED: "[ ]",
    }
    for r in regions:
        status = progress.status_of(r.key)
        print(f"{marks[status]} {r.key:<20} {r.name} ({r.subject or '-'})")
    stats = progress.statistics
    print(
        f"regions: {stats.get('completed_regions', 0)}/{len(regions)} completed; "
        f"records: {stats.get('total_records', 0)}"
    )
    return 0


def cmd_reset(settings: EngineSettings) -> int:
    ProgressStore(settings.progress_path).reset()
    print("progress reset")
    return 0


def cmd_crawl(settings: EngineSettings, region_keys: Optional[List[str]], create_schema: bool) -> int:
    from .ingest_flow import build_orchestrator

    orch = build_orchestrator(settings, create_schema=create_schema)
    regions = None
    if region_keys:
        wanted = set(region_keys)
        regions = [r for r in orch.regions if r.key in wanted]
        unknown = wanted - {r.key for r in regions}
        if unknown:
            logger.error("unknown region keys: %s", ", ".join(sorted(unknown)))
            return 1

    summary = orch.run(regions)
    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2, sort_keys=True))
    return 1 if summary.failed_regions else 0


def _store(settings: EngineSettings):
    from geoblog.db import get_engine

    from .store import SqlCatalogStore

    return SqlCatalogStore(get_engine())


def cmd_check(settings: EngineSettings, args: argparse.Namespace) -> int:
    from .duplicates import DuplicateDetectionService

    service = DuplicateDetectionService(_store(settings), radius_m=settings.duplicate_radius_m)
    allowance = None
    try:
        report = service.check(
            args.lat, args.lng, args.title,
            category=args.category, exclude_id=args.exclude_id, radius_m=args.radius,
        )
        if args.creator:
            allowance = service.can_create(args.creator, args.lat, args.lng)
    except DuplicationCheckFailed as e:
        logger.error("%s", e)
        return 1

    out = report.to_dict()
    if allowance is not None:
        out["creator_limit"] = allowance.to_dict()
    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    blocked = report.is_blocked or (allowance is not None and not allowance.can_create)
    return 2 if blocked else 0


def cmd_incomplete(settings: EngineSettings, args: argparse.Namespace) -> int:
    from .duplicates import DuplicateDetectionService

    service = DuplicateDetectionService(_store(settings), radius_m=settings.duplicate_radius_m)
    try:
        rows = service.nearby_incomplete(
            args.lat, args.lng, category=args.category, radius_m=args.radius, limit=args.limit,
        )
    except DuplicationCheckFailed as e:
        logger.error("%s", e)
        return 1
    for row in rows:
        r = row.record
        print(f"{r.id:>8} {r.completeness_score:>3}% {int(row.distance_m + 0.5):>5} m  {r.title}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    _configure_logging(args.verbose)
    settings = EngineSettings.from_env()

    try:
        if args.command == "progress":
            return cmd_progress(settings)
        if args.command == "reset":
            return cmd_reset(settings)
        if args.command == "crawl":
            return cmd_crawl(settings, args.region, args.create_schema)
        if args.command == "check":
            return cmd_check(settings, args)
        if args.command == "incomplete":
            return cmd_incomplete(settings, args)
    except PoiEngineError as e:
        logger.error("%s", e)
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
