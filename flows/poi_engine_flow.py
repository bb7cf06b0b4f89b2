from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from prefect import flow, get_run_logger
from prefect.runtime import flow_run  # type: ignore

from geoblog.poi_engine.ingest_flow import CrawlSummary, build_orchestrator


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _classify_intake(*, totals: Dict[str, int], failed_regions: List[str], error: Optional[str]) -> str:
    """
    Mutually exclusive, ordered classification:
      1) INTAKE_BROKEN             the run could not start, or a region failed
      2) INTAKE_SUCCESS            at least one marker inserted
      3) INTAKE_DISCOVERY_LIMITED  candidates fetched, none inserted
      4) INTAKE_ZERO_YIELD         nothing fetched

    Skipped regions (unresolvable boundary) are not failures.
    """
    if error or failed_regions:
        return "INTAKE_BROKEN"

    fetched = int(totals.get("total_fetched", 0) or 0)
    inserted = int(totals.get("total_inserted", 0) or 0)

    if inserted > 0:
        return "INTAKE_SUCCESS"
    if fetched > 0:
        return "INTAKE_DISCOVERY_LIMITED"
    return "INTAKE_ZERO_YIELD"


@flow(name="poi-engine", persist_result=False)
def poi_engine(regions: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Prefect flow wrapper for the POI crawler.

    Delegates to CrawlOrchestrator.run() and emits JSON log lines suitable for
    runbook checks. Never raises on a per-region failure.
    """
    load_dotenv()
    logger = get_run_logger()
    logger.info("POI engine flow started.")

    summary = CrawlSummary()
    error: Optional[str] = None
    try:
        orch = build_orchestrator(create_schema=_env_bool("POI_ENGINE_CREATE_SCHEMA", False))
        selected = None
        if regions:
            wanted = set(regions)
            selected = [r for r in orch.regions if r.key in wanted]
        summary = orch.run(selected)
    except Exception as e:
        error = f"{type(e).__name__}: {str(e)[:500]}"
        logger.error(json.dumps({"event": "poi_engine_run_error", "error": error}, sort_keys=True))

    for r in summary.regions:
        # quick scan line
        logger.info(f"[{r.region}] {r.status} fetched={r.fetched} inserted={r.inserted} rejected={r.rejected} seen={r.seen}")
        payload = {
            "event": "poi_engine_region_done",
            "region": r.region,
            "status": r.status,
            "fetched": r.fetched,
            "inserted": r.inserted,
            "rejected": r.rejected,
            "seen": r.seen,
            "existing": r.existing,
            "unresolved": r.unresolved,
            "conflicts": r.conflicts,
            "errors": r.errors,
        }
        if r.error:
            payload["error"] = r.error
        logger.info(json.dumps(payload, sort_keys=True))

    totals = {
        "total_regions": len(summary.regions),
        "total_fetched": summary.fetched,
        "total_inserted": summary.inserted,
        "total_records": summary.total_records,
    }
    classification = _classify_intake(totals=totals, failed_regions=summary.failed_regions, error=error)
    run_id = getattr(flow_run, "id", None)

    logger.info(json.dumps({
        "event": "poi_engine_run_complete",
        "run_id": str(run_id) if run_id else None,
        "intake_classification": classification,
        "skipped_regions": summary.skipped_regions,
        "failed_regions": summary.failed_regions,
        **totals,
    }, sort_keys=True))

    return {
        "run_id": str(run_id) if run_id else None,
        "intake_classification": classification,
        "totals": totals,
        "summary": summary.to_dict(),
        "error": error,
    }


if __name__ == "__main__":
    poi_engine()
