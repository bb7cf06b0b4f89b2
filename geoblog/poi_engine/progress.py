"""
Crawl progress document.

Shape on disk (JSON):

  {
    "completed": ["moscow", ...],
    "in_progress": "kazan" | null,
    "statistics": {"total_regions": 9, "completed_regions": 1, "total_records": 1234},
    ("total_cities", "completed_cities", "total_markers" are read as the same counters)
    "bbox": {"moscow": [south, west, north, east], ...}
  }

Missing or corrupt files load as a fresh document. Writes are whole-document
replacements (tmp file + rename).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .models import CrawlProgress

logger = logging.getLogger(__name__)

# statistics names written by the earlier crawler
_LEGACY_STAT_KEYS = {
    "total_regions": "total_cities",
    "completed_regions": "completed_cities",
    "total_records": "total_markers",
}


def _coerce(data: Any) -> CrawlProgress:
    if not isinstance(data, dict):
        return CrawlProgress()

    progress = CrawlProgress()

    completed = data.get("completed")
    if isinstance(completed, list):
        progress.completed = [str(k) for k in completed]

    in_progress = data.get("in_progress", data.get("inProgress"))
    progress.in_progress = str(in_progress) if in_progress else None

    stats = data.get("statistics")
    if isinstance(stats, dict):
        for key in progress.statistics:
            try:
                progress.statistics[key] = int(stats.get(key, stats.get(_LEGACY_STAT_KEYS[key])) or 0)
            except (TypeError, ValueError):
                pass

    bbox = data.get("bbox")
    if isinstance(bbox, dict):
        for key, values in bbox.items():
            if isinstance(values, list) and len(values) == 4:
                try:
                    progress.bbox[str(key)] = [float(v) for v in values]
                except (TypeError, ValueError):
                    logger.warning("progress: dropping malformed bbox for %s", key)
    return progress


class ProgressStore:
    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> CrawlProgress:
        if not self.path.exists():
            return CrawlProgress()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("progress: couldn't read %s (%s); starting fresh", self.path, e)
            return CrawlProgress()
        return _coerce(data)

    def save(self, progress: CrawlProgress) -> None:
        doc: Dict[str, Any] = {
            "completed": list(progress.completed),
            "in_progress": progress.in_progress,
            "statistics": dict(progress.statistics),
            "bbox": {k: list(v) for k, v in progress.bbox.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(doc, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def reset(self) -> CrawlProgress:
        """Forget completed regions and the in-progress marker. Cached boundaries are kept."""
        old = self.load()
        fresh = CrawlProgress(bbox=dict(old.bbox))
        fresh.statistics["total_regions"] = old.statistics.get("total_regions", 0)
        self.save(fresh)
        logger.info("progress reset (%d cached boundaries kept)", len(fresh.bbox))
        return fresh
