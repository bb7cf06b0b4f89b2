"""
Canonical identity keys for ingested candidates, and the seen-key store.

Key shape:
- ext_<external_id>                       when the source carries a stable id
- <category_code>_<lat:.6f>_<lon:.6f>     otherwise (~0.11 m precision)

Two distinct same-category objects closer than the coordinate precision share a
key; that's accepted for sources without stable ids.

The store is single-writer. Every newly admitted key rewrites the whole backing
document, so a crash loses at most the key being written.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Set

from .models import Candidate

logger = logging.getLogger(__name__)


class MemorySeenBackend:
    """Ephemeral backend (tests, dry runs)."""

    def __init__(self, initial: Iterable[str] = ()):
        self.saved: Set[str] = set(initial)
        self.save_calls = 0

    def load(self) -> Set[str]:
        return set(self.saved)

    def save(self, keys: Set[str]) -> None:
        self.saved = set(keys)
        self.save_calls += 1


class JsonFileSeenBackend:
    """
    JSON document backend.

    Accepts two historical shapes on load: a flat list, or {"ids": [...]}.
    Always writes the flat list.
    """

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Set[str]:
        if not self.path.exists():
            return set()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("seen store: couldn't read %s: %s", self.path, e)
            return set()

        if isinstance(data, list):
            return {str(k) for k in data}
        if isinstance(data, dict) and isinstance(data.get("ids"), list):
            return {str(k) for k in data["ids"]}
        logger.warning("seen store: unexpected document shape in %s; starting empty", self.path)
        return set()

    def save(self, keys: Set[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(sorted(keys), f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)


class IdentityResolver:
    def __init__(self, backend):
        self.backend = backend
        self._seen: Set[str] = set(backend.load())

    def __len__(self) -> int:
        return len(self._seen)

    @staticmethod
    def canonical_key(candidate: Candidate, category_code: Optional[str] = None) -> str:
        if candidate.external_id not in (None, ""):
            return f"ext_{candidate.external_id}"
        code = (category_code or candidate.category or "other").strip().lower() or "other"
        lat = float(candidate.latitude)
        lon = float(candidate.longitude)
        return f"{code}_{lat:.6f}_{lon:.6f}"

    def has_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        if key in self._seen:
            return
        self._seen.add(key)
        try:
            self.backend.save(self._seen)
        except OSError as e:
            # the in-memory set still holds the key for this run
            logger.warning("seen store: couldn't persist %s: %s", key, e)
