"""
Candidate source abstraction.

A source turns (category template, bounding box) into Candidate objects.

Contract:
- fetch() never raises on transport / parse failure; it logs and returns [].
- Candidate.name is "" when the source has no usable name (never a placeholder).
- Candidate coordinates may be None; the orchestrator geocodes from the address.
"""

from __future__ import annotations

from typing import List, Optional

from ..models import BoundingBox, Candidate, CategoryTemplate, Region


class BaseCandidateSource:
    """Base interface for candidate sources."""

    name: str = "base"

    def fetch(
        self,
        category: CategoryTemplate,
        bbox: BoundingBox,
        region: Optional[Region] = None,
    ) -> List[Candidate]:
        """
        Return candidates of `category` inside `bbox`.

        Arguments:
          category: the template being crawled (query text, internal code).
          bbox:     region boundary, south/west/north/east.
          region:   the region being crawled, for sources keyed by region.

        Returns:
          list of Candidate, possibly empty.
        """
        raise NotImplementedError("BaseCandidateSource.fetch() must be implemented by subclasses")
