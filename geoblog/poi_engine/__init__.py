"""
POI engine package.

Responsible for:
- Ingesting points-of-interest and events for named regions from open geodata
  sources (Overpass / OSM, curated event listings).
- Filtering low-quality candidates and assigning them stable identity keys so a
  real-world object is never ingested twice.
- Writing admitted candidates into the `map_markers` catalog.
- Answering "does this new marker duplicate something already stored?" for the
  interactive create flow (see duplicates.py).
"""
