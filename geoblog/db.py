"""
geoblog.db

Single source of truth for database connectivity.

Contracts this module MUST provide (used across the repo):
- get_engine() helper (lazily created from DATABASE_URL)
- make_engine(url) for callers that bring their own URL (tests, scripts)

Notes:
- DATABASE_URL is expected to be provided via environment (.env is loaded by the CLI / flow).
- We normalize common scheme/driver variants to reduce footguns.
- Unlike older code, importing this module never touches the database.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


def normalize_database_url(raw: str) -> str:
    """
    Normalize DATABASE_URL variants to something SQLAlchemy can reliably use.

    We prefer psycopg2 for maximum compatibility with existing deps.

    Normalizations:
    - postgres://  -> postgresql://
    - postgresql+psycopg:// -> postgresql+psycopg2://
    """
    url = (raw or "").strip()

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]

    # If someone set psycopg3 dialect, normalize to psycopg2 dialect.
    if url.startswith("postgresql+psycopg://"):
        url = "postgresql+psycopg2://" + url[len("postgresql+psycopg://") :]

    return url


def make_engine(url: str) -> Engine:
    return create_engine(normalize_database_url(url), future=True)


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine, creating it on first use."""
    global _engine
    if _engine is None:
        raw = os.environ.get("DATABASE_URL", "")
        if not raw:
            # Keep this loud and explicit: the crawler cannot run without a catalog.
            raise RuntimeError(
                "DATABASE_URL is not set in environment. "
                "Load .env (or equivalent) before running the POI engine."
            )
        _engine = make_engine(raw)
    return _engine

