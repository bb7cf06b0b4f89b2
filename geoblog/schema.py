from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, Float, Index, Integer, String, Text, TIMESTAMP,
    UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class MapMarker(Base):
    __tablename__ = "map_markers"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=False, server_default="")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    category = Column(String(64), nullable=False, server_default="other")
    subcategory = Column(String(128))
    address = Column(Text)
    hashtags = Column(JsonColumn)

    completeness_score = Column(Integer, nullable=False, server_default="0")
    needs_completion = Column(Boolean, nullable=False, server_default="1")
    is_active = Column(Boolean, nullable=False, server_default="1")

    creator_id = Column(String(64))
    source = Column(String(64))  # openstreetmap | event_listing | user
    # canonical identity key for ingested rows; NULL for interactively created markers
    identity_key = Column(String(128))
    meta = Column("metadata", JsonColumn)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_map_markers_lat_lng", "latitude", "longitude"),
        Index("ix_map_markers_category", "category"),
        UniqueConstraint("identity_key", name="uq_map_markers_identity_key"),
    )
