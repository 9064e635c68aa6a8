"""SQLAlchemy table definitions for persisted queue state."""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, PrimaryKeyConstraint, Table, Text

metadata = MetaData()

queue_index = Table(
    "queue_index",
    metadata,
    Column("scope", Text, nullable=False),
    Column("key", Text, nullable=False),
    Column("value", Integer, nullable=False, default=0),
    PrimaryKeyConstraint("scope", "key"),
)
