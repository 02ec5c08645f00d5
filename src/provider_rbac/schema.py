"""SQLAlchemy Core schema for the object store.

Each table stores one kind. ``document`` holds the kind-specific body as JSON;
``resource_version`` is bumped on every write and guards updates.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, MetaData, String, Table

metadata = MetaData()

TS = DateTime(timezone=True)


def _object_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("name", String(253), primary_key=True),
        Column("uid", String(64), nullable=False, unique=True),
        Column("resource_version", Integer, nullable=False, server_default="1"),
        Column("labels", JSON, nullable=False),
        Column("owner_references", JSON, nullable=False),
        Column("document", JSON, nullable=False),
        Column("created_at", TS, nullable=False),
        Column("updated_at", TS, nullable=False),
        Column("deletion_timestamp", TS, nullable=True),
    )


provider_revisions = _object_table("provider_revisions")
custom_resource_definitions = _object_table("custom_resource_definitions")
cluster_roles = _object_table("cluster_roles")

REQUIRED_TABLES = (
    "provider_revisions",
    "custom_resource_definitions",
    "cluster_roles",
)

__all__ = [
    "REQUIRED_TABLES",
    "cluster_roles",
    "custom_resource_definitions",
    "metadata",
    "provider_revisions",
]
