"""Object store backed by the database.

The reconciler only sees the ``ObjectStore`` protocol: get / list / create /
update by kind. ``SqlObjectStore`` implements it on SQLAlchemy Core with an
integer resource version per row, so concurrent writers cannot overwrite each
other's changes (``UPDATE ... WHERE resource_version = :rv``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Callable, Mapping, Protocol, TypeVar
from uuid import uuid4

from sqlalchemy import Table, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import AlreadyExistsError, NotFoundError, ResourceVersionConflict, StoreError
from .models import ClusterRole, CustomResourceDefinition, ObjectMeta, OwnerReference, ProviderRevision
from .schema import cluster_roles, custom_resource_definitions, provider_revisions

logger = logging.getLogger(__name__)

T = TypeVar("T", ProviderRevision, CustomResourceDefinition, ClusterRole)


class ObjectStore(Protocol):
    def get(self, kind: type[T], name: str) -> T: ...

    def list(self, kind: type[T]) -> list[T]: ...

    def create(self, obj: T) -> T: ...

    def update(self, obj: T) -> T: ...


@dataclass(frozen=True, slots=True)
class _Kind:
    name: str
    table: Table
    decode: Callable[[ObjectMeta, Mapping[str, Any]], Any]


_KINDS: dict[type, _Kind] = {
    ProviderRevision: _Kind("ProviderRevision", provider_revisions, ProviderRevision.from_document),
    CustomResourceDefinition: _Kind(
        "CustomResourceDefinition",
        custom_resource_definitions,
        CustomResourceDefinition.from_document,
    ),
    ClusterRole: _Kind("ClusterRole", cluster_roles, ClusterRole.from_document),
}


def _kind_for(kind: type) -> _Kind:
    try:
        return _KINDS[kind]
    except KeyError:
        raise TypeError(f"unsupported object kind: {kind.__name__}") from None


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _row_to_object(kind: _Kind, row: Mapping[str, Any]) -> Any:
    meta = ObjectMeta(
        name=row["name"],
        uid=row["uid"],
        resource_version=str(row["resource_version"]),
        labels=dict(row["labels"] or {}),
        owner_references=tuple(
            OwnerReference.from_document(ref) for ref in row["owner_references"] or ()
        ),
        deletion_timestamp=row["deletion_timestamp"],
    )
    return kind.decode(meta, row["document"] or {})


def _owner_documents(meta: ObjectMeta) -> list[dict[str, Any]]:
    return [ref.to_document() for ref in meta.owner_references]


class SqlObjectStore:
    """``ObjectStore`` on a SQLAlchemy sessionmaker."""

    def __init__(self, SessionLocal: sessionmaker[Session]) -> None:
        self._SessionLocal = SessionLocal

    def get(self, kind: type[T], name: str) -> T:
        k = _kind_for(kind)
        try:
            with self._SessionLocal() as session:
                row = session.execute(
                    select(k.table).where(k.table.c.name == name)
                ).mappings().first()
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot get {k.name} {name!r}") from exc
        if row is None:
            raise NotFoundError(k.name, name)
        return _row_to_object(k, row)

    def list(self, kind: type[T]) -> list[T]:
        k = _kind_for(kind)
        try:
            with self._SessionLocal() as session:
                rows = session.execute(
                    select(k.table).order_by(k.table.c.name)
                ).mappings().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot list {k.name}") from exc
        return [_row_to_object(k, row) for row in rows]

    def create(self, obj: T) -> T:
        k = _kind_for(type(obj))
        meta = obj.metadata
        if not meta.name:
            raise ValueError(f"{k.name} must have a name")
        uid = meta.uid or str(uuid4())
        now = utcnow()
        try:
            with self._SessionLocal.begin() as session:
                session.execute(
                    insert(k.table).values(
                        name=meta.name,
                        uid=uid,
                        resource_version=1,
                        labels=dict(meta.labels),
                        owner_references=_owner_documents(meta),
                        document=obj.to_document(),
                        created_at=now,
                        updated_at=now,
                        deletion_timestamp=meta.deletion_timestamp,
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError(k.name, meta.name) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot create {k.name} {meta.name!r}") from exc
        logger.debug("store.create kind=%s name=%s uid=%s", k.name, meta.name, uid)
        return replace(obj, metadata=replace(meta, uid=uid, resource_version="1"))

    def update(self, obj: T) -> T:
        """Replace the stored object.

        When ``obj`` carries a resource version the write only succeeds if the
        row still has that version; otherwise ``ResourceVersionConflict``.
        """
        k = _kind_for(type(obj))
        meta = obj.metadata
        stmt = update(k.table).where(k.table.c.name == meta.name)
        expected: int | None = None
        if meta.resource_version:
            try:
                expected = int(meta.resource_version)
            except ValueError:
                raise ResourceVersionConflict(k.name, meta.name, meta.resource_version) from None
            stmt = stmt.where(k.table.c.resource_version == expected)

        try:
            with self._SessionLocal.begin() as session:
                result = session.execute(
                    stmt.values(
                        resource_version=k.table.c.resource_version + 1,
                        labels=dict(meta.labels),
                        owner_references=_owner_documents(meta),
                        document=obj.to_document(),
                        updated_at=utcnow(),
                    )
                )
                if result.rowcount == 0:
                    exists = session.execute(
                        select(k.table.c.name).where(k.table.c.name == meta.name)
                    ).first()
                    if exists is None:
                        raise NotFoundError(k.name, meta.name)
                    raise ResourceVersionConflict(k.name, meta.name, meta.resource_version)
                row = session.execute(
                    select(k.table).where(k.table.c.name == meta.name)
                ).mappings().one()
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot update {k.name} {meta.name!r}") from exc
        logger.debug(
            "store.update kind=%s name=%s resource_version=%s",
            k.name,
            meta.name,
            row["resource_version"],
        )
        return _row_to_object(k, row)


__all__ = ["ObjectStore", "SqlObjectStore"]
