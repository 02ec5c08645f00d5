"""Exceptions raised by the object store, the applicator and the reconciler."""

from __future__ import annotations


class StoreError(Exception):
    """Any failure talking to the object store."""


class NotFoundError(StoreError):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} {name!r} not found")
        self.kind = kind
        self.name = name


class AlreadyExistsError(StoreError):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} {name!r} already exists")
        self.kind = kind
        self.name = name


class ResourceVersionConflict(StoreError):
    """The object changed since it was read; the write was rejected."""

    def __init__(self, kind: str, name: str, resource_version: str) -> None:
        super().__init__(
            f"{kind} {name!r} was modified (resource version {resource_version!r} is stale)"
        )
        self.kind = kind
        self.name = name
        self.resource_version = resource_version


class NotControllableError(Exception):
    """The existing object is controlled by someone else.

    Not a ``StoreError``: it is an expected outcome of an apply, not an
    infrastructure failure.
    """

    def __init__(self, name: str, uid: str, controller_uid: str) -> None:
        super().__init__(
            f"existing object {name!r} is not controlled by UID {uid!r} "
            f"(controller UID {controller_uid!r})"
        )
        self.name = name
        self.uid = uid
        self.controller_uid = controller_uid


class ReconcileError(Exception):
    """A reconcile stage failed; the store error is kept on ``__cause__``."""


class ReconcileCancelled(Exception):
    """The caller cancelled the invocation or its deadline passed."""


__all__ = [
    "AlreadyExistsError",
    "NotControllableError",
    "NotFoundError",
    "ReconcileCancelled",
    "ReconcileError",
    "ResourceVersionConflict",
    "StoreError",
]
