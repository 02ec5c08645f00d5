"""Create-or-update of ClusterRoles with a controller check on the stored copy."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Protocol, Sequence

from .errors import NotControllableError, NotFoundError
from .models import ClusterRole, OwnerReference
from .store import ObjectStore

logger = logging.getLogger(__name__)

# Called with (current, desired) before an existing object is overwritten.
# Raising aborts the apply without mutating the store.
ApplyOption = Callable[[ClusterRole, ClusterRole], None]


class Applicator(Protocol):
    def apply(self, obj: ClusterRole, *options: ApplyOption) -> None: ...


class ApplyFn:
    """Adapt a plain function to the ``Applicator`` protocol."""

    def __init__(self, fn: Callable[..., None]) -> None:
        self._fn = fn

    def apply(self, obj: ClusterRole, *options: ApplyOption) -> None:
        self._fn(obj, *options)


def must_be_controllable_by(uid: str) -> ApplyOption:
    """Refuse to overwrite an object whose controller is not ``uid``.

    An existing object with no controller passes the check and is adopted by
    the write that follows; its other owner references are kept.
    """

    def _check(current: ClusterRole, _desired: ClusterRole) -> None:
        for ref in current.metadata.owner_references:
            if ref.controller and ref.uid != uid:
                raise NotControllableError(current.metadata.name, uid, ref.uid)

    return _check


def _merge_owner_references(
    current: Sequence[OwnerReference],
    desired: Sequence[OwnerReference],
) -> tuple[OwnerReference, ...]:
    # Desired references win; non-controller owners already on the stored
    # object are carried over unless desired names the same UID.
    uids = {ref.uid for ref in desired}
    kept = [ref for ref in current if not ref.controller and ref.uid not in uids]
    return (*desired, *kept)


def _unchanged(current: ClusterRole, desired: ClusterRole) -> bool:
    return (
        current.rules == desired.rules
        and dict(current.metadata.labels) == dict(desired.metadata.labels)
        and current.metadata.owner_references == desired.metadata.owner_references
    )


class UpdatingApplicator:
    """Apply by reading the stored object, then creating or updating it.

    An object that already matches is left alone, so re-applying does not
    write. Otherwise the update carries the resource version that was just
    read, so a write racing with another writer fails with
    ``ResourceVersionConflict`` instead of silently replacing their change.
    """

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def apply(self, obj: ClusterRole, *options: ApplyOption) -> None:
        name = obj.metadata.name
        try:
            current = self._store.get(ClusterRole, name)
        except NotFoundError:
            self._store.create(obj)
            logger.debug("applicator.create name=%s", name)
            return

        for option in options:
            option(current, obj)

        desired = replace(
            obj,
            metadata=replace(
                obj.metadata,
                uid=current.metadata.uid,
                resource_version=current.metadata.resource_version,
                owner_references=_merge_owner_references(
                    current.metadata.owner_references,
                    obj.metadata.owner_references,
                ),
            ),
        )
        if _unchanged(current, desired):
            logger.debug("applicator.unchanged name=%s", name)
            return

        self._store.update(desired)
        logger.debug("applicator.update name=%s", name)


__all__ = ["Applicator", "ApplyFn", "ApplyOption", "UpdatingApplicator", "must_be_controllable_by"]
