"""Reconcile the ClusterRoles of one provider revision.

Each call reads everything fresh from the store and walks the same steps:

    get revision -> deleted? -> list CRDs -> filter by controller UID
        -> render ClusterRoles -> apply each, in order

and maps the outcome to a ``Result`` (stop, or requeue after the short wait)
or raises ``ReconcileError``. No state survives between calls, so the same
revision can be reconciled again at any time; callers serialize calls per
revision name.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .applicator import Applicator, UpdatingApplicator, must_be_controllable_by
from .errors import NotControllableError, NotFoundError, ReconcileCancelled, ReconcileError, StoreError
from .events import REASON_APPLY_ROLES, TYPE_NORMAL, TYPE_WARNING, EventRecorder, NopEventRecorder
from .models import (
    PROVIDER_REVISION_GVK,
    ClusterRole,
    CustomResourceDefinition,
    ProviderRevision,
    as_controller,
    typed_reference_to,
    with_owner_references,
)
from .ownership import filter_controlled
from .roles import ClusterRoleRenderer, default_renderer
from .settings import Settings
from .store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_SHORT_WAIT = 30.0

ERR_GET_PR = "cannot get ProviderRevision"
ERR_LIST_CRDS = "cannot list CustomResourceDefinitions"
ERR_APPLY_ROLE = "cannot apply ClusterRole"


@dataclass(frozen=True, slots=True)
class Result:
    """What the caller should do next with this revision's key.

    ``Result()`` means done: nothing to do until something changes.
    """

    requeue: bool = False
    requeue_after: float = 0.0


class CancelScope:
    """Cancellation token for one reconcile call.

    Cancelled explicitly via ``cancel()`` or implicitly once ``timeout``
    seconds have passed since it was created.
    """

    def __init__(self, *, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise ReconcileCancelled(f"reconcile cancelled before {stage}")


@dataclass(slots=True)
class ReconcilerConfig:
    """Collaborators and tunables for a ``Reconciler``.

    Attributes:
        store: Where revisions, CRDs and ClusterRoles are read.
        applicator: How each rendered ClusterRole is written; defaults to an
            ``UpdatingApplicator`` over ``store``.
        renderer: Maps a revision and its CRDs to desired ClusterRoles.
        recorder: Receives events about the revision.
        short_wait: Seconds to wait before retrying after a list or apply
            failure.
    """

    store: ObjectStore
    applicator: Applicator | None = None
    renderer: ClusterRoleRenderer = default_renderer
    recorder: EventRecorder = field(default_factory=NopEventRecorder)
    short_wait: float = DEFAULT_SHORT_WAIT

    @classmethod
    def from_settings(cls, settings: Settings, *, store: ObjectStore, **overrides: Any) -> "ReconcilerConfig":
        overrides.setdefault("short_wait", float(settings.short_wait_seconds))
        return cls(store=store, **overrides)


def _stamp_controller(role: ClusterRole, revision: ProviderRevision) -> ClusterRole:
    ref = as_controller(typed_reference_to(revision, PROVIDER_REVISION_GVK))
    others = [r for r in role.metadata.owner_references if not r.controller]
    return with_owner_references(role, [ref, *others])


class Reconciler:
    """Converge the ClusterRoles of provider revisions."""

    def __init__(self, config: ReconcilerConfig) -> None:
        if config.short_wait <= 0:
            raise ValueError("short_wait must be positive")
        self._store = config.store
        self._applicator = config.applicator or UpdatingApplicator(config.store)
        self._renderer = config.renderer
        self._record = config.recorder
        self._short_wait = float(config.short_wait)

    @property
    def short_wait(self) -> float:
        return self._short_wait

    def reconcile(self, name: str, *, cancel: CancelScope | None = None) -> Result:
        scope = cancel or CancelScope()
        logger.debug("reconcile.start revision=%s", name)

        scope.raise_if_cancelled("get")
        try:
            revision = self._store.get(ProviderRevision, name)
        except NotFoundError:
            # Gone; nothing left to converge.
            logger.debug("reconcile.not_found revision=%s", name)
            return Result()
        except StoreError as exc:
            logger.debug("reconcile.get_failed revision=%s error=%s", name, exc)
            raise ReconcileError(ERR_GET_PR) from exc

        if revision.deleted:
            logger.debug("reconcile.deleted revision=%s", name)
            return Result()

        scope.raise_if_cancelled("list")
        try:
            crds = self._store.list(CustomResourceDefinition)
        except StoreError as exc:
            logger.debug("reconcile.list_failed revision=%s error=%s", name, exc)
            self._record.event(revision, TYPE_WARNING, REASON_APPLY_ROLES, f"{ERR_LIST_CRDS}: {exc}")
            return Result(requeue_after=self._short_wait)

        owned = filter_controlled(crds, revision.uid)
        roles = self._renderer.render_cluster_roles(revision, owned)

        for role in roles:
            scope.raise_if_cancelled("apply")
            desired = _stamp_controller(role, revision)
            try:
                self._applicator.apply(desired, must_be_controllable_by(revision.uid))
            except NotControllableError as exc:
                # Another revision controls this role. Retrying cannot change
                # that; it resolves when the other revision's role goes away.
                logger.info(
                    "reconcile.not_controllable revision=%s cluster_role=%s controller_uid=%s",
                    name,
                    desired.metadata.name,
                    exc.controller_uid,
                )
                self._record.event(revision, TYPE_WARNING, REASON_APPLY_ROLES, str(exc))
                continue
            except StoreError as exc:
                logger.debug(
                    "reconcile.apply_failed revision=%s cluster_role=%s error=%s",
                    name,
                    desired.metadata.name,
                    exc,
                )
                self._record.event(revision, TYPE_WARNING, REASON_APPLY_ROLES, f"{ERR_APPLY_ROLE}: {exc}")
                return Result(requeue_after=self._short_wait)

        logger.debug("reconcile.applied revision=%s cluster_roles=%s", name, len(roles))
        self._record.event(revision, TYPE_NORMAL, REASON_APPLY_ROLES, "Applied RBAC ClusterRoles")
        return Result()


__all__ = [
    "CancelScope",
    "DEFAULT_SHORT_WAIT",
    "ERR_APPLY_ROLE",
    "ERR_GET_PR",
    "ERR_LIST_CRDS",
    "Reconciler",
    "ReconcilerConfig",
    "Result",
]
