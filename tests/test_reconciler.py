from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
from helpers import controller_ref, make_crd, make_revision, make_role

from provider_rbac.applicator import ApplyFn
from provider_rbac.errors import NotFoundError, ReconcileCancelled, ReconcileError, StoreError
from provider_rbac.events import TYPE_NORMAL, TYPE_WARNING
from provider_rbac.models import ClusterRole, CustomResourceDefinition, ProviderRevision
from provider_rbac.reconciler import CancelScope, Reconciler, ReconcilerConfig, Result
from provider_rbac.roles import ClusterRoleRenderFn

SHORT_WAIT = 5.0

boom = StoreError("boom")


@dataclass
class _MockStore:
    get_fn: Callable[[type, str], Any] | None = None
    list_fn: Callable[[type], list[Any]] | None = None

    def get(self, kind: type, name: str) -> Any:
        assert self.get_fn is not None, "unexpected get"
        return self.get_fn(kind, name)

    def list(self, kind: type) -> list[Any]:
        assert self.list_fn is not None, "unexpected list"
        return self.list_fn(kind)

    def create(self, obj: Any) -> Any:
        raise AssertionError("unexpected create")

    def update(self, obj: Any) -> Any:
        raise AssertionError("unexpected update")


@dataclass
class _Recorder:
    events: list[tuple[str, str, str]] = field(default_factory=list)

    def event(self, revision: ProviderRevision, event_type: str, reason: str, message: str) -> None:
        self.events.append((revision.name, event_type, message))


def _get_returns(obj: Any = None, err: Exception | None = None) -> Callable[[type, str], Any]:
    def _get(kind: type, name: str) -> Any:
        if err is not None:
            raise err
        return obj if obj is not None else make_revision(name, uid="")

    return _get


def _list_returns(items: list[Any] | None = None, err: Exception | None = None) -> Callable[[type], list[Any]]:
    def _list(kind: type) -> list[Any]:
        assert kind is CustomResourceDefinition
        if err is not None:
            raise err
        return list(items or [])

    return _list


def _render_one(revision: ProviderRevision, crds: Any) -> list[ClusterRole]:
    return [make_role()]


def _reconciler(store: _MockStore, **overrides: Any) -> Reconciler:
    overrides.setdefault("short_wait", SHORT_WAIT)
    return Reconciler(ReconcilerConfig(store=store, **overrides))


def test_revision_not_found_is_not_an_error() -> None:
    store = _MockStore(get_fn=_get_returns(err=NotFoundError("ProviderRevision", "gone")))

    assert _reconciler(store).reconcile("gone") == Result()


def test_get_revision_error_is_raised_with_context() -> None:
    store = _MockStore(get_fn=_get_returns(err=boom))

    with pytest.raises(ReconcileError, match="cannot get ProviderRevision") as excinfo:
        _reconciler(store).reconcile("rev")

    assert excinfo.value.__cause__ is boom


def test_deleted_revision_returns_early() -> None:
    store = _MockStore(get_fn=_get_returns(make_revision("rev", deleted=True)))
    recorder = _Recorder()

    got = _reconciler(store, recorder=recorder).reconcile("rev")

    assert got == Result(requeue=False)
    assert recorder.events == []


def test_list_crds_error_requeues_after_short_wait() -> None:
    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns(err=boom))
    recorder = _Recorder()

    got = _reconciler(store, recorder=recorder).reconcile("rev")

    assert got == Result(requeue_after=SHORT_WAIT)
    assert [e[1] for e in recorder.events] == [TYPE_WARNING]


def test_apply_error_requeues_after_short_wait() -> None:
    def _apply(obj: ClusterRole, *options: Any) -> None:
        raise boom

    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())
    r = _reconciler(
        store,
        applicator=ApplyFn(_apply),
        renderer=ClusterRoleRenderFn(_render_one),
    )

    assert r.reconcile("rev") == Result(requeue_after=SHORT_WAIT)


def test_apply_error_skips_remaining_roles() -> None:
    applied: list[str] = []

    def _apply(obj: ClusterRole, *options: Any) -> None:
        applied.append(obj.name)
        if obj.name == "b":
            raise boom

    def _render(revision: ProviderRevision, crds: Any) -> list[ClusterRole]:
        return [make_role("a"), make_role("b"), make_role("c")]

    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())
    r = _reconciler(store, applicator=ApplyFn(_apply), renderer=ClusterRoleRenderFn(_render))

    assert r.reconcile("rev") == Result(requeue_after=SHORT_WAIT)
    assert applied == ["a", "b"]


def test_cannot_gain_control_does_not_requeue() -> None:
    other = make_revision("other", uid="nope")

    def _apply(obj: ClusterRole, *options: Any) -> None:
        # Run the supplied options against a role another revision controls.
        current = make_role(obj.name, owners=(controller_ref(other),))
        for option in options:
            option(current, obj)

    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())
    recorder = _Recorder()
    r = _reconciler(
        store,
        applicator=ApplyFn(_apply),
        renderer=ClusterRoleRenderFn(_render_one),
        recorder=recorder,
    )

    assert r.reconcile("rev") == Result(requeue=False)
    assert any("not controlled by" in e[2] for e in recorder.events if e[1] == TYPE_WARNING)


def test_conflict_on_one_role_still_applies_the_rest() -> None:
    other = make_revision("other", uid="nope")
    applied: list[str] = []

    def _apply(obj: ClusterRole, *options: Any) -> None:
        owners = (controller_ref(other),) if obj.name == "a" else ()
        current = make_role(obj.name, owners=owners)
        for option in options:
            option(current, obj)
        applied.append(obj.name)

    def _render(revision: ProviderRevision, crds: Any) -> list[ClusterRole]:
        return [make_role("a"), make_role("b")]

    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())
    r = _reconciler(store, applicator=ApplyFn(_apply), renderer=ClusterRoleRenderFn(_render))

    assert r.reconcile("rev") == Result()
    assert applied == ["b"]


def test_successful_apply_does_not_requeue() -> None:
    revision = make_revision("rev", uid="")
    owned = make_crd("vpcs.ec2.aws.crossplane.io", owners=(controller_ref(revision),))
    orphan = make_crd("subnets.ec2.aws.crossplane.io")
    seen_crds: list[list[str]] = []
    applied: list[ClusterRole] = []

    def _render(rev: ProviderRevision, crds: Any) -> list[ClusterRole]:
        seen_crds.append([crd.name for crd in crds])
        return [make_role()]

    def _apply(obj: ClusterRole, *options: Any) -> None:
        applied.append(obj)

    store = _MockStore(get_fn=_get_returns(revision), list_fn=_list_returns([owned, orphan]))
    recorder = _Recorder()
    r = _reconciler(
        store,
        applicator=ApplyFn(_apply),
        renderer=ClusterRoleRenderFn(_render),
        recorder=recorder,
    )

    assert r.reconcile("rev") == Result(requeue=False)
    assert seen_crds == [["vpcs.ec2.aws.crossplane.io"]]
    assert recorder.events == [("rev", TYPE_NORMAL, "Applied RBAC ClusterRoles")]


def test_applied_roles_are_stamped_with_revision_as_controller() -> None:
    revision = make_revision("rev", uid="rev-1")
    applied: list[ClusterRole] = []

    store = _MockStore(get_fn=_get_returns(revision), list_fn=_list_returns())
    r = _reconciler(
        store,
        applicator=ApplyFn(lambda obj, *options: applied.append(obj)),
        renderer=ClusterRoleRenderFn(_render_one),
    )
    r.reconcile("rev")

    [role] = applied
    controllers = [ref for ref in role.metadata.owner_references if ref.controller]
    assert [(ref.uid, ref.kind, ref.name) for ref in controllers] == [
        ("rev-1", "ProviderRevision", "rev")
    ]


def test_cancelled_scope_raises_instead_of_requeueing() -> None:
    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())
    scope = CancelScope()
    scope.cancel()

    with pytest.raises(ReconcileCancelled):
        _reconciler(store).reconcile("rev", cancel=scope)


def test_cancellation_from_store_propagates() -> None:
    def _list(kind: type) -> list[Any]:
        raise ReconcileCancelled("deadline exceeded")

    store = _MockStore(get_fn=_get_returns(), list_fn=_list)

    with pytest.raises(ReconcileCancelled):
        _reconciler(store).reconcile("rev")


def test_expired_deadline_cancels() -> None:
    store = _MockStore(get_fn=_get_returns(), list_fn=_list_returns())

    with pytest.raises(ReconcileCancelled):
        _reconciler(store).reconcile("rev", cancel=CancelScope(timeout=0))


def test_short_wait_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Reconciler(ReconcilerConfig(store=_MockStore(), short_wait=0))
