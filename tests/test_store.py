from __future__ import annotations

from dataclasses import replace

import pytest
from helpers import controller_ref, make_crd, make_revision, make_role

from provider_rbac.errors import AlreadyExistsError, NotFoundError, ResourceVersionConflict, StoreError
from provider_rbac.models import ClusterRole, CustomResourceDefinition, PolicyRule, ProviderRevision
from provider_rbac.store import SqlObjectStore


def test_create_then_get_round_trips_metadata(store: SqlObjectStore) -> None:
    revision = make_revision("rev", uid="rev-1")
    role = replace(
        make_role("role", owners=(controller_ref(revision),)),
        rules=(PolicyRule(api_groups=("ec2.aws.crossplane.io",), resources=("vpcs",), verbs=("get",)),),
    )

    created = store.create(role)
    got = store.get(ClusterRole, "role")

    assert created.metadata.resource_version == "1"
    assert got == created
    assert got.metadata.owner_references == (controller_ref(revision),)


def test_create_assigns_uid_when_missing(store: SqlObjectStore) -> None:
    created = store.create(make_role("role"))

    assert created.metadata.uid
    assert store.get(ClusterRole, "role").metadata.uid == created.metadata.uid


def test_create_existing_name_fails(store: SqlObjectStore) -> None:
    store.create(make_role("role"))

    with pytest.raises(AlreadyExistsError):
        store.create(make_role("role"))


def test_get_missing_raises_not_found(store: SqlObjectStore) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        store.get(ProviderRevision, "missing")

    assert excinfo.value.kind == "ProviderRevision"
    assert isinstance(excinfo.value, StoreError)


def test_list_returns_objects_sorted_by_name(store: SqlObjectStore) -> None:
    store.create(make_crd("zones.dns.aws.crossplane.io"))
    store.create(make_crd("buckets.s3.aws.crossplane.io"))

    names = [crd.name for crd in store.list(CustomResourceDefinition)]

    assert names == ["buckets.s3.aws.crossplane.io", "zones.dns.aws.crossplane.io"]


def test_deletion_timestamp_is_persisted(store: SqlObjectStore) -> None:
    store.create(make_revision("rev", deleted=True))

    assert store.get(ProviderRevision, "rev").deleted


def test_update_bumps_resource_version(store: SqlObjectStore) -> None:
    created = store.create(make_role("role"))

    updated = store.update(replace(created, rules=(PolicyRule(verbs=("*",)),)))

    assert updated.metadata.resource_version == "2"
    assert updated.rules == (PolicyRule(verbs=("*",)),)


def test_update_with_stale_resource_version_is_rejected(store: SqlObjectStore) -> None:
    first_read = store.create(make_role("role"))
    store.update(replace(first_read, rules=(PolicyRule(verbs=("get",)),)))

    with pytest.raises(ResourceVersionConflict):
        store.update(replace(first_read, rules=(PolicyRule(verbs=("*",)),)))

    assert store.get(ClusterRole, "role").rules == (PolicyRule(verbs=("get",)),)


def test_update_missing_object_raises_not_found(store: SqlObjectStore) -> None:
    with pytest.raises(NotFoundError):
        store.update(make_role("missing"))


def test_database_errors_are_wrapped(engine, store: SqlObjectStore) -> None:
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE cluster_roles")

    with pytest.raises(StoreError) as excinfo:
        store.list(ClusterRole)

    assert excinfo.value.__cause__ is not None
