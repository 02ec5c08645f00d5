"""Object factories shared by the tests."""

from __future__ import annotations

from datetime import UTC, datetime

from provider_rbac.models import (
    PROVIDER_REVISION_GVK,
    ClusterRole,
    CustomResourceDefinition,
    CustomResourceDefinitionNames,
    ObjectMeta,
    OwnerReference,
    ProviderRevision,
    as_controller,
    typed_reference_to,
)


def make_revision(
    name: str = "provider-aws-abc123",
    *,
    uid: str = "rev-uid",
    deleted: bool = False,
) -> ProviderRevision:
    return ProviderRevision(
        metadata=ObjectMeta(
            name=name,
            uid=uid,
            deletion_timestamp=datetime(2025, 1, 10, 12, 0, 0, tzinfo=UTC) if deleted else None,
        )
    )


def controller_ref(revision: ProviderRevision) -> OwnerReference:
    return as_controller(typed_reference_to(revision, PROVIDER_REVISION_GVK))


def make_crd(
    name: str,
    *,
    group: str = "ec2.aws.crossplane.io",
    plural: str | None = None,
    owners: tuple[OwnerReference, ...] = (),
) -> CustomResourceDefinition:
    plural = plural or name.split(".", 1)[0]
    return CustomResourceDefinition(
        metadata=ObjectMeta(name=name, owner_references=owners),
        group=group,
        names=CustomResourceDefinitionNames(kind=plural.title(), plural=plural, singular=plural),
    )


def make_role(
    name: str = "crossplane:provider:test:system",
    *,
    owners: tuple[OwnerReference, ...] = (),
) -> ClusterRole:
    return ClusterRole(metadata=ObjectMeta(name=name, owner_references=owners))
