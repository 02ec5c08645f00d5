"""Object model for provider revisions, CRDs and ClusterRoles.

Ownership is plain data: an object records its owners as ``OwnerReference``
values (identity + UID + controller flag). Nothing here holds a live
reference to another object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Sequence

PKG_GROUP = "pkg.crossplane.io"
PKG_VERSION = "v1alpha1"


@dataclass(frozen=True, slots=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


PROVIDER_REVISION_GVK = GroupVersionKind(PKG_GROUP, PKG_VERSION, "ProviderRevision")


@dataclass(frozen=True, slots=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "OwnerReference":
        return cls(
            api_version=str(doc.get("apiVersion") or ""),
            kind=str(doc.get("kind") or ""),
            name=str(doc.get("name") or ""),
            uid=str(doc.get("uid") or ""),
            controller=doc.get("controller"),
            block_owner_deletion=doc.get("blockOwnerDeletion"),
        )


@dataclass(frozen=True, slots=True)
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    deletion_timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class PolicyRule:
    verbs: tuple[str, ...] = ()
    api_groups: tuple[str, ...] = ()
    resources: tuple[str, ...] = ()
    resource_names: tuple[str, ...] = ()
    non_resource_urls: tuple[str, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return {
            "verbs": list(self.verbs),
            "apiGroups": list(self.api_groups),
            "resources": list(self.resources),
            "resourceNames": list(self.resource_names),
            "nonResourceURLs": list(self.non_resource_urls),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "PolicyRule":
        return cls(
            verbs=tuple(doc.get("verbs") or ()),
            api_groups=tuple(doc.get("apiGroups") or ()),
            resources=tuple(doc.get("resources") or ()),
            resource_names=tuple(doc.get("resourceNames") or ()),
            non_resource_urls=tuple(doc.get("nonResourceURLs") or ()),
        )


@dataclass(frozen=True, slots=True)
class ProviderRevisionSpec:
    package_image: str = ""
    desired_state: str = "Inactive"
    revision: int = 0


@dataclass(frozen=True, slots=True)
class ProviderRevisionStatus:
    # Extra rules the provider package asks for on top of its own CRDs.
    permission_requests: tuple[PolicyRule, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderRevision:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ProviderRevisionSpec = field(default_factory=ProviderRevisionSpec)
    status: ProviderRevisionStatus = field(default_factory=ProviderRevisionStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def to_document(self) -> dict[str, Any]:
        return {
            "spec": {
                "packageImage": self.spec.package_image,
                "desiredState": self.spec.desired_state,
                "revision": self.spec.revision,
            },
            "status": {
                "permissionRequests": [r.to_document() for r in self.status.permission_requests],
            },
        }

    @classmethod
    def from_document(cls, metadata: ObjectMeta, doc: Mapping[str, Any]) -> "ProviderRevision":
        spec = doc.get("spec") or {}
        status = doc.get("status") or {}
        return cls(
            metadata=metadata,
            spec=ProviderRevisionSpec(
                package_image=str(spec.get("packageImage") or ""),
                desired_state=str(spec.get("desiredState") or "Inactive"),
                revision=int(spec.get("revision") or 0),
            ),
            status=ProviderRevisionStatus(
                permission_requests=tuple(
                    PolicyRule.from_document(r) for r in status.get("permissionRequests") or ()
                ),
            ),
        )


@dataclass(frozen=True, slots=True)
class CustomResourceDefinitionNames:
    kind: str = ""
    plural: str = ""
    singular: str = ""


@dataclass(frozen=True, slots=True)
class CustomResourceDefinition:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    group: str = ""
    names: CustomResourceDefinitionNames = field(default_factory=CustomResourceDefinitionNames)

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_document(self) -> dict[str, Any]:
        return {
            "spec": {
                "group": self.group,
                "names": {
                    "kind": self.names.kind,
                    "plural": self.names.plural,
                    "singular": self.names.singular,
                },
            },
        }

    @classmethod
    def from_document(cls, metadata: ObjectMeta, doc: Mapping[str, Any]) -> "CustomResourceDefinition":
        spec = doc.get("spec") or {}
        names = spec.get("names") or {}
        return cls(
            metadata=metadata,
            group=str(spec.get("group") or ""),
            names=CustomResourceDefinitionNames(
                kind=str(names.get("kind") or ""),
                plural=str(names.get("plural") or ""),
                singular=str(names.get("singular") or ""),
            ),
        )


@dataclass(frozen=True, slots=True)
class ClusterRole:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    rules: tuple[PolicyRule, ...] = ()

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_document(self) -> dict[str, Any]:
        return {"rules": [r.to_document() for r in self.rules]}

    @classmethod
    def from_document(cls, metadata: ObjectMeta, doc: Mapping[str, Any]) -> "ClusterRole":
        return cls(
            metadata=metadata,
            rules=tuple(PolicyRule.from_document(r) for r in doc.get("rules") or ()),
        )


def typed_reference_to(obj: ProviderRevision, gvk: GroupVersionKind) -> OwnerReference:
    """Return a non-controller reference to ``obj`` typed as ``gvk``."""
    return OwnerReference(
        api_version=gvk.api_version,
        kind=gvk.kind,
        name=obj.metadata.name,
        uid=obj.metadata.uid,
    )


def as_controller(ref: OwnerReference) -> OwnerReference:
    return replace(ref, controller=True, block_owner_deletion=True)


def with_owner_references(obj: Any, refs: Sequence[OwnerReference]) -> Any:
    """Return a copy of ``obj`` whose metadata carries exactly ``refs``."""
    return replace(obj, metadata=replace(obj.metadata, owner_references=tuple(refs)))


__all__ = [
    "ClusterRole",
    "CustomResourceDefinition",
    "CustomResourceDefinitionNames",
    "GroupVersionKind",
    "ObjectMeta",
    "OwnerReference",
    "PROVIDER_REVISION_GVK",
    "PolicyRule",
    "ProviderRevision",
    "ProviderRevisionSpec",
    "ProviderRevisionStatus",
    "as_controller",
    "typed_reference_to",
    "with_owner_references",
]
