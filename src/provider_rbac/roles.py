"""Render the ClusterRoles a provider revision needs for the CRDs it controls."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Protocol, Sequence

from .models import ClusterRole, CustomResourceDefinition, ObjectMeta, PolicyRule, ProviderRevision

NAME_PREFIX = "crossplane:provider:"
NAME_SUFFIX_SYSTEM = ":system"
NAME_SUFFIX_EDIT = ":aggregate-to-edit"
NAME_SUFFIX_VIEW = ":aggregate-to-view"

KEY_AGGREGATE_TO_CROSSPLANE = "rbac.crossplane.io/aggregate-to-crossplane"
KEY_AGGREGATE_TO_ADMIN = "rbac.crossplane.io/aggregate-to-admin"
KEY_AGGREGATE_TO_NS_ADMIN = "rbac.crossplane.io/aggregate-to-ns-admin"
KEY_AGGREGATE_TO_EDIT = "rbac.crossplane.io/aggregate-to-edit"
KEY_AGGREGATE_TO_VIEW = "rbac.crossplane.io/aggregate-to-view"
VAL_TRUE = "true"

SUFFIX_STATUS = "/status"
GROUP_CORE = ""
GROUP_COORDINATION = "coordination.k8s.io"

VERBS_EDIT = ("*",)
VERBS_VIEW = ("get", "list", "watch")
VERBS_SYSTEM = ("get", "list", "watch", "update", "patch", "create")

# Providers need these to run: credentials, leader election and events.
RULES_SYSTEM_EXTRA = (
    PolicyRule(
        api_groups=(GROUP_CORE, GROUP_COORDINATION),
        resources=("secrets", "configmaps", "events", "leases"),
        verbs=VERBS_EDIT,
    ),
)


class ClusterRoleRenderer(Protocol):
    def render_cluster_roles(
        self,
        revision: ProviderRevision,
        crds: Sequence[CustomResourceDefinition],
    ) -> list[ClusterRole]: ...


class ClusterRoleRenderFn:
    """Adapt a plain function to the ``ClusterRoleRenderer`` protocol."""

    def __init__(
        self,
        fn: Callable[[ProviderRevision, Sequence[CustomResourceDefinition]], list[ClusterRole]],
    ) -> None:
        self._fn = fn

    def render_cluster_roles(
        self,
        revision: ProviderRevision,
        crds: Sequence[CustomResourceDefinition],
    ) -> list[ClusterRole]:
        return self._fn(revision, crds)


def system_cluster_role_name(revision_name: str) -> str:
    return NAME_PREFIX + revision_name + NAME_SUFFIX_SYSTEM


def _with_verbs(rules: Sequence[PolicyRule], verbs: tuple[str, ...]) -> tuple[PolicyRule, ...]:
    return tuple(replace(rule, verbs=verbs) for rule in rules)


def _crd_rules(crds: Sequence[CustomResourceDefinition]) -> list[PolicyRule]:
    # CRDs arrive in no particular order; sort so the rules are stable
    # between reconciles and re-applying is a no-op.
    ordered = sorted(crds, key=lambda crd: crd.metadata.name)

    groups: list[str] = []
    resources: dict[str, list[str]] = {}
    for crd in ordered:
        if crd.group not in resources:
            resources[crd.group] = []
            groups.append(crd.group)
        resources[crd.group].extend([crd.names.plural, crd.names.plural + SUFFIX_STATUS])

    return [PolicyRule(api_groups=(g,), resources=tuple(resources[g])) for g in groups]


def render_cluster_roles(
    revision: ProviderRevision,
    crds: Sequence[CustomResourceDefinition],
) -> list[ClusterRole]:
    """Render the system, aggregate-to-edit and aggregate-to-view roles.

    The system role is bound to the provider's service account; the edit and
    view roles aggregate into Crossplane's and the cluster's admin/edit/view
    roles. Owner references are stamped by the reconciler when applying.
    """
    rules = _crd_rules(crds)

    system = ClusterRole(
        metadata=ObjectMeta(name=system_cluster_role_name(revision.name)),
        rules=(
            *_with_verbs(rules, VERBS_SYSTEM),
            *RULES_SYSTEM_EXTRA,
            *revision.status.permission_requests,
        ),
    )
    edit = ClusterRole(
        metadata=ObjectMeta(
            name=NAME_PREFIX + revision.name + NAME_SUFFIX_EDIT,
            labels={
                KEY_AGGREGATE_TO_CROSSPLANE: VAL_TRUE,
                KEY_AGGREGATE_TO_ADMIN: VAL_TRUE,
                KEY_AGGREGATE_TO_NS_ADMIN: VAL_TRUE,
                KEY_AGGREGATE_TO_EDIT: VAL_TRUE,
            },
        ),
        rules=_with_verbs(rules, VERBS_EDIT),
    )
    view = ClusterRole(
        metadata=ObjectMeta(
            name=NAME_PREFIX + revision.name + NAME_SUFFIX_VIEW,
            labels={KEY_AGGREGATE_TO_VIEW: VAL_TRUE},
        ),
        rules=_with_verbs(rules, VERBS_VIEW),
    )
    return [system, edit, view]


default_renderer = ClusterRoleRenderFn(render_cluster_roles)

__all__ = [
    "ClusterRoleRenderFn",
    "ClusterRoleRenderer",
    "default_renderer",
    "render_cluster_roles",
    "system_cluster_role_name",
]
