"""Controller ownership checks."""

from __future__ import annotations

from typing import Iterable, Sequence

from .models import CustomResourceDefinition, OwnerReference


def _controllers(refs: Iterable[OwnerReference]) -> list[OwnerReference]:
    return [ref for ref in refs if ref.controller]


def controller_of(refs: Sequence[OwnerReference]) -> OwnerReference | None:
    """Return the single controller reference, or ``None``.

    More than one controller reference is an invalid object; it is treated
    as having no controller we could match against.
    """
    controllers = _controllers(refs)
    if len(controllers) != 1:
        return None
    return controllers[0]


def is_controlled_by(refs: Sequence[OwnerReference], uid: str) -> bool:
    """True iff exactly one reference is the controller and its UID is ``uid``."""
    ref = controller_of(refs)
    return ref is not None and ref.uid == uid


def filter_controlled(
    crds: Iterable[CustomResourceDefinition],
    uid: str,
) -> list[CustomResourceDefinition]:
    """Keep the CRDs controlled by ``uid``, in input order."""
    return [crd for crd in crds if is_controlled_by(crd.metadata.owner_references, uid)]


__all__ = ["controller_of", "filter_controlled", "is_controlled_by"]
