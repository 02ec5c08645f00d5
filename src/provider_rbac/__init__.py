"""provider-rbac - keeps provider revisions' ClusterRoles in line with the CRDs they control."""

from .reconciler import Reconciler, ReconcilerConfig, Result

__all__ = ["Reconciler", "ReconcilerConfig", "Result", "__version__"]
__version__ = "0.1.0"
