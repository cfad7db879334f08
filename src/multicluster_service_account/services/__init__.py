"""
Service layer for the multicluster service account operator.

Contains the remote cluster registry and the reconciler mirroring remote
service account tokens into local secrets.
"""

from .import_reconciler import ServiceAccountImportReconciler
from .remote_registry import RemoteClusterRegistry, RemoteConnection

__all__ = [
    "RemoteClusterRegistry",
    "RemoteConnection",
    "ServiceAccountImportReconciler",
]
