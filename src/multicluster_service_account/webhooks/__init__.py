"""
Admission webhook for the multicluster service account operator.

Pods annotated with service account import names get the mirrored
credentials mounted at admission time. Importing this package registers the
kopf mutating handler.
"""

from .pod_mutator import PodMutator

__all__ = ["PodMutator"]
