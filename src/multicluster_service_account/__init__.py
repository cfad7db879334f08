"""
Multicluster Service Account - federated service account identities for Kubernetes.

This package lets workloads in one cluster call the Kubernetes API of another
cluster with a remote service account's identity:
- ServiceAccountImport controller mirroring remote token secrets locally
- Mutating admission webhook mounting mirrored credentials into pods
- Client configuration resolver turning mounted credentials into API clients
"""

__version__ = "0.1.0"
