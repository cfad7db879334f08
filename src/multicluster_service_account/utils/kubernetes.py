"""
Kubernetes utilities for the multicluster service account operator.

This module provides helper functions for interacting with the Kubernetes API:
- Local API client construction through the client configuration resolver
- Base64 helpers for secret data
- Deterministic naming and construction of mirrored secrets
- Owner references for garbage collection
"""

import base64
import hashlib
import logging
import string
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    ANNOTATION_SOURCE_CLUSTER,
    ANNOTATION_SOURCE_SECRET,
    API_GROUP,
    API_VERSION,
    IMPORT_KIND,
    LABEL_SERVICE_ACCOUNT_IMPORT_NAME,
    MIRRORED_SECRET_INFIX,
    MIRRORED_SECRET_SUFFIX_LENGTH,
)
from ..models.service_account_import import MirroredCredential

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client for the local cluster.

    The configuration comes from the same fallback chain that workloads use:
    a sole mounted import, then the current kubeconfig context, then the
    in-cluster service account.
    """
    from ..client_config import resolve_config

    configuration, namespace = resolve_config()
    logger.debug(
        f"Loaded Kubernetes configuration for {configuration.host} "
        f"(namespace {namespace})"
    )
    return client.ApiClient(configuration)


def b64encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def b64decode(value: str) -> str:
    return base64.b64decode(value).decode()


def is_not_found(error: ApiException) -> bool:
    return error.status == 404


def is_conflict(error: ApiException) -> bool:
    return error.status == 409


def mirrored_secret_name(import_name: str, namespace: str, uid: str) -> str:
    """
    Deterministic name of the secret mirroring an import's credential.

    The suffix is derived from the import's namespace, name and uid, so every
    reconcile of one import object addresses the same secret while a
    recreated import gets a fresh one.

    Args:
        import_name: Name of the ServiceAccountImport
        namespace: Namespace of the ServiceAccountImport
        uid: UID of the ServiceAccountImport

    Returns:
        Secret name of the form ``<import>-token-<suffix>``
    """
    digest = hashlib.sha256(f"{namespace}/{import_name}/{uid}".encode()).digest()
    suffix = "".join(
        _SUFFIX_ALPHABET[byte % len(_SUFFIX_ALPHABET)]
        for byte in digest[:MIRRORED_SECRET_SUFFIX_LENGTH]
    )
    return f"{import_name}{MIRRORED_SECRET_INFIX}{suffix}"


def build_owner_reference(owner_name: str, owner_uid: str) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version=f"{API_GROUP}/{API_VERSION}",
        kind=IMPORT_KIND,
        name=owner_name,
        uid=owner_uid,
        controller=True,
        block_owner_deletion=True,
    )


def set_owner_reference(resource: Any, owner_name: str, owner_uid: str) -> None:
    """
    Set the owning import as controller of a resource, for garbage collection.

    An existing reference to the same owner is replaced rather than duplicated.
    """
    if (
        not hasattr(resource.metadata, "owner_references")
        or resource.metadata.owner_references is None
    ):
        resource.metadata.owner_references = []

    resource.metadata.owner_references = [
        ref for ref in resource.metadata.owner_references if ref.uid != owner_uid
    ]
    resource.metadata.owner_references.append(
        build_owner_reference(owner_name, owner_uid)
    )


def build_mirrored_secret(
    import_name: str,
    namespace: str,
    uid: str,
    cluster_name: str,
    credential: MirroredCredential,
) -> client.V1Secret:
    """
    Build the desired mirrored secret for an import.

    Args:
        import_name: Name of the owning ServiceAccountImport
        namespace: Namespace of the owning ServiceAccountImport
        uid: UID of the owning ServiceAccountImport
        cluster_name: Remote cluster the credential comes from
        credential: Credential read from the remote token secret

    Returns:
        Secret object ready to be created or to replace an existing one
    """
    secret = client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=mirrored_secret_name(import_name, namespace, uid),
            namespace=namespace,
            labels={LABEL_SERVICE_ACCOUNT_IMPORT_NAME: import_name},
            annotations={
                ANNOTATION_SOURCE_CLUSTER: cluster_name,
                ANNOTATION_SOURCE_SECRET: (
                    f"{credential.namespace}/{credential.source_secret}"
                ),
            },
        ),
        type="Opaque",
        data=credential.to_secret_data(),
    )
    set_owner_reference(secret, import_name, uid)
    return secret


def secret_matches(existing: client.V1Secret, desired: client.V1Secret) -> bool:
    """
    Check whether an existing secret already carries the desired content.

    Data and type must be equal; the desired labels and annotations must be
    present; the desired controller owner must be referenced. Metadata added
    by other parties is ignored.
    """
    if (existing.data or {}) != (desired.data or {}):
        return False
    if existing.type != desired.type:
        return False

    existing_meta = existing.metadata
    desired_meta = desired.metadata
    for key, value in (desired_meta.labels or {}).items():
        if (existing_meta.labels or {}).get(key) != value:
            return False
    for key, value in (desired_meta.annotations or {}).items():
        if (existing_meta.annotations or {}).get(key) != value:
            return False

    existing_owners = {
        ref.uid for ref in existing_meta.owner_references or [] if ref.controller
    }
    return all(
        ref.uid in existing_owners for ref in desired_meta.owner_references or []
    )


def merge_secret(existing: client.V1Secret, desired: client.V1Secret) -> client.V1Secret:
    """
    Apply the desired content onto an existing secret for a conditional replace.

    The existing ``resourceVersion`` is kept so the API server rejects the
    write if someone else updated the secret in between.
    """
    metadata = existing.metadata
    metadata.labels = {**(metadata.labels or {}), **(desired.metadata.labels or {})}
    metadata.annotations = {
        **(metadata.annotations or {}),
        **(desired.metadata.annotations or {}),
    }
    for ref in desired.metadata.owner_references or []:
        set_owner_reference(existing, ref.name, ref.uid)

    existing.data = dict(desired.data or {})
    existing.type = desired.type
    return existing
