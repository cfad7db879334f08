"""
Mutating admission webhook for pods requesting service account imports.

A pod annotated with ``multicluster.admiralty.io/service-account-import.name``
(a comma-separated list of ServiceAccountImport names in the pod's namespace)
gets, per import, a volume sourced from the import's first mirrored secret and
a read-only mount of that volume in every container at
``/var/run/secrets/admiralty.io/serviceaccountimports/<name>``.

Requests naming an import that does not exist, or that has no mirrored secret
yet, are rejected: controllers creating pods retry until the import is ready,
bare pods have to be recreated.

The webhook is served by kopf's admission server at ``/mutate-pods``; pods
without the annotation never reach the handler and are admitted unchanged.
"""

import asyncio
import copy
import logging
import time
from typing import Any

import kopf
from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    ANNOTATION_SERVICE_ACCOUNT_IMPORT_NAME,
    API_GROUP,
    API_VERSION,
    ERROR_IMPORT_NOT_FOUND,
    ERROR_IMPORT_NOT_READY,
    IMPORT_MOUNT_ROOT,
    IMPORT_PLURAL,
    WEBHOOK_MUTATE_PODS_ID,
)
from ..errors import AdmissionError, ImportNotReadyError
from ..models.service_account_import import ServiceAccountImportStatus
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..observability.tracing import get_tracer, traced_operation

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def requested_imports(pod: dict[str, Any]) -> list[str] | None:
    """
    Import names requested by a pod, in annotation order.

    Returns None when the pod carries no annotation. Duplicates are kept.
    """
    annotations = (pod.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(ANNOTATION_SERVICE_ACCOUNT_IMPORT_NAME)
    if value is None:
        return None
    return [name.strip() for name in value.split(",")]


def import_mount_path(import_name: str) -> str:
    return f"{IMPORT_MOUNT_ROOT}/{import_name}"


def mutate_pod(pod: dict[str, Any], mounts: list[tuple[str, str]]) -> dict[str, Any]:
    """
    Return a copy of a pod with credential volumes and mounts added.

    Args:
        pod: Pod as received in the admission request; left untouched
        mounts: (import name, secret name) pairs, one volume each

    Returns:
        The mutated copy
    """
    mutated = copy.deepcopy(pod)
    spec = mutated.setdefault("spec", {})
    if spec.get("volumes") is None:
        spec["volumes"] = []

    for import_name, secret_name in mounts:
        spec["volumes"].append({"name": secret_name, "secret": {"secretName": secret_name}})
        for container in spec.get("containers") or []:
            if container.get("volumeMounts") is None:
                container["volumeMounts"] = []
            container["volumeMounts"].append(
                {
                    "name": secret_name,
                    "readOnly": True,
                    "mountPath": import_mount_path(import_name),
                }
            )
    return mutated


def pod_patch(original: dict[str, Any], mutated: dict[str, Any]) -> dict[str, Any]:
    """Top-level pod spec fields of ``mutated`` that differ from ``original``."""
    original_spec = original.get("spec") or {}
    return {
        key: value
        for key, value in (mutated.get("spec") or {}).items()
        if original_spec.get(key) != value
    }


def describe_pod(pod: dict[str, Any]) -> str:
    """Name used to refer to a pod in messages, even before it has one."""
    metadata = pod.get("metadata") or {}
    if metadata.get("name"):
        return metadata["name"]
    if metadata.get("generateName"):
        return f"{metadata['generateName']}... (name not generated yet)"
    return ""


class PodMutator:
    """
    Looks up the imports a pod requests and builds the mutated pod.

    The API client is fixed at construction; the mutator keeps no other
    state, so concurrent requests are independent.
    """

    def __init__(self, k8s_client: client.ApiClient, request_timeout: float = 10.0):
        self.k8s_client = k8s_client
        self.request_timeout = request_timeout

    async def mutate(self, pod: dict[str, Any], namespace: str) -> dict[str, Any]:
        """
        Mutated copy of a pod with every requested import mounted.

        Raises:
            ImportNotReadyError: a requested import is missing or not ready
            ApiException: the imports could not be looked up
        """
        mounts = [
            (name, await self.secret_for_import(name, namespace))
            for name in requested_imports(pod) or []
        ]
        return mutate_pod(pod, mounts)

    async def secret_for_import(self, import_name: str, namespace: str) -> str:
        """
        Name of the first mirrored secret of an import.

        Raises:
            ImportNotReadyError: the import does not exist or has no secret yet
        """
        if not import_name:
            raise ImportNotReadyError(ERROR_IMPORT_NOT_FOUND.format('""', namespace))

        custom_api = client.CustomObjectsApi(self.k8s_client)
        try:
            resource = await asyncio.to_thread(
                custom_api.get_namespaced_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=IMPORT_PLURAL,
                name=import_name,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise ImportNotReadyError(
                    ERROR_IMPORT_NOT_FOUND.format(import_name, namespace)
                ) from e
            raise

        secret_name = ServiceAccountImportStatus.from_resource(resource).first_secret_name
        if not secret_name:
            raise ImportNotReadyError(ERROR_IMPORT_NOT_READY.format(import_name, namespace))
        return secret_name


decision_logger = OperatorLogger(__name__)


@kopf.on.mutate(
    "v1",
    "pods",
    id=WEBHOOK_MUTATE_PODS_ID,
    operations=["CREATE"],
    annotations={ANNOTATION_SERVICE_ACCOUNT_IMPORT_NAME: kopf.PRESENT},
)
async def mount_service_account_imports(
    body: kopf.Body,
    patch: kopf.Patch,
    namespace: str | None,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Mount the mirrored secrets of the requested imports into a new pod.

    Raises:
        kopf.AdmissionError: 403 when an import is missing or not ready,
            500 when the imports cannot be looked up
    """
    start_time = time.time()
    pod = dict(body)
    namespace = namespace or ""
    pod_name = describe_pod(pod)
    names = requested_imports(pod) or []

    try:
        with traced_operation(tracer, "admission.mutate_pod", namespace=namespace):
            mutated = await memo.mutator.mutate(pod, namespace)
    except AdmissionError as e:
        rejection = e
    except ApiException as e:
        rejection = AdmissionError(
            f"cannot look up service account imports: {e.status} {e.reason}"
        )
    except Exception as e:
        logger.error(
            f"Unexpected error mutating pod {pod_name} in {namespace}: {e}",
            exc_info=True,
        )
        rejection = AdmissionError(str(e))
    else:
        for key, value in pod_patch(pod, mutated).items():
            patch.spec[key] = value
        decision_logger.log_admission_decision(pod_name, namespace, "patched", names)
        metrics_collector.record_admission(
            namespace, "patched", time.time() - start_time
        )
        return

    result = "rejected" if isinstance(rejection, ImportNotReadyError) else "error"
    decision_logger.log_admission_decision(
        pod_name, namespace, result, names, rejection.message
    )
    metrics_collector.record_admission(namespace, result, time.time() - start_time)
    raise kopf.AdmissionError(
        f"cannot handle admission request for pod {pod_name} "
        f"in namespace {namespace}: {rejection.message}",
        code=rejection.code,
    ) from rejection
