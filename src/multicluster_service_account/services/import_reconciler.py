"""
ServiceAccountImport reconciler - mirrors remote service account tokens.

For each import the reconciler:

1. resolves the remote cluster through the :class:`RemoteClusterRegistry`;
2. reads the remote service account and selects its token secret;
3. upserts a local secret holding the token, remote namespace, remote API
   server URL and remote CA certificate;
4. publishes the secret reference and a Ready status on the import.

Reconciliations of one import never overlap, whichever source (watch event
or periodic resync) triggered them.
"""

import asyncio
import base64
from typing import Any

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as PydanticValidationError

from ..constants import (
    ERROR_REMOTE_SERVICE_ACCOUNT_MISSING,
    ERROR_REMOTE_TOKEN_MISSING,
    KEY_CA_CRT,
    KEY_TOKEN,
    PHASE_ERROR,
    PHASE_READY,
    SERVICE_ACCOUNT_NAME_ANNOTATION,
    SERVICE_ACCOUNT_TOKEN_TYPE,
    SUCCESS_MIRRORED,
)
from ..errors import (
    OperatorError,
    RemoteAuthError,
    RemoteStateMissingError,
    RemoteUnreachableError,
    ValidationError,
    WriteConflictError,
)
from ..models.service_account_import import MirroredCredential, ServiceAccountImportSpec
from ..observability.metrics import metrics_collector
from ..observability.tracing import get_tracer, traced_operation
from ..utils.keyed_lock import KeyedLock
from ..utils.kubernetes import (
    build_mirrored_secret,
    is_conflict,
    is_not_found,
    merge_secret,
    secret_matches,
)
from .base_reconciler import BaseReconciler, StatusProtocol
from .remote_registry import RemoteClusterRegistry, RemoteConnection

tracer = get_tracer(__name__)

# Transport level failures raised by the kubernetes client
TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


class ServiceAccountImportReconciler(BaseReconciler):
    """
    Reconciler for ServiceAccountImport resources.

    Token secret selection policy: the service account's ``secrets`` list is
    walked in order and the first entry that resolves to a service account
    token secret holding a token wins. When a remote service account
    legitimately carries several live tokens (rotation overlap) this picks
    whichever is listed first. If the list yields nothing, token secrets in
    the remote namespace annotated with the service account name are
    considered in name order.
    """

    resource_type = "serviceaccountimport"

    def __init__(
        self,
        k8s_client: client.ApiClient,
        registry: RemoteClusterRegistry,
        request_timeout: float = 10.0,
        write_conflict_retries: int = 3,
    ):
        super().__init__(k8s_client)
        self.registry = registry
        self.request_timeout = request_timeout
        self.write_conflict_retries = write_conflict_retries
        self.locks = KeyedLock()

    async def reconcile(
        self,
        spec: dict[str, Any],
        name: str,
        namespace: str,
        status: StatusProtocol,
        generation: int = 0,
        trigger: str = "event",
        **kwargs,
    ) -> dict[str, Any]:
        async with self.locks.hold((namespace, name)):
            with traced_operation(
                tracer,
                "serviceaccountimport.reconcile",
                name=name,
                namespace=namespace,
                trigger=trigger,
            ):
                return await super().reconcile(
                    spec,
                    name,
                    namespace,
                    status,
                    generation=generation,
                    trigger=trigger,
                    **kwargs,
                )

    def forget(self, name: str, namespace: str) -> None:
        """Release per-import state after the import is deleted."""
        metrics_collector.forget_import(namespace, name)

    async def do_reconcile(
        self,
        spec: dict[str, Any],
        name: str,
        namespace: str,
        status: StatusProtocol,
        generation: int = 0,
        uid: str = "",
        **kwargs,
    ) -> dict[str, Any]:
        try:
            import_spec = ServiceAccountImportSpec.model_validate(spec)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e
        if not uid:
            raise ValidationError("import has no uid", field="metadata.uid")

        async with self.registry.lease(import_spec.cluster_name) as connection:
            credential = await self.fetch_credential(connection, import_spec)

        secret = build_mirrored_secret(
            import_name=name,
            namespace=namespace,
            uid=uid,
            cluster_name=import_spec.cluster_name,
            credential=credential,
        )
        outcome = await self.upsert_secret(secret)

        secret_name = secret.metadata.name
        status.secrets = [{"name": secret_name}]
        self.update_status_ready(
            status,
            SUCCESS_MIRRORED.format(
                import_spec.namespace, import_spec.name, import_spec.cluster_name
            ),
            generation,
        )
        metrics_collector.update_import_phase(namespace, name, PHASE_READY)
        self.logger.info(
            f"Mirrored secret {namespace}/{secret_name} is {outcome}",
            resource_type=self.resource_type,
            resource_name=name,
            namespace=namespace,
            cluster_name=import_spec.cluster_name,
            secret_name=secret_name,
        )
        return {"secret": secret_name, "outcome": outcome}

    def handle_failure(
        self,
        status: StatusProtocol,
        error: OperatorError,
        name: str,
        namespace: str,
        generation: int = 0,
    ) -> None:
        """
        Publish a failure on the import status.

        Write conflicts are retried right away and leave the status alone.
        While the remote cluster is unreachable the last mirrored secret stays
        referenced; once the remote credential is known to be gone the
        reference is dropped so that no new pod mounts it.
        """
        if isinstance(error, WriteConflictError):
            return
        if isinstance(error, RemoteStateMissingError):
            status.secrets = []
        self.update_status_error(status, error.message, generation)
        metrics_collector.update_import_phase(namespace, name, PHASE_ERROR)

    async def fetch_credential(
        self, connection: RemoteConnection, spec: ServiceAccountImportSpec
    ) -> MirroredCredential:
        """
        Read the token credential of the remote service account.

        Raises:
            RemoteStateMissingError: service account or token secret missing
            RemoteAuthError: the remote API rejected our credentials
            RemoteUnreachableError: transport or server failure
        """
        core_api = client.CoreV1Api(connection.api_client)

        service_account = await self._remote_call(
            connection,
            core_api.read_namespaced_service_account,
            name=spec.name,
            namespace=spec.namespace,
        )
        if service_account is None:
            raise RemoteStateMissingError(
                spec.cluster_name,
                ERROR_REMOTE_SERVICE_ACCOUNT_MISSING.format(
                    spec.name, spec.namespace, spec.cluster_name
                ),
            )

        token_secret = await self._select_token_secret(
            connection, core_api, spec, service_account
        )
        if token_secret is None:
            raise RemoteStateMissingError(
                spec.cluster_name,
                ERROR_REMOTE_TOKEN_MISSING.format(
                    spec.name, spec.namespace, spec.cluster_name
                ),
            )

        data = token_secret.data or {}
        ca_crt = data.get(KEY_CA_CRT) or base64.b64encode(connection.ca_crt).decode()
        return MirroredCredential(
            token=data[KEY_TOKEN],
            ca_crt=ca_crt,
            namespace=spec.namespace,
            server=connection.server,
            source_secret=token_secret.metadata.name,
        )

    async def _select_token_secret(
        self,
        connection: RemoteConnection,
        core_api: client.CoreV1Api,
        spec: ServiceAccountImportSpec,
        service_account: client.V1ServiceAccount,
    ) -> client.V1Secret | None:
        for reference in service_account.secrets or []:
            if not reference.name:
                continue
            secret = await self._remote_call(
                connection,
                core_api.read_namespaced_secret,
                name=reference.name,
                namespace=spec.namespace,
            )
            if secret is not None and _is_token_secret(secret, spec.name):
                return secret

        secrets = await self._remote_call(
            connection,
            core_api.list_namespaced_secret,
            namespace=spec.namespace,
            field_selector=f"type={SERVICE_ACCOUNT_TOKEN_TYPE}",
        )
        candidates = sorted(
            (
                s
                for s in (secrets.items if secrets else [])
                if _is_token_secret(s, spec.name, require_owner=True)
            ),
            key=lambda s: s.metadata.name,
        )
        return candidates[0] if candidates else None

    async def _remote_call(self, connection: RemoteConnection, method, **kwargs):
        """
        Call the remote API in a worker thread, returning None on 404.

        Authentication failures invalidate the cached connection so that
        rotated bootstrap material is picked up by the next attempt.
        """
        cluster_name = connection.cluster_name
        try:
            return await asyncio.to_thread(
                method, _request_timeout=self.request_timeout, **kwargs
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            if e.status in (401, 403):
                self.registry.invalidate(cluster_name)
                raise RemoteAuthError(cluster_name, e.reason or str(e), cause=e) from e
            raise RemoteUnreachableError(
                cluster_name, f"{e.status} {e.reason}", cause=e
            ) from e
        except TRANSPORT_ERRORS as e:
            raise RemoteUnreachableError(cluster_name, str(e), cause=e) from e

    async def upsert_secret(self, desired: client.V1Secret) -> str:
        """
        Create or update the mirrored secret.

        Updates replace the secret at the resourceVersion that was read, so a
        concurrent write makes ours fail with a conflict instead of being
        overwritten. Conflicts are retried immediately a bounded number of
        times.

        Returns:
            ``created``, ``updated`` or ``unchanged``

        Raises:
            WriteConflictError: conflicts persisted across every retry
        """
        core_api = client.CoreV1Api(self.kubernetes_client)
        name = desired.metadata.name
        namespace = desired.metadata.namespace

        for attempt in range(self.write_conflict_retries + 1):
            try:
                outcome = await self._write_secret(core_api, desired)
            except ApiException as e:
                if not is_conflict(e):
                    raise
                metrics_collector.record_write_conflict(namespace)
                self.logger.debug(
                    f"Conflict writing secret {namespace}/{name} "
                    f"(attempt {attempt + 1})",
                    secret_name=name,
                    namespace=namespace,
                )
                continue
            metrics_collector.record_secret_write(namespace, outcome)
            return outcome

        raise WriteConflictError(namespace, name)

    async def _write_secret(
        self, core_api: client.CoreV1Api, desired: client.V1Secret
    ) -> str:
        name = desired.metadata.name
        namespace = desired.metadata.namespace
        try:
            existing = await asyncio.to_thread(
                core_api.read_namespaced_secret,
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if not is_not_found(e):
                raise
            await asyncio.to_thread(
                core_api.create_namespaced_secret,
                namespace=namespace,
                body=desired,
                _request_timeout=self.request_timeout,
            )
            return "created"

        if secret_matches(existing, desired):
            return "unchanged"

        await asyncio.to_thread(
            core_api.replace_namespaced_secret,
            name=name,
            namespace=namespace,
            body=merge_secret(existing, desired),
            _request_timeout=self.request_timeout,
        )
        return "updated"


def _is_token_secret(
    secret: client.V1Secret, service_account_name: str, require_owner: bool = False
) -> bool:
    if secret.type != SERVICE_ACCOUNT_TOKEN_TYPE:
        return False
    if not (secret.data or {}).get(KEY_TOKEN):
        return False
    annotations = secret.metadata.annotations or {}
    owner = annotations.get(SERVICE_ACCOUNT_NAME_ANNOTATION)
    if owner is None:
        return not require_owner
    return owner == service_account_name
