"""
Registry of connections to remote clusters.

A cluster name resolves to a Kubernetes API client for that cluster, built
from bootstrap material found locally:

1. a secret in the operator namespace labeled with the cluster name and
   holding ``server``, ``ca.crt`` and ``token``;
2. otherwise, when enabled, a kubeconfig context of the same name (used when
   running out of cluster during bootstrap).

Successful builds are cached until invalidated; failures are not cached, so
material that shows up later is picked up on the next call. Reconciliations
use a connection through a lease, and an invalidated connection is closed
only once its last lease ends.
"""

import asyncio
import base64
import binascii
import functools
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import (
    KEY_CA_CRT,
    KEY_SERVER,
    KEY_TOKEN,
    LABEL_REMOTE_CLUSTER_NAME,
)
from ..errors import RemoteAuthError, RemoteClusterNotFoundError
from ..observability.metrics import metrics_collector
from ..observability.tracing import get_tracer, traced_operation
from ..utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SOURCE_SECRET = "secret"
SOURCE_CONTEXT = "context"


@dataclass
class RemoteConnection:
    """A usable API connection to a named remote cluster."""

    cluster_name: str
    source: str
    configuration: client.Configuration
    api_client: client.ApiClient
    ca_crt: bytes = b""
    source_name: str = ""
    ca_file: str | None = field(default=None, repr=False)
    leases: int = field(default=0, repr=False)
    retired: bool = field(default=False, repr=False)

    @property
    def server(self) -> str:
        return self.configuration.host

    def close(self) -> None:
        self.api_client.close()
        if self.ca_file:
            try:
                os.unlink(self.ca_file)
            except FileNotFoundError:
                pass
            self.ca_file = None


class RemoteClusterRegistry:
    """
    Resolves cluster names to cached :class:`RemoteConnection` objects.

    Builds for one cluster name are mutually exclusive; different names are
    built independently.
    """

    def __init__(
        self,
        k8s_client: client.ApiClient,
        namespace: str,
        contexts_enabled: bool = True,
        request_timeout: float = 10.0,
        kube_config_file: str | None = None,
    ):
        self.k8s_client = k8s_client
        self.namespace = namespace
        self.contexts_enabled = contexts_enabled
        self.request_timeout = request_timeout
        self.kube_config_file = kube_config_file
        self._connections: dict[str, RemoteConnection] = {}
        self._locks = KeyedLock()

    def __contains__(self, cluster_name: str) -> bool:
        return cluster_name in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def connection(self, cluster_name: str) -> RemoteConnection:
        """
        Get the connection for a cluster, building it on first use.

        Raises:
            RemoteClusterNotFoundError: no bootstrap material for the cluster
            RemoteAuthError: bootstrap material exists but is unusable
        """
        cached = self._connections.get(cluster_name)
        if cached is not None:
            return cached

        async with self._locks.hold(cluster_name):
            # Another task may have finished the build while we waited
            cached = self._connections.get(cluster_name)
            if cached is not None:
                return cached

            with traced_operation(
                tracer, "remote_connection.build", cluster_name=cluster_name
            ):
                connection = await self._build(cluster_name)

            self._connections[cluster_name] = connection
            metrics_collector.set_cached_connections(len(self._connections))
            logger.info(
                f"Connected to cluster {cluster_name} at {connection.server} "
                f"using {connection.source} {connection.source_name}",
                extra={"cluster_name": cluster_name},
            )
            return connection

    @asynccontextmanager
    async def lease(self, cluster_name: str) -> AsyncIterator[RemoteConnection]:
        """
        Use the connection of a cluster for the duration of the block.

        An invalidation during the block does not close the connection under
        the caller; the close happens when the last lease ends.
        """
        connection = await self.connection(cluster_name)
        connection.leases += 1
        try:
            yield connection
        finally:
            connection.leases -= 1
            if connection.retired and not connection.leases:
                connection.close()

    def invalidate(self, cluster_name: str) -> None:
        """Drop the cached connection of a cluster, e.g. after secret rotation."""
        connection = self._connections.pop(cluster_name, None)
        if connection is None:
            return
        connection.retired = True
        if not connection.leases:
            connection.close()
        metrics_collector.set_cached_connections(len(self._connections))
        logger.info(
            f"Invalidated connection to cluster {cluster_name}",
            extra={"cluster_name": cluster_name},
        )

    def close(self) -> None:
        """Close every cached connection."""
        for cluster_name in list(self._connections):
            self.invalidate(cluster_name)

    async def _build(self, cluster_name: str) -> RemoteConnection:
        secret = await self._find_bootstrap_secret(cluster_name)
        if secret is not None:
            source = SOURCE_SECRET
            build = functools.partial(self._from_secret, cluster_name, secret)
        elif self.contexts_enabled and await asyncio.to_thread(
            self._has_context, cluster_name
        ):
            source = SOURCE_CONTEXT
            build = functools.partial(self._from_context, cluster_name)
        else:
            metrics_collector.record_connection_build(cluster_name, "none", False)
            raise RemoteClusterNotFoundError(cluster_name, self.namespace)

        try:
            connection = await asyncio.to_thread(build)
        except RemoteAuthError:
            metrics_collector.record_connection_build(cluster_name, source, False)
            raise
        metrics_collector.record_connection_build(cluster_name, source, True)
        return connection

    async def _find_bootstrap_secret(self, cluster_name: str) -> client.V1Secret | None:
        core_api = client.CoreV1Api(self.k8s_client)
        secrets = await asyncio.to_thread(
            core_api.list_namespaced_secret,
            namespace=self.namespace,
            label_selector=f"{LABEL_REMOTE_CLUSTER_NAME}={cluster_name}",
            _request_timeout=self.request_timeout,
        )
        items = sorted(secrets.items or [], key=lambda s: s.metadata.name)
        if len(items) > 1:
            logger.warning(
                f"Found {len(items)} bootstrap secrets for cluster {cluster_name}, "
                f"using {items[0].metadata.name}",
                extra={"cluster_name": cluster_name},
            )
        return items[0] if items else None

    def _from_secret(
        self, cluster_name: str, secret: client.V1Secret
    ) -> RemoteConnection:
        data = secret.data or {}
        secret_name = secret.metadata.name
        missing = [key for key in (KEY_SERVER, KEY_CA_CRT, KEY_TOKEN) if not data.get(key)]
        if missing:
            raise RemoteAuthError(
                cluster_name,
                f"bootstrap secret {self.namespace}/{secret_name} lacks "
                f"{', '.join(missing)}",
            )

        try:
            server = base64.b64decode(data[KEY_SERVER]).decode().strip()
            token = base64.b64decode(data[KEY_TOKEN]).decode().strip()
            ca_crt = base64.b64decode(data[KEY_CA_CRT])
        except (binascii.Error, UnicodeDecodeError) as e:
            raise RemoteAuthError(
                cluster_name,
                f"bootstrap secret {self.namespace}/{secret_name} is malformed",
                cause=e,
            ) from e

        with tempfile.NamedTemporaryFile(
            prefix=f"msa-{cluster_name}-", suffix=".crt", delete=False
        ) as ca_file:
            ca_file.write(ca_crt)

        configuration = client.Configuration()
        configuration.host = server
        configuration.api_key = {"authorization": token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.ssl_ca_cert = ca_file.name

        return RemoteConnection(
            cluster_name=cluster_name,
            source=SOURCE_SECRET,
            configuration=configuration,
            api_client=client.ApiClient(configuration),
            ca_crt=ca_crt,
            source_name=f"{self.namespace}/{secret_name}",
            ca_file=ca_file.name,
        )

    def _has_context(self, cluster_name: str) -> bool:
        try:
            contexts, _ = config.list_kube_config_contexts(
                config_file=self.kube_config_file
            )
        except config.ConfigException:
            return False
        return any(context["name"] == cluster_name for context in contexts or [])

    def _from_context(self, cluster_name: str) -> RemoteConnection:
        configuration = client.Configuration()
        try:
            config.load_kube_config(
                config_file=self.kube_config_file,
                context=cluster_name,
                client_configuration=configuration,
                persist_config=False,
            )
        except (config.ConfigException, OSError) as e:
            raise RemoteAuthError(
                cluster_name, f"cannot load kubeconfig context: {e}", cause=e
            ) from e

        ca_crt = b""
        if configuration.ssl_ca_cert:
            try:
                with open(configuration.ssl_ca_cert, "rb") as f:
                    ca_crt = f.read()
            except OSError as e:
                raise RemoteAuthError(
                    cluster_name, f"cannot read CA certificate: {e}", cause=e
                ) from e

        return RemoteConnection(
            cluster_name=cluster_name,
            source=SOURCE_CONTEXT,
            configuration=configuration,
            api_client=client.ApiClient(configuration),
            ca_crt=ca_crt,
            source_name=f"kubeconfig context {cluster_name}",
        )
