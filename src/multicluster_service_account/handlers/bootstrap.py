"""
Bootstrap secret handler - drop cached remote connections on rotation.

The bootstrap procedure deposits, per remote cluster, a secret labeled with
the cluster name in the operator namespace. Whenever such a secret changes
or disappears the cached connection is discarded; the next reconciliation
builds a fresh one.
"""

import logging
from typing import Any

import kopf

from ..constants import LABEL_REMOTE_CLUSTER_NAME
from ..settings import settings as operator_settings

logger = logging.getLogger(__name__)


@kopf.on.event("v1", "secrets", labels={LABEL_REMOTE_CLUSTER_NAME: kopf.PRESENT})
async def invalidate_remote_connection(
    event: dict[str, Any],
    name: str,
    namespace: str,
    labels: dict[str, str],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    if namespace != operator_settings.operator_namespace:
        return
    # Initial listing, nothing can be cached yet
    if event.get("type") is None:
        return

    cluster_name = labels[LABEL_REMOTE_CLUSTER_NAME]
    logger.info(
        f"Bootstrap secret {namespace}/{name} of cluster {cluster_name} "
        f"{event['type'].lower()}",
        extra={"cluster_name": cluster_name, "secret_name": name},
    )
    memo.registry.invalidate(cluster_name)
