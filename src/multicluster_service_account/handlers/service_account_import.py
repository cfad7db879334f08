"""
ServiceAccountImport handlers - keep mirrored credentials in sync.

Two independent sources trigger reconciliation of an import:

- watch events (creation, operator restart, spec changes);
- a periodic resync timer catching token rotation in the remote cluster.

Both call the same reconciler, which serializes work per import. Failures
are retried by kopf with exponential backoff. Deleting an import needs no
cleanup: the mirrored secret is owned by the import and garbage collected.
"""

import logging
from typing import Any

import kopf

from ..constants import API_GROUP, API_VERSION, IMPORT_PLURAL
from ..errors import OperatorError, WriteConflictError
from ..settings import settings as operator_settings

logger = logging.getLogger(__name__)


class StatusWrapper:
    """Wrapper to make kopf patch.status compatible with StatusProtocol.

    Writes go to the patch; reads see the patch first, then the status the
    resource had when the handler was called.
    """

    def __init__(self, patch_status: Any, current: dict[str, Any] | None = None):
        object.__setattr__(self, "_patch_status", patch_status)
        object.__setattr__(self, "_current", current or {})

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        self._patch_status[name] = value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return object.__getattribute__(self, name)
        try:
            return self._patch_status[name]
        except (KeyError, TypeError):
            return self._current.get(name)


def retry_delay(retry: int) -> float:
    """Exponential backoff for the given kopf retry counter."""
    delay = operator_settings.retry_base_delay_seconds * 2 ** min(retry, 32)
    return min(delay, operator_settings.retry_max_delay_seconds)


async def reconcile_import(
    memo: kopf.Memo,
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    retry: int,
    trigger: str,
) -> None:
    """Run one reconciliation and translate failures into kopf retries."""
    try:
        await memo.reconciler.reconcile(
            spec=spec,
            name=name,
            namespace=namespace,
            status=StatusWrapper(patch.status, status),
            generation=meta.get("generation", 0),
            trigger=trigger,
            uid=meta.get("uid", ""),
        )
    except OperatorError as e:
        delay = e.delay if isinstance(e, WriteConflictError) else retry_delay(retry)
        raise e.as_kopf_error(delay=delay) from e


@kopf.on.create(IMPORT_PLURAL, group=API_GROUP, version=API_VERSION)
@kopf.on.resume(IMPORT_PLURAL, group=API_GROUP, version=API_VERSION)
async def ensure_service_account_import(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """Mirror the credential of a new (or, after a restart, existing) import."""
    logger.info(f"Ensuring ServiceAccountImport {name} in namespace {namespace}")
    await reconcile_import(
        memo, spec, name, namespace, meta, status, patch, retry, trigger="event"
    )


@kopf.on.update(IMPORT_PLURAL, group=API_GROUP, version=API_VERSION, field="spec")
async def update_service_account_import(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """Re-point an import whose target changed."""
    logger.info(f"Updating ServiceAccountImport {name} in namespace {namespace}")
    await reconcile_import(
        memo, spec, name, namespace, meta, status, patch, retry, trigger="update"
    )


@kopf.timer(
    IMPORT_PLURAL,
    group=API_GROUP,
    version=API_VERSION,
    interval=operator_settings.resync_interval_seconds,
    initial_delay=operator_settings.resync_interval_seconds,
)
async def resync_service_account_import(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """Periodically re-read the remote token to pick up rotation."""
    logger.debug(f"Resyncing ServiceAccountImport {name} in namespace {namespace}")
    await reconcile_import(
        memo, spec, name, namespace, meta, status, patch, retry, trigger="resync"
    )


@kopf.on.delete(IMPORT_PLURAL, group=API_GROUP, version=API_VERSION, optional=True)
async def forget_service_account_import(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Release per-import state; the mirrored secret goes with its owner."""
    logger.info(f"ServiceAccountImport {name} in namespace {namespace} deleted")
    memo.reconciler.forget(name, namespace)
