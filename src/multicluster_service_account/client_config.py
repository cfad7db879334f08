"""
Client configuration for workloads using imported service accounts.

Pods annotated with service account imports get each imported credential
mounted under ``/var/run/secrets/admiralty.io/serviceaccountimports/<name>``
(files ``token``, ``namespace``, ``server`` and ``ca.crt``). The functions in
this module turn such a mount into a :class:`kubernetes.client.Configuration`
plus the remote namespace to work in:

- :func:`config_for_import` reads one import by name;
- :func:`config_for_sole_import` reads the only mounted import;
- :func:`configs_for_all_imports` reads every mounted import;
- :func:`resolve_config` tries the sole import, then a kubeconfig context,
  then the pod's own service account, so one binary works both out of
  cluster and in cluster.

Usage:
    from kubernetes import client
    from multicluster_service_account.client_config import resolve_config

    configuration, namespace = resolve_config()
    pods = client.CoreV1Api(client.ApiClient(configuration)).list_namespaced_pod(
        namespace
    )
"""

import logging
from pathlib import Path

from kubernetes import client, config

from .constants import (
    DEFAULT_REMOTE_NAMESPACE,
    IMPORT_MOUNT_ROOT,
    KEY_CA_CRT,
    KEY_NAMESPACE,
    KEY_SERVER,
    KEY_TOKEN,
    SERVICE_ACCOUNT_MOUNT_PATH,
)
from .errors import (
    AmbiguousImportError,
    CredentialReadError,
    NoIdentityError,
    NotMountedError,
)

logger = logging.getLogger(__name__)

ConfigAndNamespace = tuple[client.Configuration, str]


def mounted_imports(mount_root: str = IMPORT_MOUNT_ROOT) -> list[str]:
    """Names of the service account imports mounted under ``mount_root``."""
    root = Path(mount_root)
    if not root.is_dir():
        return []
    return sorted(
        entry.name
        for entry in root.iterdir()
        if entry.is_dir() and not entry.name.startswith(".")
    )


def config_for_import(
    name: str, mount_root: str = IMPORT_MOUNT_ROOT
) -> ConfigAndNamespace:
    """
    Build the client configuration of one mounted service account import.

    Args:
        name: Name of the ServiceAccountImport
        mount_root: Directory holding one subdirectory per mounted import

    Returns:
        Tuple of (configuration, remote namespace)

    Raises:
        NotMountedError: the import is not mounted
        CredentialReadError: the mount is incomplete or unreadable
    """
    directory = Path(mount_root) / name
    if not directory.is_dir():
        raise NotMountedError(
            f"service account import {name} is not mounted at {directory}"
        )

    try:
        token = (directory / KEY_TOKEN).read_text().strip()
        server = (directory / KEY_SERVER).read_text().strip()
        namespace_file = directory / KEY_NAMESPACE
        namespace = (
            namespace_file.read_text().strip() if namespace_file.exists() else ""
        )
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialReadError(
            f"cannot read service account import {name}: {e}"
        ) from e

    ca_file = directory / KEY_CA_CRT
    if not token or not server or not ca_file.is_file():
        raise CredentialReadError(
            f"service account import {name} at {directory} is incomplete, "
            f"expected {KEY_TOKEN}, {KEY_SERVER} and {KEY_CA_CRT}"
        )

    configuration = client.Configuration()
    configuration.host = server
    configuration.api_key = {"authorization": token}
    configuration.api_key_prefix = {"authorization": "Bearer"}
    configuration.ssl_ca_cert = str(ca_file)
    return configuration, namespace or DEFAULT_REMOTE_NAMESPACE


def config_for_sole_import(mount_root: str = IMPORT_MOUNT_ROOT) -> ConfigAndNamespace:
    """
    Build the client configuration of the only mounted import.

    Raises:
        NotMountedError: no import is mounted
        AmbiguousImportError: more than one import is mounted
    """
    names = mounted_imports(mount_root)
    if not names:
        raise NotMountedError(f"no service account import is mounted at {mount_root}")
    if len(names) > 1:
        raise AmbiguousImportError(names)
    return config_for_import(names[0], mount_root)


def configs_for_all_imports(
    mount_root: str = IMPORT_MOUNT_ROOT,
) -> dict[str, ConfigAndNamespace]:
    """
    Build client configurations for every mounted import, keyed by name.

    Any unreadable import fails the whole call.
    """
    return {name: config_for_import(name, mount_root) for name in mounted_imports(mount_root)}


def config_for_context(
    context: str | None = None, config_file: str | None = None
) -> ConfigAndNamespace:
    """
    Build a client configuration from a kubeconfig context.

    Args:
        context: Context name, the current context when None
        config_file: Kubeconfig path, ``$KUBECONFIG`` or ``~/.kube/config`` when None

    Raises:
        config.ConfigException: no kubeconfig or no such context
    """
    contexts, active = config.list_kube_config_contexts(config_file=config_file)
    if context is None:
        selected = active
    else:
        selected = next((c for c in contexts or [] if c["name"] == context), None)
    if not selected:
        raise config.ConfigException(f"kubeconfig context {context} not found")

    configuration = client.Configuration()
    config.load_kube_config(
        config_file=config_file,
        context=selected["name"],
        client_configuration=configuration,
        persist_config=False,
    )
    namespace = selected.get("context", {}).get("namespace") or DEFAULT_REMOTE_NAMESPACE
    return configuration, namespace


def config_for_service_account(
    mount_path: str = SERVICE_ACCOUNT_MOUNT_PATH,
) -> ConfigAndNamespace:
    """
    Build a client configuration from the pod's own service account.

    Raises:
        config.ConfigException: not running in a cluster
    """
    configuration = client.Configuration()
    config.load_incluster_config(client_configuration=configuration)

    namespace_file = Path(mount_path) / KEY_NAMESPACE
    try:
        namespace = namespace_file.read_text().strip()
    except OSError:
        namespace = ""
    return configuration, namespace or DEFAULT_REMOTE_NAMESPACE


def resolve_config(
    context: str | None = None,
    mount_root: str = IMPORT_MOUNT_ROOT,
    config_file: str | None = None,
) -> ConfigAndNamespace:
    """
    Resolve a client configuration through the fallback chain.

    1. the sole mounted service account import;
    2. a kubeconfig context (``context``, or the current one);
    3. the pod's own service account.

    Only the absence of an import falls through to the next step: an
    ambiguous or unreadable mount is an error.

    Raises:
        AmbiguousImportError: several imports are mounted
        CredentialReadError: the mounted import is unreadable
        NoIdentityError: none of the three sources is available
    """
    try:
        result = config_for_sole_import(mount_root)
    except NotMountedError:
        pass
    else:
        logger.debug("Using the mounted service account import")
        return result

    try:
        result = config_for_context(context, config_file)
    except config.ConfigException as e:
        logger.debug(f"No usable kubeconfig context: {e}")
    else:
        logger.debug("Using kubeconfig context")
        return result

    try:
        result = config_for_service_account()
    except config.ConfigException as e:
        raise NoIdentityError(
            "no service account import is mounted, no kubeconfig context is "
            f"available and not running in a cluster: {e}"
        ) from e
    logger.debug("Using the in-cluster service account")
    return result
