"""
Constants used throughout the multicluster service account operator.

This module defines all constant values used by the operator including:
- API group, version and plural of the ServiceAccountImport resource
- Pod annotation, mirrored secret labels and data keys
- Mount paths for imported credentials
- Status phase and condition constants
"""

# Authority and API coordinates of the ServiceAccountImport custom resource
AUTHORITY = "admiralty.io"
API_GROUP = f"multicluster.{AUTHORITY}"
API_VERSION = "v1alpha1"
IMPORT_KIND = "ServiceAccountImport"
IMPORT_PLURAL = "serviceaccountimports"
IMPORT_CRD_NAME = f"{IMPORT_PLURAL}.{API_GROUP}"

# Pod annotation listing the imports to mount (comma-separated, per pod namespace)
ANNOTATION_SERVICE_ACCOUNT_IMPORT_NAME = f"{API_GROUP}/service-account-import.name"

# Label on mirrored secrets pointing back to the owning import
LABEL_SERVICE_ACCOUNT_IMPORT_NAME = f"{API_GROUP}/service-account-import.name"

# Label on bootstrap secrets deposited by the bootstrap procedure
LABEL_REMOTE_CLUSTER_NAME = f"{API_GROUP}/remote-cluster-name"

# Annotations on mirrored secrets recording where the credential came from
ANNOTATION_SOURCE_CLUSTER = f"{API_GROUP}/source-cluster"
ANNOTATION_SOURCE_SECRET = f"{API_GROUP}/source-secret"

# Data keys shared by mirrored secrets, bootstrap secrets and mounted volumes
KEY_TOKEN = "token"
KEY_NAMESPACE = "namespace"
KEY_SERVER = "server"
KEY_CA_CRT = "ca.crt"

# Mount paths
IMPORT_MOUNT_ROOT = f"/var/run/secrets/{AUTHORITY}/serviceaccountimports"
SERVICE_ACCOUNT_MOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"

# Kubernetes service account token secrets
SERVICE_ACCOUNT_TOKEN_TYPE = "kubernetes.io/service-account-token"
SERVICE_ACCOUNT_NAME_ANNOTATION = "kubernetes.io/service-account.name"

# Mirrored secret naming
MIRRORED_SECRET_INFIX = "-token-"
MIRRORED_SECRET_SUFFIX_LENGTH = 5

# Status phase constants
PHASE_PENDING = "Pending"
PHASE_SYNCING = "Syncing"
PHASE_READY = "Ready"
PHASE_ERROR = "Error"

# Condition type constants (following Kubernetes conventions)
CONDITION_READY = "Ready"
CONDITION_SYNCING = "Syncing"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Admission webhook (kopf serves it at /<handler id>)
WEBHOOK_MUTATE_PODS_ID = "mutate-pods"

# Admission status codes
ADMISSION_CODE_NOT_READY = 403
ADMISSION_CODE_INTERNAL = 500

# Default configuration values
DEFAULT_REMOTE_NAMESPACE = "default"
DEFAULT_RETRY_DELAY = 5

# Error message templates
ERROR_IMPORT_NOT_FOUND = "cannot find service account import {} in namespace {}"
ERROR_IMPORT_NOT_READY = (
    "service account import {} in namespace {} has no token, verify that the "
    "remote service account exists or retry when the secret has been created "
    "by the service account import controller"
)
ERROR_REMOTE_SERVICE_ACCOUNT_MISSING = (
    "service account {} not found in namespace {} of cluster {}"
)
ERROR_REMOTE_TOKEN_MISSING = (
    "service account {} in namespace {} of cluster {} has no token secret"
)

# Success message templates
SUCCESS_MIRRORED = "Mirrored token of service account {}/{} from cluster {}"
