"""
Error handling module for the multicluster service account operator.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    AdmissionError,
    AmbiguousImportError,
    CredentialReadError,
    ExternalServiceError,
    ImportNotReadyError,
    KubernetesAPIError,
    NoIdentityError,
    NotMountedError,
    OperatorError,
    RemoteAuthError,
    RemoteClusterError,
    RemoteClusterNotFoundError,
    RemoteStateMissingError,
    RemoteUnreachableError,
    ResolverError,
    TemporaryError,
    ValidationError,
    WriteConflictError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "RemoteClusterError",
    "RemoteClusterNotFoundError",
    "RemoteAuthError",
    "RemoteUnreachableError",
    "RemoteStateMissingError",
    "WriteConflictError",
    "AdmissionError",
    "ImportNotReadyError",
    "ResolverError",
    "NotMountedError",
    "AmbiguousImportError",
    "CredentialReadError",
    "NoIdentityError",
]
