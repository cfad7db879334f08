"""
Pydantic models for ServiceAccountImport resources.

This module defines type-safe data models for the import specification, its
status, and the credential that is mirrored from the remote cluster.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..constants import (
    KEY_CA_CRT,
    KEY_NAMESPACE,
    KEY_SERVER,
    KEY_TOKEN,
    PHASE_PENDING,
)


class ServiceAccountImportSpec(BaseModel):
    """Targeting fields of a ServiceAccountImport."""

    model_config = {"populate_by_name": True}

    cluster_name: str = Field(
        ..., alias="clusterName", description="Name of the remote cluster"
    )
    namespace: str = Field(
        ..., description="Namespace of the service account in the remote cluster"
    )
    name: str = Field(..., description="Name of the remote service account")

    @field_validator("cluster_name", "namespace", "name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @property
    def target(self) -> str:
        """Human readable remote target, e.g. ``cluster2/default/pod-lister``."""
        return f"{self.cluster_name}/{self.namespace}/{self.name}"


class SecretReference(BaseModel):
    """Reference to a locally mirrored secret."""

    name: str = Field(..., description="Name of the mirrored secret")


class ServiceAccountImportStatus(BaseModel):
    """Status of a ServiceAccountImport as published by the controller."""

    model_config = {"populate_by_name": True}

    secrets: list[SecretReference] = Field(
        default_factory=list, description="Mirrored secrets, first one is mounted"
    )
    phase: str = Field(PHASE_PENDING, description="Pending, Syncing, Ready or Error")
    message: str | None = Field(None, description="Human readable status message")
    observed_generation: int | None = Field(
        None, alias="observedGeneration", description="Last reconciled generation"
    )
    conditions: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "ServiceAccountImportStatus":
        """Build the status model from a raw custom object."""
        return cls.model_validate(resource.get("status") or {})

    @property
    def first_secret_name(self) -> str | None:
        return self.secrets[0].name if self.secrets else None


class MirroredCredential(BaseModel):
    """
    Credential copied from a remote service account token secret.

    ``token`` and ``ca_crt`` hold the base64 values exactly as they appear in
    the remote secret so that they are copied verbatim; ``namespace`` and
    ``server`` are plain strings.
    """

    token: str = Field(..., description="Base64 encoded bearer token")
    ca_crt: str = Field(..., description="Base64 encoded remote API CA certificate")
    namespace: str = Field(..., description="Remote namespace")
    server: str = Field(..., description="Remote API server URL")
    source_secret: str = Field(..., description="Name of the remote token secret")

    def to_secret_data(self) -> dict[str, str]:
        """Render the credential as base64 secret data."""
        from ..utils.kubernetes import b64encode

        return {
            KEY_TOKEN: self.token,
            KEY_NAMESPACE: b64encode(self.namespace),
            KEY_SERVER: b64encode(self.server),
            KEY_CA_CRT: self.ca_crt,
        }
