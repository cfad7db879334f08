"""Unit tests for ServiceAccountImport pydantic models."""

import base64

import pytest
from pydantic import ValidationError

from multicluster_service_account.models.service_account_import import (
    MirroredCredential,
    ServiceAccountImportSpec,
    ServiceAccountImportStatus,
)


class TestServiceAccountImportSpec:
    """Tests for the import spec model."""

    def test_camel_case_alias(self):
        spec = ServiceAccountImportSpec.model_validate(
            {"clusterName": "cluster2", "namespace": "default", "name": "pod-lister"}
        )
        assert spec.cluster_name == "cluster2"
        assert spec.target == "cluster2/default/pod-lister"

    def test_populate_by_name(self):
        spec = ServiceAccountImportSpec(
            cluster_name="cluster2", namespace="default", name="pod-lister"
        )
        assert spec.model_dump(by_alias=True)["clusterName"] == "cluster2"

    @pytest.mark.parametrize("field", ["clusterName", "namespace", "name"])
    def test_missing_field_rejected(self, field):
        data = {"clusterName": "cluster2", "namespace": "default", "name": "sa"}
        del data[field]
        with pytest.raises(ValidationError):
            ServiceAccountImportSpec.model_validate(data)

    def test_blank_field_rejected(self):
        with pytest.raises(ValidationError):
            ServiceAccountImportSpec.model_validate(
                {"clusterName": "  ", "namespace": "default", "name": "sa"}
            )


class TestServiceAccountImportStatus:
    """Tests for reading status out of raw custom objects."""

    def test_empty_resource(self):
        status = ServiceAccountImportStatus.from_resource({})
        assert status.secrets == []
        assert status.phase == "Pending"
        assert status.first_secret_name is None

    def test_first_secret_name(self):
        status = ServiceAccountImportStatus.from_resource(
            {
                "status": {
                    "secrets": [{"name": "a-token-abcde"}, {"name": "b"}],
                    "phase": "Ready",
                    "observedGeneration": 3,
                }
            }
        )
        assert status.first_secret_name == "a-token-abcde"
        assert status.observed_generation == 3

    def test_null_status(self):
        assert ServiceAccountImportStatus.from_resource({"status": None}).secrets == []


class TestMirroredCredential:
    """Tests for rendering mirrored secret data."""

    def test_to_secret_data(self):
        credential = MirroredCredential(
            token="dG9rZW4=",
            ca_crt="Y2E=",
            namespace="default",
            server="https://cluster2:6443",
            source_secret="pod-lister-token-xyz",
        )
        data = credential.to_secret_data()

        # token and ca.crt are copied verbatim
        assert data["token"] == "dG9rZW4="
        assert data["ca.crt"] == "Y2E="
        assert base64.b64decode(data["namespace"]).decode() == "default"
        assert base64.b64decode(data["server"]).decode() == "https://cluster2:6443"
        assert set(data) == {"token", "ca.crt", "namespace", "server"}

