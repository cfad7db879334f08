"""Unit tests for client configuration resolution."""

from unittest.mock import patch

import pytest
from kubernetes import client, config

from multicluster_service_account.client_config import (
    config_for_context,
    config_for_import,
    config_for_service_account,
    config_for_sole_import,
    configs_for_all_imports,
    mounted_imports,
    resolve_config,
)
from multicluster_service_account.errors import (
    AmbiguousImportError,
    CredentialReadError,
    NoIdentityError,
    NotMountedError,
)

CONFIG_MODULE = "multicluster_service_account.client_config"


def mount_import(
    root,
    name,
    server="https://cluster2:6443",
    token="remote-token\n",
    namespace="default",
    ca_crt="remote-ca",
):
    directory = root / name
    directory.mkdir(parents=True)
    files = {"server": server, "token": token, "namespace": namespace, "ca.crt": ca_crt}
    for key, value in files.items():
        if value is not None:
            (directory / key).write_text(value)
    return directory


@pytest.fixture
def mount_root(tmp_path):
    root = tmp_path / "serviceaccountimports"
    root.mkdir()
    return root


class TestConfigForImport:
    """Tests for reading one mounted import."""

    def test_reads_mount(self, mount_root):
        directory = mount_import(mount_root, "cluster2-default-pod-lister")

        configuration, namespace = config_for_import(
            "cluster2-default-pod-lister", str(mount_root)
        )

        assert namespace == "default"
        assert configuration.host == "https://cluster2:6443"
        assert configuration.api_key == {"authorization": "remote-token"}
        assert configuration.api_key_prefix == {"authorization": "Bearer"}
        assert configuration.ssl_ca_cert == str(directory / "ca.crt")
        assert configuration.get_api_key_with_prefix("authorization") == (
            "Bearer remote-token"
        )

    def test_namespace_defaults(self, mount_root):
        mount_import(mount_root, "imp", namespace=None)

        _, namespace = config_for_import("imp", str(mount_root))

        assert namespace == "default"

    def test_not_mounted(self, mount_root):
        with pytest.raises(NotMountedError):
            config_for_import("imp", str(mount_root))

    @pytest.mark.parametrize(
        "missing", [{"token": None}, {"server": None}, {"ca_crt": None}, {"token": ""}]
    )
    def test_incomplete_mount(self, mount_root, missing):
        mount_import(mount_root, "imp", **missing)

        with pytest.raises(CredentialReadError):
            config_for_import("imp", str(mount_root))


class TestMountedImports:
    def test_lists_directories_only(self, mount_root):
        mount_import(mount_root, "b")
        mount_import(mount_root, "a")
        (mount_root / ".hidden").mkdir()
        (mount_root / "stray-file").write_text("x")

        assert mounted_imports(str(mount_root)) == ["a", "b"]

    def test_missing_root(self, tmp_path):
        assert mounted_imports(str(tmp_path / "nope")) == []


class TestSoleAndAll:
    """Tests for the sole-import and all-imports helpers."""

    def test_sole(self, mount_root):
        mount_import(mount_root, "imp", server="https://only:6443")

        configuration, _ = config_for_sole_import(str(mount_root))

        assert configuration.host == "https://only:6443"

    def test_sole_nothing_mounted(self, mount_root):
        with pytest.raises(NotMountedError):
            config_for_sole_import(str(mount_root))

    def test_sole_ambiguous(self, mount_root):
        mount_import(mount_root, "a")
        mount_import(mount_root, "b")

        with pytest.raises(AmbiguousImportError) as exc_info:
            config_for_sole_import(str(mount_root))

        assert exc_info.value.names == ["a", "b"]

    def test_all(self, mount_root):
        mount_import(mount_root, "a", server="https://a:6443")
        mount_import(mount_root, "b", server="https://b:6443", namespace="team-b")

        configs = configs_for_all_imports(str(mount_root))

        assert sorted(configs) == ["a", "b"]
        assert configs["b"][0].host == "https://b:6443"
        assert configs["b"][1] == "team-b"

    def test_all_fails_on_one_bad_import(self, mount_root):
        mount_import(mount_root, "a")
        mount_import(mount_root, "b", token=None)

        with pytest.raises(CredentialReadError):
            configs_for_all_imports(str(mount_root))

    def test_all_empty(self, mount_root):
        assert configs_for_all_imports(str(mount_root)) == {}


def fake_load_kube_config(config_file, context, client_configuration, persist_config):
    client_configuration.host = f"https://{context}:6443"


CONTEXTS = [
    {"name": "cluster1", "context": {"cluster": "c1", "namespace": "team-a"}},
    {"name": "cluster2", "context": {"cluster": "c2"}},
]


class TestConfigForContext:
    """Tests for kubeconfig contexts."""

    def test_current_context(self):
        with (
            patch(
                f"{CONFIG_MODULE}.config.list_kube_config_contexts",
                return_value=(CONTEXTS, CONTEXTS[0]),
            ),
            patch(
                f"{CONFIG_MODULE}.config.load_kube_config",
                side_effect=fake_load_kube_config,
            ),
        ):
            configuration, namespace = config_for_context()

        assert configuration.host == "https://cluster1:6443"
        assert namespace == "team-a"

    def test_named_context(self):
        with (
            patch(
                f"{CONFIG_MODULE}.config.list_kube_config_contexts",
                return_value=(CONTEXTS, CONTEXTS[0]),
            ),
            patch(
                f"{CONFIG_MODULE}.config.load_kube_config",
                side_effect=fake_load_kube_config,
            ),
        ):
            configuration, namespace = config_for_context("cluster2")

        assert configuration.host == "https://cluster2:6443"
        assert namespace == "default"

    def test_unknown_context(self):
        with patch(
            f"{CONFIG_MODULE}.config.list_kube_config_contexts",
            return_value=(CONTEXTS, CONTEXTS[0]),
        ):
            with pytest.raises(config.ConfigException):
                config_for_context("cluster9")


class TestConfigForServiceAccount:
    def test_reads_namespace(self, tmp_path):
        (tmp_path / "namespace").write_text("team-a\n")

        with patch(f"{CONFIG_MODULE}.config.load_incluster_config") as load:
            _, namespace = config_for_service_account(str(tmp_path))

        assert namespace == "team-a"
        assert isinstance(
            load.call_args.kwargs["client_configuration"], client.Configuration
        )


class TestResolveConfig:
    """Tests for the fallback chain."""

    def test_prefers_mounted_import(self, mount_root):
        mount_import(mount_root, "imp", server="https://imported:6443")

        with patch(f"{CONFIG_MODULE}.config.list_kube_config_contexts") as contexts:
            configuration, _ = resolve_config(mount_root=str(mount_root))

        assert configuration.host == "https://imported:6443"
        contexts.assert_not_called()

    def test_falls_back_to_context(self, mount_root):
        with (
            patch(
                f"{CONFIG_MODULE}.config.list_kube_config_contexts",
                return_value=(CONTEXTS, CONTEXTS[0]),
            ),
            patch(
                f"{CONFIG_MODULE}.config.load_kube_config",
                side_effect=fake_load_kube_config,
            ),
        ):
            configuration, namespace = resolve_config(
                "cluster2", mount_root=str(mount_root)
            )

        assert configuration.host == "https://cluster2:6443"
        assert namespace == "default"

    def test_falls_back_to_service_account(self, mount_root):
        in_cluster = (client.Configuration(), "team-a")
        with (
            patch(
                f"{CONFIG_MODULE}.config.list_kube_config_contexts",
                side_effect=config.ConfigException("no kubeconfig"),
            ),
            patch(
                f"{CONFIG_MODULE}.config_for_service_account",
                return_value=in_cluster,
            ),
        ):
            result = resolve_config(mount_root=str(mount_root))

        assert result == in_cluster

    def test_no_identity(self, mount_root):
        with (
            patch(
                f"{CONFIG_MODULE}.config.list_kube_config_contexts",
                side_effect=config.ConfigException("no kubeconfig"),
            ),
            patch(
                f"{CONFIG_MODULE}.config.load_incluster_config",
                side_effect=config.ConfigException("not in a cluster"),
            ),
        ):
            with pytest.raises(NoIdentityError):
                resolve_config(mount_root=str(mount_root))

    def test_ambiguous_mount_does_not_fall_through(self, mount_root):
        mount_import(mount_root, "a")
        mount_import(mount_root, "b")

        with patch(f"{CONFIG_MODULE}.config.list_kube_config_contexts") as contexts:
            with pytest.raises(AmbiguousImportError):
                resolve_config(mount_root=str(mount_root))

        contexts.assert_not_called()
