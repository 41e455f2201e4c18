import pytest

from renovate_operator.assertion import AssertionFailure
from renovate_operator.client_provider import (
    ClientProvider,
    kubernetes_config_path,
    runs_in_cluster,
    set_static_client_provider,
    static_client_provider,
)
from renovate_operator.job_manager import KubeClient


@pytest.fixture(autouse=True)
def _reset_provider():
    set_static_client_provider(None)
    yield
    set_static_client_provider(None)


def test_static_provider_returns_installed_provider():
    provider = ClientProvider(client=KubeClient(), config_path="/tmp/test-cluster.yaml")
    set_static_client_provider(provider)

    got = static_client_provider()
    assert got is provider
    assert got.config_path == "/tmp/test-cluster.yaml"


def test_static_provider_client_is_usable():
    client = KubeClient()
    set_static_client_provider(ClientProvider(client=client, config_path=""))
    assert static_client_provider().client is client


def test_static_provider_without_initialization_fails():
    with pytest.raises(AssertionFailure) as info:
        static_client_provider()
    assert "StaticClientProvider must be initialized before usage" in info.value.messages


def test_runs_in_cluster_without_kubeconfig(monkeypatch):
    monkeypatch.delenv("KUBECONFIG", raising=False)
    assert runs_in_cluster() is True
    assert kubernetes_config_path() == ""


def test_runs_outside_cluster_with_kubeconfig(monkeypatch):
    monkeypatch.setenv("KUBECONFIG", "/home/user/.kube/config")
    assert runs_in_cluster() is False
    assert kubernetes_config_path() == "/home/user/.kube/config"


def test_provider_defaults_config_path_from_environment(monkeypatch):
    monkeypatch.setenv("KUBECONFIG", "/etc/kube/config")
    provider = ClientProvider(client=KubeClient())
    assert provider.config_path == "/etc/kube/config"