"""Access to the Kubernetes API shared by the whole process."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from typing import Optional

from .assertion import assert_that
from .job_manager import KubeClient

_KUBECONFIG_ENV = "KUBECONFIG"


def kubernetes_config_path() -> str:
    """Return the kubeconfig path from ``KUBECONFIG``, or an empty string when unset."""
    return os.environ.get(_KUBECONFIG_ENV, "")


def runs_in_cluster() -> bool:
    """True when no kubeconfig is configured, so the in-cluster configuration applies."""
    return kubernetes_config_path() == ""


@dataclass
class ClientProvider:
    """Holds the Kubernetes API client and the configuration it was built from."""

    client: KubeClient
    config_path: str = field(default_factory=kubernetes_config_path)


class _ProviderSlot:
    """Thread-safe holder of the process-wide provider."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._provider: Optional[ClientProvider] = None

    def swap(self, provider: Optional[ClientProvider]) -> Optional[ClientProvider]:
        with self._lock:
            previous, self._provider = self._provider, provider
            return previous

    def get(self) -> Optional[ClientProvider]:
        with self._lock:
            return self._provider


_slot = _ProviderSlot()


def set_static_client_provider(provider: Optional[ClientProvider]) -> Optional[ClientProvider]:
    """Install ``provider`` as the process-wide provider and return the one it replaces.

    ``None`` clears it.
    """
    if provider is not None and not isinstance(provider, ClientProvider):
        raise TypeError(f"expected a ClientProvider, got {type(provider).__name__}")
    return _slot.swap(provider)


def static_client_provider() -> ClientProvider:
    """Return the process-wide provider; it must have been set before."""
    provider = _slot.get()
    assert_that(
        provider is not None,
        "StaticClientProvider must be initialized before usage",
    )
    return provider