"""Kubernetes-safe names for the discovery and executor jobs."""

from __future__ import annotations

import hashlib
from typing import Protocol


class _Named(Protocol):
    name: str


_MAX_EXECUTOR_PREFIX = 54
_MAX_DISCOVERY_BASE = 44


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:8]


def _truncate(value: str, limit: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value
    return encoded[:limit].decode("utf-8", errors="ignore")


def kubernetes_compatible_name(name: str) -> str:
    """Replace ``/``, ``_`` and ``.`` with ``-`` and lower-case the result."""
    for char in "/_.":
        name = name.replace(char, "-")
    return name.lower()


def executor_job_name(job: _Named, project: str) -> str:
    """Name of the executor job for ``project``, trimmed and suffixed with a hash."""
    full_name = kubernetes_compatible_name(f"{job.name}-{project}")
    digest = _short_hash(full_name)
    return f"{_truncate(full_name, _MAX_EXECUTOR_PREFIX)}-{digest}"


def discovery_job_name(job: _Named) -> str:
    """Name of the discovery job, trimmed and suffixed with a hash."""
    base_name = kubernetes_compatible_name(job.name)
    digest = _short_hash(f"{base_name}-discovery")
    return f"{_truncate(base_name, _MAX_DISCOVERY_BASE)}-discovery-{digest}"


def legacy_executor_job_name(job: _Named, project: str) -> str:
    """Executor job name of the older naming scheme, without hash or trimming."""
    return kubernetes_compatible_name(f"{job.name}-{project}")


def legacy_discovery_job_name(job: _Named) -> str:
    """Discovery job name of the older naming scheme."""
    return f"{job.name}-discovery"