"""Kubernetes Job manifests for discovery and Renovate runs."""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Optional

from .api import RenovateJob, RenovateJobMetadata, RenovateJobSpec
from .config import get_value
from .job_manager import JOB_LABEL_NAME, JOB_LABEL_TYPE, JobType
from .job_names import discovery_job_name, executor_job_name

_INTEGER = re.compile(r"[+-]?[0-9]+")
_DEFAULT_USER = 12021
_DEFAULT_TIMEOUT_SECONDS = 1800
_DEFAULT_BACKOFF_LIMIT = 1800
_DEFAULT_DNS_POLICY = "ClusterFirst"
_DISCOVERY_SCRIPT = (
    "renovate --autodiscover --write-discovered-repos /tmp/repos.json "
    ">> /tmp/logs.json 2>&1 && cat /tmp/repos.json || cat /tmp/logs.json"
)


def _parse_integer(text: str, bits: int) -> Optional[int]:
    if not _INTEGER.fullmatch(text):
        return None
    value = int(text)
    limit = 1 << (bits - 1)
    if not -limit <= value < limit:
        return None
    return value


def _prune(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in values.items()
        if value is not None
        and not (isinstance(value, str) and value == "")
        and not (isinstance(value, (list, dict)) and not value)
    }


def _env(name: str, value: str) -> dict[str, Any]:
    return {"name": name, "value": value}


def get_pod_security_context(spec: RenovateJobSpec) -> dict[str, Any]:
    """The pod security context from the spec, or a restrictive non-root default."""
    if spec.security_context is not None and spec.security_context.pod is not None:
        return copy.deepcopy(spec.security_context.pod)
    return {
        "runAsUser": _DEFAULT_USER,
        "runAsGroup": _DEFAULT_USER,
        "fsGroup": _DEFAULT_USER,
        "runAsNonRoot": True,
        "seccompProfile": {"type": "RuntimeDefault"},
    }


def get_container_security_context(spec: RenovateJobSpec) -> dict[str, Any]:
    """The container security context from the spec, or a restrictive non-root default."""
    if spec.security_context is not None and spec.security_context.container is not None:
        return copy.deepcopy(spec.security_context.container)
    return {
        "runAsUser": _DEFAULT_USER,
        "runAsGroup": _DEFAULT_USER,
        "runAsNonRoot": True,
        "seccompProfile": {"type": "RuntimeDefault"},
        "readOnlyRootFilesystem": False,
        "privileged": False,
        "allowPrivilegeEscalation": False,
        "capabilities": {"drop": ["ALL"]},
    }


def get_auto_mount_service_account_token(spec: RenovateJobSpec) -> bool:
    """Whether to mount the service account token; off unless the spec says otherwise."""
    account = spec.service_account
    if account is not None and account.automount_service_account_token is not None:
        return account.automount_service_account_token
    return False


def get_service_account_name(spec: RenovateJobSpec) -> str:
    return spec.service_account.name if spec.service_account is not None else ""


def get_job_timeout_seconds() -> int:
    """``JOB_TIMEOUT_SECONDS`` as an integer, 1800 when it is not a valid integer."""
    value = _parse_integer(get_value("JOB_TIMEOUT_SECONDS"), 64)
    return _DEFAULT_TIMEOUT_SECONDS if value is None else value


def get_job_backoff_limit() -> int:
    """``JOB_BACKOFF_LIMIT`` as an integer, 1800 when it is not a valid 32-bit integer."""
    value = _parse_integer(get_value("JOB_BACKOFF_LIMIT"), 32)
    return _DEFAULT_BACKOFF_LIMIT if value is None else value


def get_job_ttl_seconds_after_finished() -> Optional[int]:
    """``JOB_TTL_SECONDS_AFTER_FINISHED`` as an integer; ``None`` for -1 or invalid values."""
    raw = get_value("JOB_TTL_SECONDS_AFTER_FINISHED")
    if raw == "-1":
        return None
    return _parse_integer(raw, 32)


def get_job_labels(
    metadata: Optional[RenovateJobMetadata], job_type: JobType, job_name: str
) -> dict[str, str]:
    """The operator's type and name labels, overlaid with the labels from ``metadata``."""
    labels = {
        JOB_LABEL_TYPE: JobType(job_type).value,
        JOB_LABEL_NAME: job_name,
    }
    if metadata is not None:
        labels.update(metadata.labels)
    return labels


def get_default_image_pull_secrets() -> list[dict[str, Any]]:
    """Image pull secrets configured for the operator in ``IMAGE_PULL_SECRETS`` (a JSON list)."""
    raw = get_value("IMAGE_PULL_SECRETS")
    if raw in ("", "[]"):
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    if parsed is None:
        return []
    if not isinstance(parsed, list):
        return []
    secrets = []
    for entry in parsed:
        if entry is None:
            secrets.append({})
            continue
        if not isinstance(entry, dict):
            return []
        name = None
        for key, value in entry.items():
            if key.lower() == "name":
                name = value
        if name is not None and not isinstance(name, str):
            return []
        secrets.append({"name": name} if name else {})
    return secrets


def get_dns_policy(spec: RenovateJobSpec) -> str:
    return spec.dns_policy or _DEFAULT_DNS_POLICY


def merge_env_vars(
    extra_env: list[dict[str, Any]], predefined_env: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Extra env vars first, then predefined ones whose names the extra ones do not use."""
    extra_names = {env.get("name") for env in extra_env}
    merged = [copy.deepcopy(env) for env in extra_env]
    merged.extend(
        copy.deepcopy(env) for env in predefined_env if env.get("name") not in extra_names
    )
    return merged


def _env_from_secret(spec: RenovateJobSpec) -> list[dict[str, Any]]:
    if not spec.secret_ref:
        return []
    return [{"secretRef": {"name": spec.secret_ref}}]


def _build_job(
    job: RenovateJob,
    *,
    job_name: str,
    job_type: JobType,
    container_name: str,
    command: list[str],
    args: list[str],
    predefined_env: list[dict[str, Any]],
    with_ttl: bool,
) -> dict[str, Any]:
    spec = job.spec

    container = _prune(
        {
            "name": container_name,
            "command": command,
            "args": args,
            "image": spec.image,
            "env": merge_env_vars(spec.extra_env, predefined_env),
            "envFrom": _env_from_secret(spec),
            "resources": copy.deepcopy(spec.resources),
            "volumeMounts": [{"name": "tmp", "mountPath": "/tmp"}]
            + copy.deepcopy(spec.extra_volume_mounts),
            "securityContext": get_container_security_context(spec),
        }
    )

    pod_spec = _prune(
        {
            "serviceAccountName": get_service_account_name(spec),
            "imagePullSecrets": copy.deepcopy(spec.image_pull_secrets)
            + get_default_image_pull_secrets(),
            "terminationGracePeriodSeconds": 0,
            "containers": [container],
            "securityContext": get_pod_security_context(spec),
            "automountServiceAccountToken": get_auto_mount_service_account_token(spec),
            "restartPolicy": "OnFailure",
            "dnsPolicy": get_dns_policy(spec),
            "nodeSelector": dict(spec.node_selector),
            "affinity": copy.deepcopy(spec.affinity),
            "tolerations": copy.deepcopy(spec.tolerations),
            "topologySpreadConstraints": copy.deepcopy(spec.topology_spread_constraints),
            "volumes": [{"name": "tmp", "emptyDir": {}}] + copy.deepcopy(spec.extra_volumes),
        }
    )

    annotations = dict(spec.metadata.annotations) if spec.metadata is not None else {}
    labels = get_job_labels(spec.metadata, job_type, job_name)

    job_spec: dict[str, Any] = {
        "activeDeadlineSeconds": get_job_timeout_seconds(),
        "backoffLimit": get_job_backoff_limit(),
    }
    if with_ttl:
        ttl = get_job_ttl_seconds_after_finished()
        if ttl is not None:
            job_spec["ttlSecondsAfterFinished"] = ttl
    job_spec["template"] = {
        "metadata": _prune({"labels": dict(labels), "annotations": dict(annotations)}),
        "spec": pod_spec,
    }

    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _prune(
            {
                "generateName": job_name,
                "namespace": job.namespace,
                "labels": dict(labels),
                "annotations": dict(annotations),
            }
        ),
        "spec": job_spec,
    }


def new_discovery_job(job: RenovateJob) -> dict[str, Any]:
    """Job manifest that lists the repositories Renovate can discover for ``job``."""
    predefined = [_env("LOG_FORMAT", "json"), _env("NODE_NO_WARNINGS", "1")]
    if job.spec.discovery_filter:
        predefined.append(_env("RENOVATE_AUTODISCOVER_FILTER", job.spec.discovery_filter))
    if job.spec.discover_topics:
        predefined.append(_env("RENOVATE_AUTODISCOVER_TOPICS", job.spec.discover_topics))
    return _build_job(
        job,
        job_name=discovery_job_name(job),
        job_type=JobType.DISCOVERY,
        container_name="discovery",
        command=["/bin/sh", "-c"],
        args=[_DISCOVERY_SCRIPT],
        predefined_env=predefined,
        with_ttl=False,
    )


def new_renovate_job(job: RenovateJob, project: str) -> dict[str, Any]:
    """Job manifest that runs Renovate on ``project``."""
    return _build_job(
        job,
        job_name=executor_job_name(job, project),
        job_type=JobType.EXECUTOR,
        container_name="renovate",
        command=["renovate"],
        args=["--base-dir", "/tmp", project],
        predefined_env=[_env("LOG_FORMAT", "json")],
        with_ttl=True,
    )