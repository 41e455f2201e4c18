"""The RenovateJob resource and its parts.

Kubernetes core objects (env vars, volumes, affinity, security contexts and the
like) are kept as plain JSON-shaped dictionaries.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

GROUP = "renovate-operator.mogenius.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "RenovateJob"


class RenovateProjectStatus(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RenovateJobServiceAccount:
    automount_service_account_token: Optional[bool] = None
    name: str = ""


@dataclass
class RenovateJobSecurityContext:
    pod: Optional[dict[str, Any]] = None
    container: Optional[dict[str, Any]] = None


@dataclass
class RenovateSecretKeyReference:
    name: str = ""
    key: str = ""


@dataclass
class RenovateWebhookAuth:
    enabled: bool = False
    secret_ref: Optional[RenovateSecretKeyReference] = None


@dataclass
class RenovateWebhook:
    enabled: bool = False
    authentication: Optional[RenovateWebhookAuth] = None


@dataclass
class RenovateJobMetadata:
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class RenovateJobSpec:
    schedule: str = ""
    image: str = ""
    discovery_filter: str = ""
    discover_topics: str = ""
    secret_ref: str = ""
    extra_env: list[dict[str, Any]] = field(default_factory=list)
    parallelism: int = 0
    resources: dict[str, Any] = field(default_factory=dict)
    node_selector: dict[str, str] = field(default_factory=dict)
    affinity: Optional[dict[str, Any]] = None
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    topology_spread_constraints: list[dict[str, Any]] = field(default_factory=list)
    service_account: Optional[RenovateJobServiceAccount] = None
    metadata: Optional[RenovateJobMetadata] = None
    security_context: Optional[RenovateJobSecurityContext] = None
    webhook: Optional[RenovateWebhook] = None
    extra_volumes: list[dict[str, Any]] = field(default_factory=list)
    extra_volume_mounts: list[dict[str, Any]] = field(default_factory=list)
    image_pull_secrets: list[dict[str, Any]] = field(default_factory=list)
    dns_policy: str = ""


@dataclass
class ProjectStatus:
    name: str
    status: RenovateProjectStatus
    last_run: Optional[datetime] = None
    duration: Optional[str] = None
    renovate_result_status: Optional[str] = None


@dataclass
class RenovateJobStatus:
    projects: list[ProjectStatus] = field(default_factory=list)


@dataclass
class RenovateJob:
    name: str = ""
    namespace: str = ""
    spec: RenovateJobSpec = field(default_factory=RenovateJobSpec)
    status: RenovateJobStatus = field(default_factory=RenovateJobStatus)
    uid: str = ""
    resource_version: str = ""

    def fullname(self) -> str:
        """Unique name of the job: ``<name>-<namespace>``."""
        return f"{self.name}-{self.namespace}"

    def deep_copy(self) -> "RenovateJob":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Return the resource as a Kubernetes JSON document."""
        metadata = _compact(
            {
                "name": self.name,
                "namespace": self.namespace,
                "uid": self.uid,
                "resourceVersion": self.resource_version,
            }
        )
        return {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": metadata,
            "spec": _spec_to_dict(self.spec),
            "status": _compact(
                {"projects": [_project_to_dict(p) for p in self.status.projects]}
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RenovateJob":
        """Build a job from a Kubernetes JSON document."""
        meta = data.get("metadata") or {}
        status = data.get("status") or {}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            uid=meta.get("uid", ""),
            resource_version=meta.get("resourceVersion", ""),
            spec=_spec_from_dict(data.get("spec") or {}),
            status=RenovateJobStatus(
                projects=[_project_from_dict(p) for p in status.get("projects") or []]
            ),
        )


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != "" and v != [] and v != {}}


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _project_to_dict(project: ProjectStatus) -> dict[str, Any]:
    out: dict[str, Any] = {
        "name": project.name,
        "lastRun": _format_time(project.last_run),
        "status": RenovateProjectStatus(project.status).value,
    }
    if project.duration is not None:
        out["duration"] = project.duration
    if project.renovate_result_status is not None:
        out["renovateResultStatus"] = project.renovate_result_status
    return out


def _project_from_dict(data: dict[str, Any]) -> ProjectStatus:
    return ProjectStatus(
        name=data.get("name", ""),
        status=RenovateProjectStatus(data["status"]),
        last_run=_parse_time(data.get("lastRun")),
        duration=data.get("duration"),
        renovate_result_status=data.get("renovateResultStatus"),
    )


def _spec_to_dict(spec: RenovateJobSpec) -> dict[str, Any]:
    out: dict[str, Any] = {
        "schedule": spec.schedule,
        "parallelism": spec.parallelism,
        "resources": copy.deepcopy(spec.resources),
    }
    out.update(
        _compact(
            {
                "image": spec.image,
                "discoveryFilter": spec.discovery_filter,
                "discoverTopics": spec.discover_topics,
                "secretRef": spec.secret_ref,
                "extraEnv": copy.deepcopy(spec.extra_env),
                "nodeSelector": dict(spec.node_selector),
                "affinity": copy.deepcopy(spec.affinity),
                "tolerations": copy.deepcopy(spec.tolerations),
                "topologySpreadConstraints": copy.deepcopy(spec.topology_spread_constraints),
                "extraVolumes": copy.deepcopy(spec.extra_volumes),
                "extraVolumeMounts": copy.deepcopy(spec.extra_volume_mounts),
                "imagePullSecrets": copy.deepcopy(spec.image_pull_secrets),
                "dnsPolicy": spec.dns_policy,
            }
        )
    )
    if spec.service_account is not None:
        account: dict[str, Any] = {}
        if spec.service_account.automount_service_account_token is not None:
            account["automountServiceAccountToken"] = (
                spec.service_account.automount_service_account_token
            )
        if spec.service_account.name:
            account["name"] = spec.service_account.name
        out["serviceAccount"] = account
    if spec.metadata is not None:
        out["metadata"] = _compact(
            {
                "labels": dict(spec.metadata.labels),
                "annotations": dict(spec.metadata.annotations),
            }
        )
    if spec.security_context is not None:
        context: dict[str, Any] = {}
        if spec.security_context.pod is not None:
            context["pod"] = copy.deepcopy(spec.security_context.pod)
        if spec.security_context.container is not None:
            context["container"] = copy.deepcopy(spec.security_context.container)
        out["securityContext"] = context
    if spec.webhook is not None:
        webhook: dict[str, Any] = {"enabled": spec.webhook.enabled}
        auth = spec.webhook.authentication
        if auth is not None:
            auth_out: dict[str, Any] = {"enabled": auth.enabled}
            if auth.secret_ref is not None:
                auth_out["secretRef"] = _compact(
                    {"name": auth.secret_ref.name, "key": auth.secret_ref.key}
                )
            webhook["authentication"] = auth_out
        out["webhook"] = webhook
    return out


def _spec_from_dict(data: dict[str, Any]) -> RenovateJobSpec:
    service_account = None
    if data.get("serviceAccount") is not None:
        raw = data["serviceAccount"]
        service_account = RenovateJobServiceAccount(
            automount_service_account_token=raw.get("automountServiceAccountToken"),
            name=raw.get("name", ""),
        )
    metadata = None
    if data.get("metadata") is not None:
        raw = data["metadata"]
        metadata = RenovateJobMetadata(
            labels=dict(raw.get("labels") or {}),
            annotations=dict(raw.get("annotations") or {}),
        )
    security_context = None
    if data.get("securityContext") is not None:
        raw = data["securityContext"]
        security_context = RenovateJobSecurityContext(
            pod=copy.deepcopy(raw.get("pod")),
            container=copy.deepcopy(raw.get("container")),
        )
    webhook = None
    if data.get("webhook") is not None:
        raw = data["webhook"]
        authentication = None
        if raw.get("authentication") is not None:
            raw_auth = raw["authentication"]
            secret_ref = None
            if raw_auth.get("secretRef") is not None:
                secret_ref = RenovateSecretKeyReference(
                    name=raw_auth["secretRef"].get("name", ""),
                    key=raw_auth["secretRef"].get("key", ""),
                )
            authentication = RenovateWebhookAuth(
                enabled=bool(raw_auth.get("enabled", False)), secret_ref=secret_ref
            )
        webhook = RenovateWebhook(
            enabled=bool(raw.get("enabled", False)), authentication=authentication
        )
    return RenovateJobSpec(
        schedule=data.get("schedule", ""),
        image=data.get("image", ""),
        discovery_filter=data.get("discoveryFilter", ""),
        discover_topics=data.get("discoverTopics", ""),
        secret_ref=data.get("secretRef", ""),
        extra_env=copy.deepcopy(data.get("extraEnv") or []),
        parallelism=int(data.get("parallelism", 0)),
        resources=copy.deepcopy(data.get("resources") or {}),
        node_selector=dict(data.get("nodeSelector") or {}),
        affinity=copy.deepcopy(data.get("affinity")),
        tolerations=copy.deepcopy(data.get("tolerations") or []),
        topology_spread_constraints=copy.deepcopy(data.get("topologySpreadConstraints") or []),
        service_account=service_account,
        metadata=metadata,
        security_context=security_context,
        webhook=webhook,
        extra_volumes=copy.deepcopy(data.get("extraVolumes") or []),
        extra_volume_mounts=copy.deepcopy(data.get("extraVolumeMounts") or []),
        image_pull_secrets=copy.deepcopy(data.get("imagePullSecrets") or []),
        dns_policy=data.get("dnsPolicy", ""),
    )