"""Kubernetes jobs labelled by this operator, and loading and storing RenovateJobs.

:class:`KubeClient` is a thread-safe in-memory Kubernetes API. Jobs, pods and
other core objects are JSON-shaped dictionaries; RenovateJobs are
:class:`RenovateJob` objects.
"""

from __future__ import annotations

import contextlib
import copy
import itertools
import random
import re
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .api import GROUP, RenovateJob

JOB_LABEL_TYPE = "renovate-operator.mogenius.com/job-type"
JOB_LABEL_NAME = "renovate-operator.mogenius.com/job-name"
JOB_LABEL_GENERATION = "renovate-operator.mogenius.com/generation"

# Kinds not listed here use their lower-cased plural as the resource name.
_RESOURCES = {"Job": "jobs.batch"}
_RENOVATE_RESOURCE = f"renovatejobs.{GROUP}"
_NAME_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_INTEGER = re.compile(r"[+-]?[0-9]+")
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class JobType(str, Enum):
    DISCOVERY = "discovery"
    EXECUTOR = "executor"


@dataclass(frozen=True)
class JobSelector:
    """Identifies the jobs of one kind created for one name in one namespace."""

    job_name: str
    job_type: JobType
    namespace: str


class NotFoundError(LookupError):
    """The requested object does not exist."""

    def __init__(self, resource: str, name: str, message: Optional[str] = None) -> None:
        self.resource = resource
        self.name = name
        super().__init__(message or f'{resource} "{name}" not found')


class ConflictError(RuntimeError):
    """The object already exists or was changed since it was read."""


def _resource(kind: str) -> str:
    return _RESOURCES.get(kind, kind.lower() + "s")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _matches_selector(labels: dict[str, str], selector: dict[str, Any]) -> bool:
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    for expression in selector.get("matchExpressions") or []:
        key = expression["key"]
        operator = expression["operator"]
        values = expression.get("values") or []
        if operator == "In":
            matched = key in labels and labels[key] in values
        elif operator == "NotIn":
            matched = labels.get(key) not in values
        elif operator == "Exists":
            matched = key in labels
        elif operator == "DoesNotExist":
            matched = key not in labels
        else:
            raise ValueError(f"unknown label selector operator {operator!r}")
        if not matched:
            return False
    return True


class KubeClient:
    """In-memory Kubernetes API holding jobs, pods, other objects, pod logs and RenovateJobs."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._renovate_jobs: dict[tuple[str, str], RenovateJob] = {}
        self._logs: dict[tuple[str, str], dict[Optional[str], str]] = {}
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def create_object(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Store ``obj``, filling in its name, uid, creation time and version."""
        with self._lock:
            meta = obj.setdefault("metadata", {})
            namespace = meta.get("namespace", "")
            if not meta.get("name"):
                prefix = meta.get("generateName")
                if not prefix:
                    raise ValueError(f"{kind} needs a name or generateName")
                name = prefix + "".join(random.choices(_NAME_SUFFIX_ALPHABET, k=5))
                while (kind, namespace, name) in self._objects:
                    name = prefix + "".join(random.choices(_NAME_SUFFIX_ALPHABET, k=5))
                meta["name"] = name
            key = (kind, namespace, meta["name"])
            if key in self._objects:
                raise ConflictError(f'{_resource(kind)} "{meta["name"]}" already exists')
            meta.setdefault("uid", str(uuid.uuid4()))
            meta.setdefault("creationTimestamp", _now())
            meta["resourceVersion"] = self._next_version()
            self._objects[key] = copy.deepcopy(obj)
            return obj

    def get_object(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        with self._lock:
            try:
                return copy.deepcopy(self._objects[(kind, namespace, name)])
            except KeyError:
                raise NotFoundError(_resource(kind), name) from None

    def list_objects(
        self,
        kind: str,
        namespace: str = "",
        match_labels: Optional[dict[str, str]] = None,
        selector: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """List objects of ``kind``; an empty namespace means every namespace."""
        with self._lock:
            found = []
            for (obj_kind, obj_namespace, _), obj in sorted(self._objects.items()):
                if obj_kind != kind or (namespace and obj_namespace != namespace):
                    continue
                labels = (obj.get("metadata") or {}).get("labels") or {}
                if match_labels and any(labels.get(k) != v for k, v in match_labels.items()):
                    continue
                if selector is not None and not _matches_selector(labels, selector):
                    continue
                found.append(copy.deepcopy(obj))
            return found

    def delete_object(self, kind: str, namespace: str, name: str) -> None:
        """Delete an object; deleting a job also deletes the pods it owns."""
        with self._lock:
            removed = self._objects.pop((kind, namespace, name), None)
            if removed is None:
                raise NotFoundError(_resource(kind), name)
            if kind == "Pod":
                self._logs.pop((namespace, name), None)
            if kind != "Job":
                return
            uid = (removed.get("metadata") or {}).get("uid")
            for key, obj in list(self._objects.items()):
                owners = (obj.get("metadata") or {}).get("ownerReferences") or []
                if key[0] == "Pod" and key[1] == namespace and any(o.get("uid") == uid for o in owners):
                    del self._objects[key]
                    self._logs.pop((namespace, key[2]), None)

    def set_pod_logs(self, namespace: str, name: str, logs: str, container: Optional[str] = None) -> None:
        with self._lock:
            self._logs.setdefault((namespace, name), {})[container] = logs

    def pod_logs(self, namespace: str, name: str, container: Optional[str] = None) -> str:
        """Return the logs of a pod's container, or its default logs."""
        with self._lock:
            if ("Pod", namespace, name) not in self._objects:
                raise NotFoundError("pods", name)
            stored = self._logs.get((namespace, name), {})
            if container in stored:
                return stored[container]
            return stored.get(None, "")

    def create_renovate_job(self, job: RenovateJob) -> RenovateJob:
        with self._lock:
            key = (job.namespace, job.name)
            if key in self._renovate_jobs:
                raise ConflictError(f'{_RENOVATE_RESOURCE} "{job.name}" already exists')
            job.uid = job.uid or str(uuid.uuid4())
            job.resource_version = self._next_version()
            self._renovate_jobs[key] = copy.deepcopy(job)
            return copy.deepcopy(job)

    def get_renovate_job(self, namespace: str, name: str) -> RenovateJob:
        with self._lock:
            try:
                return copy.deepcopy(self._renovate_jobs[(namespace, name)])
            except KeyError:
                raise NotFoundError(_RENOVATE_RESOURCE, name) from None

    def list_renovate_jobs(self, namespace: str = "") -> list[RenovateJob]:
        with self._lock:
            return [
                copy.deepcopy(job)
                for (job_namespace, _), job in sorted(self._renovate_jobs.items())
                if not namespace or job_namespace == namespace
            ]

    def update_renovate_job_status(self, job: RenovateJob) -> RenovateJob:
        """Write the status of ``job``; a stale resource version raises :class:`ConflictError`."""
        with self._lock:
            stored = self._renovate_jobs.get((job.namespace, job.name))
            if stored is None:
                raise NotFoundError(_RENOVATE_RESOURCE, job.name)
            if job.resource_version and job.resource_version != stored.resource_version:
                raise ConflictError(
                    f'Operation cannot be fulfilled on {_RENOVATE_RESOURCE} "{job.name}": '
                    "the object has been modified; please apply your changes to the latest version"
                )
            stored.status = copy.deepcopy(job.status)
            stored.resource_version = self._next_version()
            job.resource_version = stored.resource_version
            return copy.deepcopy(stored)


def _meta(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _generation(job: dict[str, Any]) -> int:
    raw = (_meta(job).get("labels") or {}).get(JOB_LABEL_GENERATION)
    if raw is not None and _INTEGER.fullmatch(raw):
        return int(raw)
    return 0


def _created_at(obj: dict[str, Any]) -> datetime:
    raw = _meta(obj).get("creationTimestamp")
    if not raw:
        return _EARLIEST
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def get_jobs_by_label(client: KubeClient, selector: JobSelector) -> list[dict[str, Any]]:
    """Return every job carrying the operator's name and type labels for ``selector``."""
    return client.list_objects(
        "Job",
        selector.namespace,
        match_labels={
            JOB_LABEL_NAME: selector.job_name,
            JOB_LABEL_TYPE: JobType(selector.job_type).value,
        },
    )


def get_job_by_label(client: KubeClient, selector: JobSelector) -> dict[str, Any]:
    """Return the job with the highest generation label matching ``selector``.

    Missing or invalid generations count as 0; raises :class:`NotFoundError` when none match.
    """
    current: Optional[dict[str, Any]] = None
    highest = -1
    for job in get_jobs_by_label(client, selector):
        generation = _generation(job)
        if current is None or generation > highest:
            current, highest = job, generation
    if current is None:
        raise NotFoundError("jobs.batch", selector.job_name)
    return current


def delete_job(client: KubeClient, job: dict[str, Any]) -> None:
    """Delete ``job`` and its pods; a job that is already gone is not an error."""
    meta = _meta(job)
    with contextlib.suppress(NotFoundError):
        client.delete_object("Job", meta.get("namespace", ""), meta.get("name", ""))


def create_job_with_generation(client: KubeClient, job: dict[str, Any], selector: JobSelector) -> str:
    """Create ``job`` labelled with a new generation and return that generation.

    Jobs of older generations for the same selector are removed in the background.
    """
    generation = str(int(time.time()))
    meta = job.setdefault("metadata", {})
    labels = meta.get("labels")
    if labels is None:
        labels = meta["labels"] = {}
    labels[JOB_LABEL_GENERATION] = generation

    client.create_object("Job", job)

    threading.Thread(
        target=_cleanup_quietly, args=(client, selector, generation), daemon=True
    ).start()
    return generation


def _cleanup_quietly(client: KubeClient, selector: JobSelector, generation: str) -> None:
    with contextlib.suppress(Exception):
        cleanup_old_generations(client, selector, generation)


def cleanup_old_generations(client: KubeClient, selector: JobSelector, current_generation: str) -> None:
    """Delete the selector's jobs whose generation label is not ``current_generation``."""
    for job in get_jobs_by_label(client, selector):
        if (_meta(job).get("labels") or {}).get(JOB_LABEL_GENERATION) != current_generation:
            with contextlib.suppress(Exception):
                delete_job(client, job)


def get_last_job_log(client: KubeClient, job: dict[str, Any]) -> str:
    """Return the logs of the first container of the most recently created pod of ``job``."""
    meta = _meta(job)
    namespace = meta.get("namespace", "")
    name = meta.get("name", "")
    selector = (job.get("spec") or {}).get("selector")
    if selector is None:
        raise ValueError(f"listing pods for job {name}: job has no selector")

    pods = client.list_objects("Pod", namespace, selector=selector)
    if not pods:
        raise NotFoundError("pods", name, f"no pods found for job {name}")

    latest = sorted(pods, key=_created_at)[-1]
    pod_name = _meta(latest).get("name", "")
    containers = (latest.get("spec") or {}).get("containers") or []
    if not containers:
        raise ValueError(f"getting logs from pod {pod_name}: pod has no containers")
    return client.pod_logs(namespace, pod_name, containers[0].get("name"))


def load_renovate_job(client: KubeClient, name: str, namespace: str) -> RenovateJob:
    """Load a RenovateJob by name and namespace."""
    return client.get_renovate_job(namespace, name)


def reload_renovate_job(client: KubeClient, renovate_job: RenovateJob) -> RenovateJob:
    """Load the current state of ``renovate_job``."""
    return load_renovate_job(client, renovate_job.name, renovate_job.namespace)


def update_renovate_job_status(client: KubeClient, renovate_job: RenovateJob) -> RenovateJob:
    """Store the status of ``renovate_job`` and return the reloaded object."""
    client.update_renovate_job_status(renovate_job)
    return reload_renovate_job(client, renovate_job)