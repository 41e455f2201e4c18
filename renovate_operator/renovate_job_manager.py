"""The one component that reads and writes RenovateJob resources."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Protocol, TypeVar

from .api import ProjectStatus, RenovateJob, RenovateProjectStatus
from .client_provider import static_client_provider
from .job_manager import (
    ConflictError,
    JobSelector,
    JobType,
    KubeClient,
    get_job_by_label,
    get_last_job_log,
    load_renovate_job,
    update_renovate_job_status,
)
from .job_names import executor_job_name
from .project_status import get_update_status_for_project
from .status_update import RenovateStatusUpdate

T = TypeVar("T")

_RETRY_STEPS = 5
_RETRY_DELAY_SECONDS = 0.01
_RETRY_JITTER = 0.1


class ProjectMetrics(Protocol):
    def delete_project_metrics(self, namespace: str, job_name: str, project: str) -> None: ...


@dataclass(frozen=True)
class RenovateJobIdentifier:
    """Name and namespace of a RenovateJob."""

    name: str
    namespace: str

    def fullname(self) -> str:
        """Unique name of the job: ``<name>-<namespace>``."""
        return f"{self.name}-{self.namespace}"


@dataclass
class ProjectStatusView:
    """Read-only view of one project's status within a RenovateJob."""

    name: str
    status: RenovateProjectStatus
    last_run: Optional[datetime] = None
    renovate_result_status: Optional[str] = None
    duration: Optional[str] = None

    @classmethod
    def of(cls, project: ProjectStatus) -> "ProjectStatusView":
        return cls(
            name=project.name,
            status=project.status,
            last_run=project.last_run,
            renovate_result_status=project.renovate_result_status,
            duration=project.duration,
        )


def retry_on_conflict(fn: Callable[[], T]) -> T:
    """Call ``fn`` again after a short pause while it raises :class:`ConflictError`.

    Gives up after five attempts and raises the last conflict.
    """
    for attempt in range(1, _RETRY_STEPS + 1):
        try:
            return fn()
        except ConflictError:
            if attempt == _RETRY_STEPS:
                raise
            time.sleep(_RETRY_DELAY_SECONDS * (1 + random.random() * _RETRY_JITTER))
    raise AssertionError("unreachable")


def compute_hmac256(message: bytes, secret: str) -> str:
    """HMAC-SHA256 of ``message`` keyed with ``secret``, as ``sha256=<hex>``."""
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class _ReadWriteLock:
    """Many readers or one writer at a time."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._condition:
            while self._writer:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._condition:
            while self._writer or self._readers:
                self._condition.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._condition.notify_all()


class RenovateJobManager:
    """Lists, reads and updates RenovateJobs and the projects in their status."""

    def __init__(self, client: KubeClient, metrics: Optional[ProjectMetrics] = None) -> None:
        self._client = client
        self._metrics = metrics
        self._lock = _ReadWriteLock()

    def _load(self, job: RenovateJobIdentifier) -> RenovateJob:
        return load_renovate_job(self._client, job.name, job.namespace)

    def list_renovate_jobs(self) -> list[RenovateJobIdentifier]:
        with self._lock.read():
            return [
                RenovateJobIdentifier(name=job.name, namespace=job.namespace)
                for job in self._client.list_renovate_jobs()
            ]

    def list_renovate_jobs_full(self) -> list[RenovateJob]:
        with self._lock.read():
            return self._client.list_renovate_jobs()

    def get_renovate_job(self, name: str, namespace: str) -> RenovateJob:
        with self._lock.read():
            return load_renovate_job(self._client, name, namespace)

    def get_projects_by_status(
        self, job: RenovateJobIdentifier, status: RenovateProjectStatus
    ) -> list[ProjectStatusView]:
        with self._lock.read():
            renovate_job = self._load(job)
            return [
                ProjectStatusView.of(project)
                for project in renovate_job.status.projects
                if project.status == status
            ]

    def get_projects_for_renovate_job(self, job: RenovateJobIdentifier) -> list[ProjectStatusView]:
        with self._lock.read():
            renovate_job = self._load(job)
            return [ProjectStatusView.of(project) for project in renovate_job.status.projects]

    def update_project_status(
        self, project: str, job: RenovateJobIdentifier, status: RenovateStatusUpdate
    ) -> None:
        """Apply ``status`` to ``project``, adding the project if it is not listed yet."""

        def attempt() -> None:
            renovate_job = self._load(job)
            projects = renovate_job.status.projects
            existing = next((p for p in projects if p.name == project), None)
            if existing is None:
                projects.append(ProjectStatus(name=project, status=status.status))
            else:
                get_update_status_for_project(existing, status)
            update_renovate_job_status(self._client, renovate_job)

        with self._lock.write():
            retry_on_conflict(attempt)

    def update_project_status_batched(
        self,
        predicate: Callable[[ProjectStatus], bool],
        job: RenovateJobIdentifier,
        status: RenovateStatusUpdate,
    ) -> None:
        """Apply ``status`` to every project for which ``predicate`` is true."""

        def attempt() -> None:
            renovate_job = self._load(job)
            for project in renovate_job.status.projects:
                if predicate(project):
                    get_update_status_for_project(project, status)
            update_renovate_job_status(self._client, renovate_job)

        with self._lock.write():
            retry_on_conflict(attempt)

    def reconcile_projects(self, job: RenovateJobIdentifier, projects: list[str]) -> None:
        """Make the job's project list equal ``projects``.

        Known projects keep their status, new ones are scheduled, and the
        metrics of removed ones are deleted.
        """

        def attempt() -> None:
            renovate_job = self._load(job)
            current = {p.name: p for p in renovate_job.status.projects}
            wanted = set(projects)

            if self._metrics is not None:
                for name in current:
                    if name not in wanted:
                        self._metrics.delete_project_metrics(job.namespace, job.name, name)

            renovate_job.status.projects = [
                current[name]
                if name in current
                else ProjectStatus(
                    name=name,
                    status=RenovateProjectStatus.SCHEDULED,
                    last_run=datetime.now(timezone.utc),
                )
                for name in projects
            ]
            update_renovate_job_status(self._client, renovate_job)

        with self._lock.write():
            retry_on_conflict(attempt)

    def update_project_config_status(
        self, project: str, job: RenovateJobIdentifier, status: Optional[str]
    ) -> None:
        """Set the Renovate result status of ``project``; unknown projects are ignored."""

        def attempt() -> None:
            renovate_job = self._load(job)
            for entry in renovate_job.status.projects:
                if entry.name == project:
                    entry.renovate_result_status = status
                    update_renovate_job_status(self._client, renovate_job)
                    return

        with self._lock.write():
            retry_on_conflict(attempt)

    def get_logs_for_project(self, job: RenovateJobIdentifier, project: str) -> str:
        """Return the logs of the latest executor run for ``project``."""
        with self._lock.read():
            renovate_job = self._load(job)
            executor_job = get_job_by_label(
                self._client,
                JobSelector(
                    job_name=executor_job_name(renovate_job, project),
                    job_type=JobType.EXECUTOR,
                    namespace=job.namespace,
                ),
            )
            client = static_client_provider().client
            return get_last_job_log(client, executor_job)

    def _webhook_tokens(self, renovate_job: RenovateJob) -> list[str]:
        secret_ref = renovate_job.spec.webhook.authentication.secret_ref
        ref_name = secret_ref.name if secret_ref is not None else ""
        ref_key = secret_ref.key if secret_ref is not None else ""
        secret = self._client.get_object("Secret", renovate_job.namespace, ref_name)
        data = secret.get("data") or {}
        if ref_key not in data:
            raise LookupError(f"secret key {ref_key} not found in secret {ref_name}")
        try:
            raw = base64.b64decode(data[ref_key], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"secret key {ref_key} in secret {ref_name} is not base64") from exc
        return raw.decode("utf-8", errors="replace").split(",")

    @staticmethod
    def _authentication_enabled(renovate_job: RenovateJob) -> bool:
        webhook = renovate_job.spec.webhook
        return (
            webhook is not None
            and webhook.authentication is not None
            and webhook.authentication.enabled
        )

    def is_webhook_token_valid(self, job: RenovateJobIdentifier, token: str) -> bool:
        """True when webhook authentication is enabled and ``token`` is one of its tokens."""
        with self._lock.read():
            renovate_job = self._load(job)
            if not self._authentication_enabled(renovate_job):
                return False
            return token in self._webhook_tokens(renovate_job)

    def is_webhook_signature_valid(
        self, job: RenovateJobIdentifier, signature: str, body: bytes
    ) -> bool:
        """True when ``signature`` is the HMAC of ``body`` under one of the webhook tokens."""
        with self._lock.read():
            renovate_job = self._load(job)
            if not self._authentication_enabled(renovate_job):
                return False
            given = signature.encode("utf-8")
            return any(
                hmac.compare_digest(given, compute_hmac256(body, token).encode("utf-8"))
                for token in self._webhook_tokens(renovate_job)
            )