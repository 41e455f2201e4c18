"""Periodic execution of the projects of every RenovateJob."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

from .api import GROUP, RenovateJob, RenovateProjectStatus
from .client_provider import static_client_provider
from .config import get_value
from .health import ExecutorHealth, HealthCheck, SingleExecutorHealth
from .job_definitions import new_renovate_job
from .job_helper import get_job_status
from .job_manager import (
    JobSelector,
    JobType,
    KubeClient,
    NotFoundError,
    create_job_with_generation,
    delete_job,
    get_job_by_label,
    get_last_job_log,
)
from .job_names import executor_job_name
from .log_parser import parse_renovate_logs
from .renovate_job_manager import RenovateJobIdentifier, RenovateJobManager
from .status_update import RenovateStatusUpdate

_logger = logging.getLogger(__name__)


class ExecutionMetrics(Protocol):
    def set_run_failed(self, namespace: str, job_name: str, project: str, failed: bool) -> None: ...

    def set_dependency_issues(
        self, namespace: str, job_name: str, project: str, has_issues: bool
    ) -> None: ...

    def capture_renovate_project_execution(
        self, namespace: str, job_name: str, project: str, status: str
    ) -> None: ...


def _controller_reference(owner: RenovateJob) -> dict[str, Any]:
    return {
        "apiVersion": f"{GROUP}/v1alpha1",
        "kind": "RenovateJob",
        "name": owner.name,
        "uid": owner.uid or "",
        "controller": True,
        "blockOwnerDeletion": True,
    }


class RenovateExecutor:
    """Starts Renovate runs for scheduled projects and tracks the running ones."""

    interval = 10.0

    def __init__(
        self,
        manager: RenovateJobManager,
        client: KubeClient,
        health: HealthCheck,
        metrics: Optional[ExecutionMetrics] = None,
    ) -> None:
        self._manager = manager
        self._client = client
        self._health = health
        self._metrics = metrics
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the execution loop in a background thread until ``stop_event`` is set."""
        thread = threading.Thread(target=self._loop, args=(stop_event,), daemon=True)
        thread.start()
        return thread

    def _loop(self, stop_event: threading.Event) -> None:
        def mark_running(executor_health: ExecutorHealth) -> ExecutorHealth:
            executor_health.running = True
            return executor_health

        self._health.set_executor_health(mark_running)
        _logger.info("starting renovate executor loop")
        while not stop_event.is_set():
            try:
                self.execute()
            except Exception:
                _logger.exception("an error occurred in execution loop")
            if stop_event.wait(self.interval):
                break
        _logger.info("executor loop stopped")

    def execute(self) -> None:
        """Run one pass over every RenovateJob; failures of single jobs are logged."""
        try:
            jobs = self._manager.list_renovate_jobs()
        except Exception:
            return
        _logger.debug("Executing renovate loop for %d jobs", len(jobs))
        for job in jobs:
            try:
                self.execute_renovate_job(job)
            except Exception:
                _logger.exception("renovate loop execution failed for job %s", job.fullname())

    def _set_job_health(self, name: str, is_running: bool) -> None:
        def update(executor_health: ExecutorHealth) -> ExecutorHealth:
            executor_health.executor[name] = SingleExecutorHealth(is_running=is_running)
            return executor_health

        self._health.set_executor_health(update)

    @contextmanager
    def _exclusive(self, name: str) -> Iterator[bool]:
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.Lock())
        acquired = lock.acquire(blocking=False)
        self._set_job_health(name, acquired)
        if not acquired:
            yield False
            return
        try:
            yield True
        finally:
            self._set_job_health(name, False)
            lock.release()

    def execute_renovate_job(self, job: RenovateJobIdentifier) -> None:
        """Reconcile the projects of one RenovateJob unless a run for it is in progress."""
        name = job.fullname()
        with self._exclusive(name) as acquired:
            if not acquired:
                _logger.info("another renovate execution is still running - skipping")
                return
            _logger.debug("Executing RenovateJob %s", name)
            renovate_job = self._manager.get_renovate_job(job.name, job.namespace)
            self.reconcile_projects(renovate_job)

    def reconcile_projects(self, renovate_job: RenovateJob) -> None:
        """Finish projects whose jobs ended and start scheduled ones up to the parallelism."""
        running = sum(
            1 for p in renovate_job.status.projects if p.status == RenovateProjectStatus.RUNNING
        )
        job_id = RenovateJobIdentifier(name=renovate_job.name, namespace=renovate_job.namespace)

        for project in renovate_job.status.projects:
            selector = JobSelector(
                job_name=executor_job_name(renovate_job, project.name),
                job_type=JobType.EXECUTOR,
                namespace=renovate_job.namespace,
            )

            if project.status == RenovateProjectStatus.RUNNING:
                if self._finish_if_done(renovate_job, project.name, job_id, selector):
                    running -= 1

            elif project.status == RenovateProjectStatus.SCHEDULED:
                if running < renovate_job.spec.parallelism:
                    manifest = new_renovate_job(renovate_job, project.name)
                    manifest.setdefault("metadata", {})["ownerReferences"] = [
                        _controller_reference(renovate_job)
                    ]
                    try:
                        create_job_with_generation(self._client, manifest, selector)
                    except Exception as exc:
                        raise RuntimeError(
                            f"failed to create RenovateJob for project {project.name}: {exc}"
                        ) from exc
                    running += 1
                    self._manager.update_project_status(
                        project.name,
                        job_id,
                        RenovateStatusUpdate(status=RenovateProjectStatus.RUNNING),
                    )

    def _finish_if_done(
        self,
        renovate_job: RenovateJob,
        project: str,
        job_id: RenovateJobIdentifier,
        selector: JobSelector,
    ) -> bool:
        """Record the outcome of a project's job once it ended; True when it did."""
        job: Optional[dict[str, Any]]
        try:
            job = get_job_by_label(self._client, selector)
        except NotFoundError:
            job = None
            new_status, duration = RenovateProjectStatus.FAILED, ""
        else:
            new_status, duration = get_job_status(job)

        if new_status == RenovateProjectStatus.RUNNING:
            return False

        update = RenovateStatusUpdate(status=new_status, duration=duration)
        has_issues = False
        if job is not None:
            logs_client = static_client_provider().client
            try:
                logs = get_last_job_log(logs_client, job)
            except Exception:
                _logger.exception("failed to get logs for metrics parsing of %s", project)
            else:
                parsed = parse_renovate_logs(logs)
                has_issues = parsed.has_issues
                update.renovate_result_status = parsed.renovate_result_status

        if self._metrics is not None:
            namespace, name = renovate_job.namespace, renovate_job.name
            self._metrics.set_run_failed(
                namespace, name, project, new_status == RenovateProjectStatus.FAILED
            )
            self._metrics.set_dependency_issues(namespace, name, project, has_issues)
            self._metrics.capture_renovate_project_execution(
                namespace, name, project, RenovateProjectStatus(new_status).value
            )

        self._manager.update_project_status(project, job_id, update)

        if (
            new_status == RenovateProjectStatus.COMPLETED
            and get_value("DELETE_SUCCESSFUL_JOBS") == "true"
            and job is not None
        ):
            delete_job(self._client, job)
        return True