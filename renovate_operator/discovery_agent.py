"""Discovering the repositories a RenovateJob should process."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from .api import GROUP, RenovateJob, RenovateProjectStatus
from .job_definitions import new_discovery_job
from .job_manager import (
    JobSelector,
    JobType,
    KubeClient,
    NotFoundError,
    create_job_with_generation,
    get_job_by_label,
)
from .job_names import discovery_job_name
from .pod_logs import get_discovered_projects_from_job_logs

StatusChecker = Callable[[RenovateJob], RenovateProjectStatus]
ProjectsReader = Callable[[KubeClient, dict[str, Any]], list[str]]

_NOT_FOUND_ATTEMPTS = 5


class DiscoveryError(RuntimeError):
    """Discovery of projects failed."""


def _controller_reference(owner: RenovateJob) -> dict[str, Any]:
    return {
        "apiVersion": f"{GROUP}/v1alpha1",
        "kind": "RenovateJob",
        "name": owner.name,
        "uid": owner.uid or "",
        "controller": True,
        "blockOwnerDeletion": True,
    }


class DiscoveryAgent:
    """Runs discovery jobs and reads the projects they found."""

    poll_interval = 5.0
    not_found_delay = 1.0

    def __init__(
        self,
        client: KubeClient,
        logger: Optional[logging.Logger] = None,
        status_checker: Optional[StatusChecker] = None,
        projects_reader: Optional[ProjectsReader] = None,
    ) -> None:
        self._client = client
        self._logger = logger or logging.getLogger(__name__)
        self._status_checker = status_checker or self._job_status
        self._projects_reader = projects_reader or get_discovered_projects_from_job_logs
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.RLock())

    @staticmethod
    def _selector(job: RenovateJob) -> JobSelector:
        return JobSelector(
            job_name=discovery_job_name(job),
            job_type=JobType.DISCOVERY,
            namespace=job.namespace,
        )

    def discover(self, job: RenovateJob) -> list[str]:
        """Start a discovery job for ``job``, wait for it and return the projects found."""
        self._logger.debug("Discovering projects for RenovateJob %s", job.fullname())
        try:
            self.create_discovery_job(job)
        except Exception as exc:
            raise DiscoveryError(f"failed to create or get discovery job: {exc}") from exc
        return self.wait_for_discovery_job(job)

    def create_discovery_job(self, renovate_job: RenovateJob) -> None:
        """Create a new discovery job; older ones for the same RenovateJob are replaced."""
        with self._lock_for(renovate_job.fullname()):
            manifest = new_discovery_job(renovate_job)
            manifest.setdefault("metadata", {})["ownerReferences"] = [
                _controller_reference(renovate_job)
            ]
            try:
                create_job_with_generation(self._client, manifest, self._selector(renovate_job))
            except Exception as exc:
                raise DiscoveryError(f"failed to create discovery job: {exc}") from exc

    def get_discovery_job_status(self, job: RenovateJob) -> RenovateProjectStatus:
        """Return whether the discovery job of ``job`` is running, completed or failed."""
        return self._status_checker(job)

    def _job_status(self, job: RenovateJob) -> RenovateProjectStatus:
        with self._lock_for(job.fullname()):
            selector = self._selector(job)
            try:
                discovery_job = get_job_by_label(self._client, selector)
            except NotFoundError as not_found:
                discovery_job = self._retry_lookup(selector, not_found)
            except Exception as exc:
                raise DiscoveryError(f"failed to get discovery job: {exc}") from exc

            status = discovery_job.get("status") or {}
            if (status.get("failed") or 0) > 0:
                return RenovateProjectStatus.FAILED
            if (status.get("succeeded") or 0) > 0:
                return RenovateProjectStatus.COMPLETED
            return RenovateProjectStatus.RUNNING

    def _retry_lookup(self, selector: JobSelector, error: NotFoundError) -> dict[str, Any]:
        time.sleep(self.not_found_delay)
        for _ in range(_NOT_FOUND_ATTEMPTS - 1):
            try:
                return get_job_by_label(self._client, selector)
            except NotFoundError as not_found:
                error = not_found
            except Exception as exc:
                raise DiscoveryError(f"failed to get discovery job: {exc}") from exc
        raise DiscoveryError(f"discovery job not found: {error}") from error

    def wait_for_discovery_job(self, job: RenovateJob) -> list[str]:
        """Wait until the discovery job has finished and return the projects it found."""
        while True:
            try:
                status = self._status_checker(job)
            except Exception as exc:
                raise DiscoveryError(f"failed to get discovery job status: {exc}") from exc
            if status == RenovateProjectStatus.COMPLETED:
                break
            if status == RenovateProjectStatus.FAILED:
                raise DiscoveryError("discovery job failed")
            time.sleep(self.poll_interval)

        try:
            discovery_job = get_job_by_label(self._client, self._selector(job))
        except Exception as exc:
            raise DiscoveryError(f"failed to get discovery job: {exc}") from exc

        try:
            projects = self._projects_reader(self._client, discovery_job)
        except Exception as exc:
            raise DiscoveryError(
                f"failed to get discovered projects from job logs: {exc}"
            ) from exc

        self._logger.debug(
            "Discovered %d projects for RenovateJob %s", len(projects), job.fullname()
        )
        return projects