"""Reconciler that keeps a schedule for every RenovateJob."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Protocol

from .api import ProjectStatus, RenovateJob, RenovateProjectStatus
from .job_manager import NotFoundError
from .renovate_job_manager import RenovateJobIdentifier
from .status_update import RenovateStatusUpdate

_REQUEUE_AFTER = timedelta(minutes=1)


class Scheduler(Protocol):
    def add_schedule_replace_existing(self, expr: str, name: str, fn: Callable[[], None]) -> None: ...

    def remove_schedule(self, name: str) -> None: ...


class Discovery(Protocol):
    def discover(self, job: RenovateJob) -> list[str]: ...


class Manager(Protocol):
    def get_renovate_job(self, name: str, namespace: str) -> RenovateJob: ...

    def reconcile_projects(self, job: RenovateJobIdentifier, projects: list[str]) -> None: ...

    def update_project_status_batched(
        self,
        predicate: Callable[[ProjectStatus], bool],
        job: RenovateJobIdentifier,
        status: RenovateStatusUpdate,
    ) -> None: ...


@dataclass(frozen=True)
class ReconcileResult:
    """When the same RenovateJob should be reconciled again."""

    requeue_after: timedelta = _REQUEUE_AFTER


@dataclass
class RenovateJobReconciler:
    """Creates, updates and removes the schedule belonging to each RenovateJob."""

    discovery: Discovery
    manager: Manager
    scheduler: Scheduler
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """Schedule the RenovateJob, or drop its schedule when it no longer exists."""
        try:
            renovate_job = self.manager.get_renovate_job(name, namespace)
        except NotFoundError:
            self.scheduler.remove_schedule(f"{name}-{namespace}")
            return ReconcileResult()
        except Exception:
            self.logger.exception("Failed to get RenovateJob")
            raise
        create_scheduler(self.logger, renovate_job, self)
        return ReconcileResult()


def _is_not_running(project: ProjectStatus) -> bool:
    return project.status != RenovateProjectStatus.RUNNING


def create_scheduler(
    logger: logging.Logger, renovate_job: RenovateJob, reconciler: RenovateJobReconciler
) -> None:
    """Add or replace the schedule that discovers and schedules the job's projects."""
    name = renovate_job.fullname()
    expr = renovate_job.spec.schedule
    identifier = RenovateJobIdentifier(name=renovate_job.name, namespace=renovate_job.namespace)

    def run() -> None:
        logger.debug("Executing schedule for RenovateJob %s", name)
        try:
            # the latest spec is needed, e.g. for an updated container image
            current_job = reconciler.manager.get_renovate_job(
                identifier.name, identifier.namespace
            )
        except Exception:
            logger.exception("Failed to get current RenovateJob %s", name)
            return

        try:
            projects = reconciler.discovery.discover(current_job)
        except Exception:
            logger.exception("Failed to discover projects for RenovateJob %s", name)
            return
        logger.debug("Successfully discovered %d projects", len(projects))

        try:
            reconciler.manager.reconcile_projects(identifier, projects)
        except Exception:
            logger.exception("failed to reconcile projects of %s", name)
            return
        logger.debug("Successfully reconciled projects of %s", name)

        try:
            reconciler.manager.update_project_status_batched(
                _is_not_running,
                identifier,
                RenovateStatusUpdate(status=RenovateProjectStatus.SCHEDULED),
            )
        except Exception:
            logger.exception("failed to schedule projects of %s", name)
        logger.debug("Successfully scheduled RenovateJob %s", name)

    try:
        reconciler.scheduler.add_schedule_replace_existing(expr, name, run)
    except Exception:
        logger.exception("Failed to add schedule for RenovateJob %s", name)
        return
    logger.debug("Added schedule %r for RenovateJob %s", expr, name)