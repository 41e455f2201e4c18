"""Rules for moving a project from one status to another."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from .api import ProjectStatus, RenovateProjectStatus
from .status_update import RenovateStatusUpdate


def _update_result_status(project_status: ProjectStatus, result_status: Optional[str]) -> None:
    if result_status is not None:
        project_status.renovate_result_status = result_status


def _to_scheduled(project_status: ProjectStatus, desired: RenovateStatusUpdate) -> None:
    # a running project cannot be scheduled again
    if project_status.status != RenovateProjectStatus.RUNNING:
        project_status.status = RenovateProjectStatus.SCHEDULED
    _update_result_status(project_status, desired.renovate_result_status)


def _to_running(project_status: ProjectStatus, desired: RenovateStatusUpdate) -> None:
    # only a scheduled project may start running
    if project_status.status == RenovateProjectStatus.SCHEDULED:
        project_status.status = RenovateProjectStatus.RUNNING
    project_status.duration = None
    _update_result_status(project_status, desired.renovate_result_status)


def _to_finished(finished: RenovateProjectStatus) -> Callable[[ProjectStatus, RenovateStatusUpdate], None]:
    def apply(project_status: ProjectStatus, desired: RenovateStatusUpdate) -> None:
        # only a running project can finish
        if project_status.status == RenovateProjectStatus.RUNNING:
            project_status.status = finished
            project_status.last_run = datetime.now(timezone.utc)
        project_status.duration = desired.duration
        _update_result_status(project_status, desired.renovate_result_status)

    return apply


_TRANSITIONS: dict[RenovateProjectStatus, Callable[[ProjectStatus, RenovateStatusUpdate], None]] = {
    RenovateProjectStatus.SCHEDULED: _to_scheduled,
    RenovateProjectStatus.RUNNING: _to_running,
    RenovateProjectStatus.COMPLETED: _to_finished(RenovateProjectStatus.COMPLETED),
    RenovateProjectStatus.FAILED: _to_finished(RenovateProjectStatus.FAILED),
}


def get_update_status_for_project(
    project_status: ProjectStatus, desired_status: RenovateStatusUpdate
) -> ProjectStatus:
    """Apply ``desired_status`` to ``project_status`` where the transition is allowed.

    The project is updated in place and returned.
    """
    transition = _TRANSITIONS.get(desired_status.status)
    if transition is not None:
        transition(project_status, desired_status)
    return project_status