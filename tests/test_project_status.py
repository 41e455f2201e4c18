from datetime import datetime, timezone

import pytest

from renovate_operator.api import ProjectStatus, RenovateProjectStatus
from renovate_operator.project_status import get_update_status_for_project
from renovate_operator.status_update import RenovateStatusUpdate

S = RenovateProjectStatus


@pytest.mark.parametrize(
    "current, desired, expected",
    [
        (S.RUNNING, S.SCHEDULED, S.RUNNING),
        (S.SCHEDULED, S.RUNNING, S.RUNNING),
        (S.RUNNING, S.COMPLETED, S.COMPLETED),
        (S.SCHEDULED, S.COMPLETED, S.SCHEDULED),
        (S.RUNNING, S.FAILED, S.FAILED),
    ],
    ids=[
        "schedule-from-running",
        "run-from-scheduled",
        "complete-from-running",
        "complete-from-scheduled",
        "fail-from-running",
    ],
)
def test_transitions(current, desired, expected):
    project = ProjectStatus(name="test-project", status=current)
    result = get_update_status_for_project(project, RenovateStatusUpdate(status=desired))
    assert result.status == expected


def test_schedule_from_completed():
    project = ProjectStatus(name="p", status=S.COMPLETED)
    result = get_update_status_for_project(project, RenovateStatusUpdate(status=S.SCHEDULED))
    assert result.status == S.SCHEDULED


def test_running_cannot_start_from_failed():
    project = ProjectStatus(name="p", status=S.FAILED)
    result = get_update_status_for_project(project, RenovateStatusUpdate(status=S.RUNNING))
    assert result.status == S.FAILED


def test_completion_sets_last_run_and_duration():
    before = datetime.now(timezone.utc)
    project = ProjectStatus(name="p", status=S.RUNNING)
    result = get_update_status_for_project(
        project, RenovateStatusUpdate(status=S.COMPLETED, duration="1m 10s")
    )
    assert result.duration == "1m 10s"
    assert result.last_run is not None and result.last_run >= before


def test_finish_from_scheduled_keeps_last_run_but_sets_duration():
    project = ProjectStatus(name="p", status=S.SCHEDULED)
    result = get_update_status_for_project(
        project, RenovateStatusUpdate(status=S.FAILED, duration="5s")
    )
    assert result.last_run is None
    assert result.duration == "5s"


def test_running_clears_duration():
    project = ProjectStatus(name="p", status=S.SCHEDULED, duration="3s")
    result = get_update_status_for_project(project, RenovateStatusUpdate(status=S.RUNNING))
    assert result.duration is None


def test_result_status_only_replaced_when_given():
    project = ProjectStatus(name="p", status=S.RUNNING, renovate_result_status="done")
    kept = get_update_status_for_project(project, RenovateStatusUpdate(status=S.SCHEDULED))
    assert kept.renovate_result_status == "done"
    replaced = get_update_status_for_project(
        project, RenovateStatusUpdate(status=S.SCHEDULED, renovate_result_status="No Config")
    )
    assert replaced.renovate_result_status == "No Config"


def test_update_is_in_place():
    project = ProjectStatus(name="p", status=S.SCHEDULED)
    result = get_update_status_for_project(project, RenovateStatusUpdate(status=S.RUNNING))
    assert result is project
    assert project.status == S.RUNNING