"""Status and run time of a Kubernetes job running Renovate."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .api import RenovateProjectStatus


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_job_status(job: Optional[dict[str, Any]]) -> tuple[RenovateProjectStatus, str]:
    """Return the project status of a job and a readable run time.

    A missing job counts as failed. The run time is empty when the job has not
    started; an unfinished job is measured up to now.
    """
    if job is None:
        return RenovateProjectStatus.FAILED, ""

    job_status = job.get("status") or {}
    status = RenovateProjectStatus.RUNNING
    for condition in job_status.get("conditions") or []:
        if condition.get("status") != "True":
            continue
        if condition.get("type") == "Complete":
            status = RenovateProjectStatus.COMPLETED
            break
        if condition.get("type") == "Failed":
            status = RenovateProjectStatus.FAILED
            break

    duration = ""
    started = _parse_timestamp(job_status.get("startTime"))
    if started is not None:
        finished = _parse_timestamp(job_status.get("completionTime")) or datetime.now(timezone.utc)
        duration = human_duration(finished - started)
    return status, duration


def human_duration(duration: timedelta) -> str:
    """Format a duration as ``"Xh Ym Zs"``, ``"Ym Zs"`` or ``"Zs"``."""
    seconds = duration.total_seconds()
    minutes = seconds / 60
    hours = seconds / 3600
    if hours >= 1:
        return f"{hours:.0f}h {minutes - int(hours) * 60:.0f}m {seconds - int(minutes) * 60:.0f}s"
    if minutes >= 1:
        return f"{minutes:.0f}m {seconds - int(minutes) * 60:.0f}s"
    return f"{seconds:.0f}s"