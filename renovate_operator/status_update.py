"""Requested change to a project's status."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .api import RenovateProjectStatus


@dataclass
class RenovateStatusUpdate:
    """Desired status for a project, with optional result, run time and duration."""

    status: RenovateProjectStatus
    renovate_result_status: Optional[str] = None
    last_run: Optional[datetime] = None
    duration: Optional[str] = None