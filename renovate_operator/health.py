"""Health state of the scheduler and the executor."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional


def _time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class SingleSchedulerHealth:
    name: str = ""
    next_run: Optional[datetime] = None
    schedule: str = ""
    last_update: Optional[datetime] = None
    is_running: bool = False


@dataclass
class SchedulerHealth:
    running: bool = False
    scheduler: dict[str, SingleSchedulerHealth] = field(default_factory=dict)


@dataclass
class SingleExecutorHealth:
    is_running: bool = False
    last_update: Optional[datetime] = None


@dataclass
class ExecutorHealth:
    running: bool = False
    executor: dict[str, SingleExecutorHealth] = field(default_factory=dict)


@dataclass
class ApplicationHealth:
    scheduler: SchedulerHealth = field(default_factory=SchedulerHealth)
    executor: ExecutorHealth = field(default_factory=ExecutorHealth)
    healthy: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation with camelCase keys."""
        return {
            "scheduler": {
                "running": self.scheduler.running,
                "scheduler": {
                    key: {
                        "name": item.name,
                        "nextRun": _time(item.next_run),
                        "schedule": item.schedule,
                        "lastUpdate": _time(item.last_update),
                        "isRunning": item.is_running,
                    }
                    for key, item in self.scheduler.scheduler.items()
                },
            },
            "executor": {
                "running": self.executor.running,
                "executor": {
                    key: {
                        "isRunning": item.is_running,
                        "lastUpdate": _time(item.last_update),
                    }
                    for key, item in self.executor.executor.items()
                },
            },
            "healthy": self.healthy,
        }


class HealthCheck:
    """Holds the application health; updates stamp every entry with the update time."""

    def __init__(self) -> None:
        self._health = ApplicationHealth()
        self._lock = threading.RLock()

    def get_health(self) -> ApplicationHealth:
        return self._health

    def set_executor_health(self, fn: Callable[[ExecutorHealth], ExecutorHealth]) -> None:
        with self._lock:
            updated = fn(self._health.executor)
            now = datetime.now(timezone.utc)
            updated.executor = {
                key: replace(item, last_update=now) for key, item in updated.executor.items()
            }
            self._health.executor = updated

    def set_scheduler_health(self, fn: Callable[[SchedulerHealth], SchedulerHealth]) -> None:
        with self._lock:
            updated = fn(self._health.scheduler)
            now = datetime.now(timezone.utc)
            updated.scheduler = {
                key: replace(item, last_update=now) for key, item in updated.scheduler.items()
            }
            self._health.scheduler = updated