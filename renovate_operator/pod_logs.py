"""Reading the list of discovered repositories from a discovery job's pod logs."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from .client_provider import static_client_provider
from .job_manager import KubeClient

_MAX_LINE_BYTES = 64 * 1024


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _decode_string_list(text: str) -> list[str]:
    document = json.loads(text, parse_constant=_reject_constant)
    if document is None:
        return []
    if not isinstance(document, list):
        raise ValueError("JSON value is not an array")
    projects = []
    for item in document:
        if item is None:
            projects.append("")
        elif isinstance(item, str):
            projects.append(item)
        else:
            raise ValueError("JSON array holds a value that is not a string")
    return projects


def _lines(logs: str) -> Iterator[str]:
    for line in logs.split("\n"):
        # lines longer than the scan limit end the scan
        if len(line.encode("utf-8")) >= _MAX_LINE_BYTES:
            return
        yield line.removesuffix("\r")


def parse_discovered_projects(logs: str) -> list[str]:
    """Extract the JSON array of repository names from discovery logs.

    The whole log is tried first; failing that, the first line that holds a
    JSON array of strings is used. Raises ``ValueError`` when none is found.
    """
    try:
        return _decode_string_list(logs)
    except ValueError:
        pass

    for raw_line in _lines(logs):
        line = raw_line.strip()
        if not line.startswith("["):
            continue
        try:
            return _decode_string_list(line)
        except ValueError:
            continue

    size = len(logs.encode("utf-8"))
    raise ValueError(f"no valid JSON array found in discovery logs ({size} bytes)")


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _start_time(pod: dict[str, Any]) -> Optional[str]:
    return (pod.get("status") or {}).get("startTime")


def get_latest_successful_pod_log(client: KubeClient, job: dict[str, Any]) -> str:
    """Return the logs of the most recently started succeeded pod of ``job``."""
    meta = job.get("metadata") or {}
    name = meta.get("name", "")
    namespace = meta.get("namespace", "")

    pods = client.list_objects("Pod", namespace, match_labels={"job-name": name})
    succeeded = [
        pod
        for pod in pods
        if (pod.get("status") or {}).get("phase") == "Succeeded" and _start_time(pod)
    ]
    if not succeeded:
        raise LookupError(f"no successful pods found for job {name}")

    latest = max(succeeded, key=lambda pod: _parse_timestamp(_start_time(pod)))
    latest_meta = latest.get("metadata") or {}
    logs_client = static_client_provider().client
    return logs_client.pod_logs(latest_meta.get("namespace", ""), latest_meta.get("name", ""))


def get_discovered_projects_from_job_logs(client: KubeClient, job: dict[str, Any]) -> list[str]:
    """Return the sorted repository names written by a finished discovery job."""
    name = (job.get("metadata") or {}).get("name", "")
    try:
        logs = get_latest_successful_pod_log(client, job)
    except Exception as exc:
        raise RuntimeError(f"failed to get logs for job {name}: {exc}") from exc

    try:
        discovered = parse_discovered_projects(logs)
    except ValueError as exc:
        raise RuntimeError(f"failed to parse discovered projects from logs: {exc}") from exc

    return sorted(discovered)