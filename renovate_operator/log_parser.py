"""Reading the outcome of a Renovate run from its JSON log output."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Optional

_MAX_LINE_BYTES = 1024 * 1024
_ISSUE_LEVEL = 40

_RESULT_LABELS = {
    "disabled-by-config": "Disabled",
    "disabled-closed-onboarding": "Onboarding Closed",
    "disabled-no-config": "No Config",
}


@dataclass
class LogParseResult:
    """Whether warnings or errors were logged, and the repository's final result."""

    has_issues: bool = False
    renovate_result_status: Optional[str] = None


def _lines(logs: str) -> Iterator[str]:
    for line in logs.split("\n"):
        # lines longer than the scan limit end the scan
        if len(line.encode("utf-8")) >= _MAX_LINE_BYTES:
            return
        yield line.removesuffix("\r")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _decode(line: str) -> Optional[dict[str, Any]]:
    try:
        document = json.loads(line, parse_constant=_reject_constant)
    except ValueError:
        return None
    if document is None:
        return {}
    return document if isinstance(document, dict) else None


def _field(document: dict[str, Any], name: str) -> Any:
    value = None
    for key, item in document.items():
        if key.lower() == name:
            value = item
    return value


def _is_int(value: Any) -> bool:
    return value is None or (isinstance(value, int) and not isinstance(value, bool))


def _is_str(value: Any) -> bool:
    return value is None or isinstance(value, str)


def _describe_result(outcome: str) -> str:
    return _RESULT_LABELS.get(outcome, outcome or "Unknown")


def parse_renovate_logs(logs: str) -> LogParseResult:
    """Parse newline-delimited JSON logs of a Renovate run.

    ``has_issues`` is set when any entry has a level of 40 (warn) or higher.
    ``renovate_result_status`` comes from the ``Repository finished`` entry and
    stays ``None`` when no such entry was found.
    """
    result = LogParseResult()
    for line in _lines(logs):
        if not line:
            continue
        document = _decode(line)
        if document is None:
            continue
        level = _field(document, "level")
        message = _field(document, "msg")
        if not (_is_int(level) and _is_str(message)):
            continue

        if (level or 0) >= _ISSUE_LEVEL:
            result.has_issues = True

        if message == "Repository finished":
            outcome = _field(document, "result")
            if _is_str(outcome):
                result.renovate_result_status = _describe_result(outcome or "")
    return result