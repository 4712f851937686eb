"""Task document parsing and targeted status rewrites.

A tasks document is a markdown checklist written by agents and humans alike::

    - [ ] 1. Set up project
      - Files: pyproject.toml
      - _Requirements: 1.1_
    - 2. Core features
      - [-] 2.1 Build the parser
      - [x] 2.2 Write tests

The status marker is the 3-character token right after the bullet: ``[ ]``
pending, ``[-]`` in progress, ``[x]`` completed. Any other token parses as
pending. A numbered line without a marker that introduces child tasks is a
header. Status rewrites touch only the marker character of one line.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from .errors import AmbiguousTaskError, PreconditionFailedError, TaskNotFoundError
from .models import TASK_STATUSES, TaskParseResult, TaskProgress, TaskRecord, TaskSummary

STATUS_MARKERS: Dict[str, str] = {
    "pending": " ",
    "in-progress": "-",
    "completed": "x",
}
_MARKER_STATUSES = {marker: status for status, marker in STATUS_MARKERS.items()}

_TASK_LINE_PATTERN = re.compile(
    r"^(?P<indent>[ \t]*)(?:[-*]\s+)?\[(?P<mark>[^\]\r\n])\]\s+(?P<rest>.+)$"
)
_TASK_ID_PATTERN = re.compile(r"^(?P<id>\d+(?:\.\d+)*)\s*\.?\s+(?P<description>.+)$")
_HEADER_LINE_PATTERN = re.compile(
    r"^(?P<indent>[ \t]*)(?:(?:#{1,6}|[-*])\s+)?(?:\*\*)?(?P<id>\d+(?:\.\d+)*)\.?\s+(?P<description>\S.*)$"
)
_REQUIREMENTS_PATTERN = re.compile(r"_Requirements:\s*(.+?)_?$")
_LEVERAGE_PATTERN = re.compile(r"_Leverage:\s*(.+?)_?$")
_FILES_PATTERN = re.compile(r"Files?:\s*(.+)$")
_CHECKBOX_BULLET = re.compile(r"^[-*]\s+\[")


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def _indent_level(indent: str) -> int:
    return len(indent.replace("\t", "  ")) // 2


def status_for_marker(marker: str) -> str:
    """Map a marker character to a status; unknown markers are pending."""
    return _MARKER_STATUSES.get(marker, "pending")


def _validate_status(status: str) -> str:
    if status not in TASK_STATUSES:
        raise ValueError(
            f"Invalid task status '{status}': expected one of {', '.join(TASK_STATUSES)}"
        )
    return status


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------


def _scan_lines(lines: List[str]) -> Tuple[List[TaskRecord], List[int]]:
    """Find task and header lines.

    Returns the records (without metadata) and the indices of every checkbox
    line, which bound metadata blocks even when they carry no task id.
    """
    records: List[TaskRecord] = []
    header_candidates: List[TaskRecord] = []
    checkbox_lines: List[int] = []

    for index, raw in enumerate(lines):
        line = _strip_cr(raw)
        task_match = _TASK_LINE_PATTERN.match(line)
        if task_match:
            checkbox_lines.append(index)
            id_match = _TASK_ID_PATTERN.match(task_match.group("rest"))
            if not id_match:
                continue
            records.append(TaskRecord(
                id=id_match.group("id"),
                description=id_match.group("description").strip(),
                status=status_for_marker(task_match.group("mark")),
                line_number=index,
                indent_level=_indent_level(task_match.group("indent")),
            ))
            continue

        if _CHECKBOX_BULLET.match(line.lstrip()):
            continue
        header_match = _HEADER_LINE_PATTERN.match(line)
        if header_match:
            description = header_match.group("description").strip()
            if description.endswith("**"):
                description = description[:-2].rstrip()
            header_candidates.append(TaskRecord(
                id=header_match.group("id"),
                description=description,
                status="pending",
                line_number=index,
                indent_level=_indent_level(header_match.group("indent")),
                is_header=True,
            ))

    for candidate in header_candidates:
        prefix = candidate.id + "."
        introduces_children = any(
            task.line_number > candidate.line_number
            and task.id.startswith(prefix)
            and task.indent_level >= candidate.indent_level
            for task in records
            if not task.is_header
        )
        if introduces_children:
            records.append(candidate)

    records.sort(key=lambda record: record.line_number)
    return records, checkbox_lines


def _parse_metadata(record: TaskRecord, block: List[str]) -> None:
    leverage: List[str] = []
    for raw in block:
        content = _strip_cr(raw).strip()
        if not content:
            continue

        if "_Requirements:" in content:
            match = _REQUIREMENTS_PATTERN.search(content)
            if match:
                text = match.group(1).rstrip("_")
                record.requirements.extend(
                    item for item in re.split(r"[,\s]+", text) if item and item != "NFR"
                )
        elif "_Leverage:" in content:
            match = _LEVERAGE_PATTERN.search(content)
            if match:
                text = match.group(1).rstrip("_")
                leverage.extend(item.strip() for item in text.split(",") if item.strip())
        elif _FILES_PATTERN.search(content):
            match = _FILES_PATTERN.search(content)
            for item in match.group(1).split(","):
                cleaned = re.sub(r"\(.*?\)", "", item).strip()
                if cleaned:
                    record.files.append(cleaned)
        elif content.startswith("- ") and not _CHECKBOX_BULLET.match(content):
            bullet = content[2:].strip()
            if bullet.startswith("Purpose:"):
                record.purposes.append(bullet[len("Purpose:"):].strip())
            else:
                record.implementation_details.append(bullet)

    if leverage:
        record.leverage = ", ".join(leverage)


def parse_tasks(text: str) -> TaskParseResult:
    """Parse a tasks document into ordered task records.

    Unknown line shapes are ignored. ``summary.total`` counts only non-header
    records.
    """
    lines = text.split("\n")
    records, checkbox_lines = _scan_lines(lines)

    boundaries = sorted(set(checkbox_lines) | {record.line_number for record in records})
    for record in records:
        following = [b for b in boundaries if b > record.line_number]
        end = following[0] if following else len(lines)
        _parse_metadata(record, lines[record.line_number + 1:end])

    tasks = [record for record in records if not record.is_header]
    summary = TaskSummary(
        total=len(tasks),
        completed=sum(1 for task in tasks if task.status == "completed"),
        in_progress=sum(1 for task in tasks if task.status == "in-progress"),
        pending=sum(1 for task in tasks if task.status == "pending"),
        headers=len(records) - len(tasks),
    )
    in_progress_task = next((task.id for task in tasks if task.status == "in-progress"), None)
    return TaskParseResult(tasks=records, summary=summary, in_progress_task=in_progress_task)


def task_progress(text: str) -> TaskProgress:
    summary = parse_tasks(text).summary
    return TaskProgress(total=summary.total, completed=summary.completed, pending=summary.pending)


def find_next_pending_task(tasks: List[TaskRecord]) -> Optional[TaskRecord]:
    """Return the first pending task that is not a header."""
    return next((task for task in tasks if task.status == "pending" and not task.is_header), None)


def get_task_by_id(tasks: List[TaskRecord], task_id: str) -> Optional[TaskRecord]:
    return next((task for task in tasks if task.id == task_id), None)


# ----------------------------------------------------------------------
# Rewriting
# ----------------------------------------------------------------------


def _replace_marker(lines: List[str], line_number: int, status: str) -> None:
    line = lines[line_number]
    match = _TASK_LINE_PATTERN.match(_strip_cr(line))
    if not match:
        raise PreconditionFailedError(f"Line {line_number + 1} is not a task line")
    column = match.start("mark")
    lines[line_number] = line[:column] + STATUS_MARKERS[status] + line[column + 1:]


def set_task_status(text: str, task_id: str, status: str, *, demote_others: bool = False) -> str:
    """Rewrite the status marker of ``task_id`` and return the new document.

    Only the marker character of the matching line changes. When
    ``demote_others`` is set and ``status`` is ``in-progress``, every other
    in-progress task is reset to pending in the same pass.
    """
    _validate_status(status)
    task_id = task_id.strip()
    records = parse_tasks(text).tasks

    matches = [record for record in records if record.id == task_id and not record.is_header]
    if len(matches) > 1:
        raise AmbiguousTaskError(task_id, [record.line_number for record in matches])
    if not matches:
        if any(record.id == task_id for record in records):
            raise PreconditionFailedError(
                f"Task '{task_id}' is a header without a status marker and cannot change status"
            )
        raise TaskNotFoundError(task_id)

    lines = text.split("\n")
    _replace_marker(lines, matches[0].line_number, status)

    if demote_others and status == "in-progress":
        for record in records:
            if record.is_header or record.id == task_id or record.status != "in-progress":
                continue
            _replace_marker(lines, record.line_number, "pending")

    return "\n".join(lines)
