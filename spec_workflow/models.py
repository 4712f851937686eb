"""Data models for the spec workflow engine.

Every structure here is a projection of files in the document tree. Objects
serialize to the camelCase field names used on disk and on the push channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import MalformedRecordError

TASK_STATUSES = ("pending", "in-progress", "completed")
APPROVAL_STATUSES = ("pending", "approved", "rejected", "needs-revision")
RESPONSE_STATUSES = ("approved", "rejected", "needs-revision")
APPROVAL_TYPES = ("document", "action")
SPEC_LOCATIONS = ("active", "archived", "not-found")

APPROVAL_CATEGORY = "spec"
APPROVAL_SCHEMA_VERSION = 2



def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable values sort as the oldest."""
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_from_mtime(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ----------------------------------------------------------------------
# Task documents
# ----------------------------------------------------------------------


@dataclass(slots=True)
class TaskRecord:
    """One task (or header) line of a tasks document."""

    id: str
    description: str
    status: str
    line_number: int
    indent_level: int
    is_header: bool = False
    files: List[str] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    leverage: Optional[str] = None
    purposes: List[str] = field(default_factory=list)
    implementation_details: List[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def in_progress(self) -> bool:
        return self.status == "in-progress"

    def has_metadata(self) -> bool:
        return bool(
            self.files or self.requirements or self.leverage
            or self.purposes or self.implementation_details
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "status": self.status,
            "lineNumber": self.line_number,
            "indentLevel": self.indent_level,
            "isHeader": self.is_header,
            "completed": self.completed,
            "inProgress": self.in_progress,
        }
        if self.files:
            data["files"] = list(self.files)
        if self.requirements:
            data["requirements"] = list(self.requirements)
        if self.leverage:
            data["leverage"] = self.leverage
        if self.purposes:
            data["purposes"] = list(self.purposes)
        if self.implementation_details:
            data["implementationDetails"] = list(self.implementation_details)
        return data


@dataclass(slots=True)
class TaskSummary:
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    headers: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "inProgress": self.in_progress,
            "pending": self.pending,
            "headers": self.headers,
        }


@dataclass(slots=True)
class TaskParseResult:
    tasks: List[TaskRecord]
    summary: TaskSummary
    in_progress_task: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self.tasks],
            "summary": self.summary.to_dict(),
            "inProgressTask": self.in_progress_task,
        }


@dataclass(slots=True)
class TaskProgress:
    total: int = 0
    completed: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "completed": self.completed, "pending": self.pending}


@dataclass(slots=True)
class TaskStatusChange:
    """Outcome of rewriting one task's status on disk."""

    spec_name: str
    task_id: str
    previous_status: str
    new_status: str
    result: TaskParseResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specName": self.spec_name,
            "taskId": self.task_id,
            "previousStatus": self.previous_status,
            "newStatus": self.new_status,
            "summary": self.result.summary.to_dict(),
            "inProgress": self.result.in_progress_task,
        }


# ----------------------------------------------------------------------
# Approvals
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ApprovalComment:
    """A review comment, stored exactly as the reviewer's client sent it.

    Only the line anchor is interpreted: ``startLine``/``endLine`` form a
    1-based inclusive range, and the legacy single ``lineNumber`` anchor is
    migrated into that range. Every other key, including ``highlightColor``
    in whatever shape the client uses, is kept untouched.
    """

    data: Dict[str, Any]

    @property
    def comment(self) -> Optional[str]:
        return self.data.get("comment", self.data.get("text"))

    @property
    def type(self) -> str:
        return self.data.get("type") or ("selection" if self.data.get("selectedText") else "general")

    @property
    def start_line(self) -> Optional[int]:
        return self.data.get("startLine")

    @property
    def end_line(self) -> Optional[int]:
        end_line = self.data.get("endLine")
        return self.start_line if end_line is None else end_line

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApprovalComment":
        if not isinstance(data, dict):
            raise MalformedRecordError("comment", f"expected an object, got {type(data).__name__}")

        comment = dict(data)
        if comment.get("startLine") is None and comment.get("lineNumber") is not None:
            line = comment.pop("lineNumber")
            comment["startLine"] = line
            comment["endLine"] = line

        start_line = comment.get("startLine")
        if start_line is not None:
            end_line = comment.get("endLine")
            if end_line is None:
                end_line = start_line
            if not all(isinstance(n, int) and not isinstance(n, bool) for n in (start_line, end_line)):
                raise MalformedRecordError("comment", "line range must be integers")
            if start_line < 1 or end_line < start_line:
                raise MalformedRecordError("comment", f"invalid line range {start_line}..{end_line}")
        return cls(comment)


@dataclass(slots=True)
class ApprovalRecord:
    """A persisted request for a human decision on an artifact."""

    id: str
    title: str
    file_path: str
    category_name: str
    type: str = "document"
    status: str = "pending"
    created_at: str = field(default_factory=utc_now)
    responded_at: Optional[str] = None
    response: Optional[str] = None
    annotations: Optional[str] = None
    comments: List[ApprovalComment] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    category: str = APPROVAL_CATEGORY
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "id", "title", "filePath", "categoryName", "type", "status", "createdAt",
        "respondedAt", "response", "annotations", "comments", "metadata",
        "category", "schemaVersion",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            "schemaVersion": APPROVAL_SCHEMA_VERSION,
            "id": self.id,
            "title": self.title,
            "filePath": self.file_path,
            "type": self.type,
            "status": self.status,
            "createdAt": self.created_at,
            "category": self.category,
            "categoryName": self.category_name,
        })
        if self.responded_at is not None:
            data["respondedAt"] = self.responded_at
        if self.response is not None:
            data["response"] = self.response
        if self.annotations is not None:
            data["annotations"] = self.annotations
        if self.comments:
            data["comments"] = [comment.to_dict() for comment in self.comments]
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "approval") -> "ApprovalRecord":
        return normalize_approval(data, source=source)


def normalize_approval(
    data: Any,
    *,
    source: str = "approval",
    category_hint: Optional[str] = None,
) -> ApprovalRecord:
    """Migrate a raw approval document of any schema version into a record.

    Legacy records (no ``schemaVersion``) may carry single-line comment anchors
    and, when stored flat, no ``categoryName``; both are filled in here so the
    rest of the engine only ever sees the current shape.
    """
    if not isinstance(data, dict):
        raise MalformedRecordError(source, f"expected an object, got {type(data).__name__}")

    for key in ("id", "status", "createdAt"):
        if not data.get(key):
            raise MalformedRecordError(source, f"missing '{key}'")

    status = data["status"]
    if status not in APPROVAL_STATUSES:
        raise MalformedRecordError(source, f"unknown status '{status}'")

    approval_type = data.get("type") or "document"
    if approval_type not in APPROVAL_TYPES:
        raise MalformedRecordError(source, f"unknown type '{approval_type}'")

    category_name = data.get("categoryName") or category_hint
    if not category_name and isinstance(data.get("metadata"), dict):
        category_name = data["metadata"].get("specName")
    if not category_name:
        category_name = _category_from_file_path(data.get("filePath") or "")

    raw_comments = data.get("comments") or []
    if not isinstance(raw_comments, list):
        raise MalformedRecordError(source, "'comments' must be a list")
    try:
        comments = [ApprovalComment.from_dict(item) for item in raw_comments]
    except MalformedRecordError as exc:
        raise MalformedRecordError(source, exc.reason) from exc

    return ApprovalRecord(
        id=str(data["id"]),
        title=str(data.get("title") or ""),
        file_path=str(data.get("filePath") or ""),
        category_name=category_name or "",
        type=approval_type,
        status=status,
        created_at=str(data["createdAt"]),
        responded_at=data.get("respondedAt"),
        response=data.get("response"),
        annotations=data.get("annotations"),
        comments=comments,
        metadata=data.get("metadata"),
        category=data.get("category") or APPROVAL_CATEGORY,
        extra={k: v for k, v in data.items() if k not in ApprovalRecord._KNOWN_KEYS},
    )


def _category_from_file_path(file_path: str) -> Optional[str]:
    parts = [part for part in file_path.replace("\\", "/").split("/") if part]
    if "specs" in parts:
        index = parts.index("specs")
        if index + 1 < len(parts) - 1:
            return parts[index + 1]
    return None


@dataclass(slots=True)
class ArtifactContent:
    """Content of the file an approval points at, and where it was found."""

    content: str
    path: str

    def to_dict(self) -> Dict[str, str]:
        return {"content": self.content, "filePath": self.path}


# ----------------------------------------------------------------------
# Specifications and steering
# ----------------------------------------------------------------------


@dataclass(slots=True)
class DocumentStatus:
    exists: bool = False
    last_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"exists": self.exists}
        if self.last_modified is not None:
            data["lastModified"] = self.last_modified
        return data


@dataclass(slots=True)
class DocumentContent:
    content: str
    last_modified: Optional[str] = None
    location: str = "active"

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "lastModified": self.last_modified, "location": self.location}


@dataclass(slots=True)
class SpecBundle:
    """A specification directory and the status of its documents."""

    name: str
    location: str
    documents: Dict[str, DocumentStatus]
    created_at: Optional[str] = None
    last_modified: Optional[str] = None
    task_progress: Optional[TaskProgress] = None

    @property
    def display_name(self) -> str:
        return " ".join(word[:1].upper() + word[1:] for word in self.name.split("-"))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "location": self.location,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "phases": {name: status.to_dict() for name, status in self.documents.items()},
        }
        if self.task_progress is not None:
            data["taskProgress"] = self.task_progress.to_dict()
        return data


@dataclass(slots=True)
class SteeringStatus:
    exists: bool
    documents: Dict[str, DocumentStatus]
    last_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "exists": self.exists,
            "documents": {name: status.exists for name, status in self.documents.items()},
            "details": {name: status.to_dict() for name, status in self.documents.items()},
        }
        if self.last_modified is not None:
            data["lastModified"] = self.last_modified
        return data
