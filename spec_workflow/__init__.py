"""Spec workflow state engine.

Keeps specifications, task checklists, approval records and steering documents
in a project's ``.spec-workflow`` directory consistent, and pushes changes to
connected reviewers.
"""

from .approvals import ApprovalStore
from .archive import ArchiveManager
from .config import WorkflowConfig
from .errors import (
    AlreadyActiveError,
    AlreadyArchivedError,
    AmbiguousTaskError,
    ApprovalNotFoundError,
    DocumentNotFoundError,
    InvalidTransitionError,
    IOFailureError,
    MalformedRecordError,
    NotFoundError,
    PendingApprovalsExistError,
    PreconditionFailedError,
    SpecNotFoundError,
    TaskNotFoundError,
    WorkflowError,
)
from .fanout import NotificationHub, ObserverSession
from .models import (
    ApprovalComment,
    ApprovalRecord,
    ArtifactContent,
    SpecBundle,
    TaskParseResult,
    TaskRecord,
    TaskSummary,
)
from .paths import WorkflowPaths
from .session import SessionManager
from .specs import SpecRepository
from .task_parser import parse_tasks, set_task_status
from .watcher import ChangeEvent, ChangeWatcher, classify_path
from .workflow import WorkflowEngine

__version__ = "0.1.0"

__all__ = [
    "AlreadyActiveError",
    "AlreadyArchivedError",
    "AmbiguousTaskError",
    "ApprovalComment",
    "ApprovalNotFoundError",
    "ApprovalRecord",
    "ApprovalStore",
    "ArchiveManager",
    "ArtifactContent",
    "ChangeEvent",
    "ChangeWatcher",
    "DocumentNotFoundError",
    "InvalidTransitionError",
    "IOFailureError",
    "MalformedRecordError",
    "NotFoundError",
    "NotificationHub",
    "ObserverSession",
    "PendingApprovalsExistError",
    "PreconditionFailedError",
    "SessionManager",
    "SpecBundle",
    "SpecNotFoundError",
    "SpecRepository",
    "TaskNotFoundError",
    "TaskParseResult",
    "TaskRecord",
    "TaskSummary",
    "WorkflowConfig",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowPaths",
    "classify_path",
    "parse_tasks",
    "set_task_status",
]
