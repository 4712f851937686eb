"""Error taxonomy for the spec workflow engine.

Every failure the engine raises on purpose derives from :class:`WorkflowError`.
Not-found errors carry the identifier that could not be resolved so that an
automated caller can retry with a corrected one.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class WorkflowError(Exception):
    """Base class for spec workflow failures."""


# ----------------------------------------------------------------------
# Not found
# ----------------------------------------------------------------------


class NotFoundError(WorkflowError, LookupError):
    """A document, approval or specification is absent where expected."""

    kind = "resource"

    def __init__(self, identifier: str, message: Optional[str] = None):
        self.identifier = identifier
        super().__init__(message or f"{self.kind.capitalize()} '{identifier}' not found")


class TaskNotFoundError(NotFoundError):
    kind = "task"


class ApprovalNotFoundError(NotFoundError):
    kind = "approval"


class SpecNotFoundError(NotFoundError):
    kind = "spec"


class DocumentNotFoundError(NotFoundError):
    kind = "document"


# ----------------------------------------------------------------------
# Preconditions
# ----------------------------------------------------------------------


class PreconditionFailedError(WorkflowError):
    """An invariant-protecting precondition was violated; nothing was changed."""


class AlreadyArchivedError(PreconditionFailedError):
    def __init__(self, spec_name: str):
        self.spec_name = spec_name
        super().__init__(f"Spec '{spec_name}' already exists in archive")


class AlreadyActiveError(PreconditionFailedError):
    def __init__(self, spec_name: str):
        self.spec_name = spec_name
        super().__init__(f"Spec '{spec_name}' already exists in active specs")


class PendingApprovalsExistError(PreconditionFailedError):
    def __init__(self, spec_name: str, approval_ids: Iterable[str]):
        self.spec_name = spec_name
        self.approval_ids: List[str] = list(approval_ids)
        super().__init__(
            f"Spec '{spec_name}' has {len(self.approval_ids)} pending approval(s): "
            + ", ".join(self.approval_ids)
        )


class AmbiguousTaskError(PreconditionFailedError):
    def __init__(self, task_id: str, line_numbers: Iterable[int]):
        self.task_id = task_id
        self.line_numbers: List[int] = list(line_numbers)
        lines = ", ".join(str(n + 1) for n in self.line_numbers)
        super().__init__(f"Task '{task_id}' appears on multiple lines ({lines})")


class InvalidTransitionError(PreconditionFailedError):
    def __init__(self, approval_id: str, current: str, requested: str):
        self.approval_id = approval_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Approval '{approval_id}' is '{current}' and cannot move to '{requested}'"
        )


# ----------------------------------------------------------------------
# Records and I/O
# ----------------------------------------------------------------------


class MalformedRecordError(WorkflowError, ValueError):
    """A persisted record could not be parsed or failed validation."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed record {source}: {reason}")


class IOFailureError(WorkflowError, OSError):
    """The document tree could not be read or written."""
