"""Moving specifications between the active and archive roots.

A specification lives in exactly one of ``specs/<name>`` or
``archive/specs/<name>``. Moves are a single directory rename so there is never
a moment where both roots, or neither, hold the bundle.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .approvals import ApprovalStore
from .errors import (
    AlreadyActiveError,
    AlreadyArchivedError,
    IOFailureError,
    PendingApprovalsExistError,
    SpecNotFoundError,
)
from .paths import WorkflowPaths, as_workflow_paths
from .workflow_logging import log_operation, log_workflow_event

logger = logging.getLogger("spec_workflow.archive")


class ArchiveManager:
    """Archive and restore specification bundles."""

    def __init__(self, project: WorkflowPaths | Path | str, approvals: Optional[ApprovalStore] = None):
        self.paths = as_workflow_paths(project)
        self.approvals = approvals or ApprovalStore(self.paths)

    def is_active(self, spec_name: str) -> bool:
        return self.paths.spec_dir(spec_name).is_dir()

    def is_archived(self, spec_name: str) -> bool:
        return self.paths.archived_spec_dir(spec_name).is_dir()

    def locate(self, spec_name: str) -> str:
        """Return ``active``, ``archived`` or ``not-found`` without side effects."""
        if self.is_active(spec_name):
            return "active"
        if self.is_archived(spec_name):
            return "archived"
        return "not-found"

    def archive(self, spec_name: str) -> Path:
        """Move an active specification into the archive root.

        Refuses while any approval in the specification's category is pending.
        """
        source = self.paths.spec_dir(spec_name)
        destination = self.paths.archived_spec_dir(spec_name)

        with log_operation("archive_spec", spec_name=spec_name):
            if not source.is_dir():
                raise SpecNotFoundError(spec_name, f"Spec '{spec_name}' not found in active specs")
            if destination.exists():
                raise AlreadyArchivedError(spec_name)
            pending = self.approvals.list_pending(spec_name)
            if pending:
                raise PendingApprovalsExistError(spec_name, [record.id for record in pending])

            self._move(source, destination, spec_name, "archive")

        log_workflow_event("spec_archived", spec_name, path=str(destination))
        return destination

    def unarchive(self, spec_name: str) -> Path:
        """Move an archived specification back into the active root."""
        source = self.paths.archived_spec_dir(spec_name)
        destination = self.paths.spec_dir(spec_name)

        with log_operation("unarchive_spec", spec_name=spec_name):
            if not source.is_dir():
                raise SpecNotFoundError(spec_name, f"Spec '{spec_name}' not found in archive")
            if destination.exists():
                raise AlreadyActiveError(spec_name)

            self._move(source, destination, spec_name, "unarchive")

        log_workflow_event("spec_unarchived", spec_name, path=str(destination))
        return destination

    def _move(self, source: Path, destination: Path, spec_name: str, verb: str) -> None:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            os.rename(source, destination)
        except OSError as exc:
            raise IOFailureError(f"Failed to {verb} spec '{spec_name}': {exc}") from exc
