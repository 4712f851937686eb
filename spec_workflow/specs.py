"""Read-through projections of specification and steering documents.

Nothing here is cached: every call re-reads the document tree so that a write
followed by a read always reflects what is on disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .archive import ArchiveManager
from .errors import DocumentNotFoundError, SpecNotFoundError
from .models import (
    DocumentContent,
    DocumentStatus,
    SpecBundle,
    SteeringStatus,
    TaskParseResult,
    TaskStatusChange,
    timestamp_from_mtime,
)
from .paths import (
    SPEC_DOCUMENTS,
    STEERING_DOCUMENTS,
    WorkflowPaths,
    as_workflow_paths,
    validate_spec_document,
)
from .storage import path_lock, read_text, write_text_atomic
from .task_parser import get_task_by_id, parse_tasks, set_task_status, task_progress
from .workflow_logging import log_operation, log_workflow_event

logger = logging.getLogger("spec_workflow.specs")


class SpecRepository:
    """Specification bundles and steering documents of one project."""

    def __init__(self, project: WorkflowPaths | Path | str, archive: Optional[ArchiveManager] = None):
        self.paths = as_workflow_paths(project)
        self.archive = archive or ArchiveManager(self.paths)

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    def _spec_root(self, spec_name: str, location: str) -> Path:
        if location == "archived":
            return self.paths.archived_spec_dir(spec_name)
        return self.paths.spec_dir(spec_name)

    def _build_bundle(self, name: str, directory: Path, location: str) -> SpecBundle:
        documents: Dict[str, DocumentStatus] = {}
        mtimes: List[float] = []
        for document in SPEC_DOCUMENTS:
            path = directory / f"{document}.md"
            try:
                stats = path.stat()
            except FileNotFoundError:
                documents[document] = DocumentStatus(exists=False)
                continue
            mtimes.append(stats.st_mtime)
            documents[document] = DocumentStatus(exists=True, last_modified=timestamp_from_mtime(stats.st_mtime))

        if not mtimes:
            mtimes.append(directory.stat().st_mtime)

        bundle = SpecBundle(
            name=name,
            location=location,
            documents=documents,
            created_at=timestamp_from_mtime(min(mtimes)),
            last_modified=timestamp_from_mtime(max(mtimes)),
        )

        if documents["tasks"].exists:
            try:
                bundle.task_progress = task_progress(read_text(directory / "tasks.md"))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(f"Unable to read tasks for spec '{name}': {exc}")
        return bundle

    def _list_root(self, root: Path, location: str) -> List[SpecBundle]:
        if not root.is_dir():
            return []
        bundles: List[SpecBundle] = []
        for directory in sorted(p for p in root.iterdir() if p.is_dir()):
            try:
                bundles.append(self._build_bundle(directory.name, directory, location))
            except OSError as exc:
                logger.warning(f"Skipping unreadable spec directory {directory}: {exc}")
        return bundles

    def list_specs(self) -> List[SpecBundle]:
        return self._list_root(self.paths.specs_root, "active")

    def list_archived_specs(self) -> List[SpecBundle]:
        return self._list_root(self.paths.archive_root, "archived")

    def get_spec(self, spec_name: str) -> SpecBundle:
        location = self.archive.locate(spec_name)
        if location == "not-found":
            raise SpecNotFoundError(spec_name)
        return self._build_bundle(spec_name, self._spec_root(spec_name, location), location)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def document_path(self, spec_name: str, document: str) -> Path:
        """Path of ``document`` in whichever root currently holds the spec."""
        validate_spec_document(document)
        location = self.archive.locate(spec_name)
        if location == "not-found":
            raise SpecNotFoundError(spec_name)
        return self._spec_root(spec_name, location) / f"{document}.md"

    def read_document(self, spec_name: str, document: str) -> DocumentContent:
        path = self.document_path(spec_name, document)
        try:
            content = read_text(path)
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            raise DocumentNotFoundError(f"{spec_name}/{document}.md") from None
        location = "archived" if self.paths.archive_root in path.parents else "active"
        return DocumentContent(content=content, last_modified=timestamp_from_mtime(mtime), location=location)

    def save_document(self, spec_name: str, document: str, content: str) -> Path:
        """Write a spec document, creating an active spec when none exists."""
        validate_spec_document(document)
        location = self.archive.locate(spec_name)
        path = self._spec_root(spec_name, location) / f"{document}.md"
        write_text_atomic(path, content)
        log_workflow_event("document_saved", spec_name, document=document, location=location)
        return path

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_tasks(self, spec_name: str) -> TaskParseResult:
        return parse_tasks(self.read_document(spec_name, "tasks").content)

    def update_task_status(
        self,
        spec_name: str,
        task_id: str,
        status: str,
        *,
        demote_others: bool = False,
    ) -> TaskStatusChange:
        """Rewrite one task's status marker in the spec's tasks document."""
        path = self.document_path(spec_name, "tasks")
        with path_lock(path), log_operation("update_task_status", spec_name=spec_name, task_id=task_id, status=status):
            try:
                content = read_text(path)
            except FileNotFoundError:
                raise DocumentNotFoundError(f"{spec_name}/tasks.md") from None

            updated = set_task_status(content, task_id, status, demote_others=demote_others)
            previous = get_task_by_id(
                [task for task in parse_tasks(content).tasks if not task.is_header], task_id.strip()
            )
            if updated != content:
                write_text_atomic(path, updated)

        log_workflow_event("task_status_updated", spec_name, task_id=task_id, status=status)
        return TaskStatusChange(
            spec_name=spec_name,
            task_id=task_id.strip(),
            previous_status=previous.status if previous else "pending",
            new_status=status,
            result=parse_tasks(updated),
        )

    # ------------------------------------------------------------------
    # Steering
    # ------------------------------------------------------------------

    def steering_status(self) -> SteeringStatus:
        root = self.paths.steering_root
        documents: Dict[str, DocumentStatus] = {}
        for name in STEERING_DOCUMENTS:
            path = root / f"{name}.md"
            try:
                stats = path.stat()
            except FileNotFoundError:
                documents[name] = DocumentStatus(exists=False)
                continue
            documents[name] = DocumentStatus(exists=True, last_modified=timestamp_from_mtime(stats.st_mtime))

        if not root.is_dir():
            return SteeringStatus(exists=False, documents=documents)
        modified = [status.last_modified for status in documents.values() if status.last_modified]
        last_modified = max(modified) if modified else timestamp_from_mtime(root.stat().st_mtime)
        return SteeringStatus(exists=True, documents=documents, last_modified=last_modified)

    def read_steering(self, name: str) -> DocumentContent:
        """Steering document content; a missing document reads as empty."""
        path = self.paths.steering_document(name)
        try:
            return DocumentContent(
                content=read_text(path),
                last_modified=timestamp_from_mtime(path.stat().st_mtime),
                location="steering",
            )
        except FileNotFoundError:
            return DocumentContent(content="", last_modified=None, location="steering")

    def save_steering(self, name: str, content: str) -> Path:
        path = self.paths.steering_document(name)
        write_text_atomic(path, content)
        log_workflow_event("steering_saved", None, document=name)
        return path
