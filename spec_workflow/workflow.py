"""Workflow orchestration for the agent-facing tools.

This module composes the document tree components into one engine whose
methods return plain dictionaries. Failures are reported as payloads carrying
an ``error`` message, a ``suggestion`` and the ``next_suggested_step`` so that
an automated caller can recover without parsing exception text.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .approvals import ApprovalStore
from .archive import ArchiveManager
from .errors import (
    DocumentNotFoundError,
    NotFoundError,
    PreconditionFailedError,
    SpecNotFoundError,
    TaskNotFoundError,
    WorkflowError,
)
from .models import SpecBundle, TASK_STATUSES
from .paths import (
    SPEC_DOCUMENTS,
    STEERING_DOCUMENTS,
    WorkflowPaths,
    ensure_workflow_directory,
    validate_project_path,
)
from .session import SessionManager
from .specs import SpecRepository
from .task_parser import find_next_pending_task, get_task_by_id
from .workflow_logging import log_error_with_context, log_operation, log_performance

logger = logging.getLogger("spec_workflow.workflow")

TASK_ACTIONS = ("list", "get", "set-status", "next-pending", "context")

_HANDLED_ERRORS = (WorkflowError, ValueError, OSError)


def determine_phase(bundle: SpecBundle) -> Dict[str, str]:
    """Derive the current phase and overall status of a specification."""
    documents = bundle.documents
    progress = bundle.task_progress
    if not documents["requirements"].exists:
        return {"current_phase": "requirements", "overall_status": "requirements-needed"}
    if not documents["design"].exists:
        return {"current_phase": "design", "overall_status": "design-needed"}
    if not documents["tasks"].exists:
        return {"current_phase": "tasks", "overall_status": "tasks-needed"}
    if progress and progress.pending > 0:
        return {"current_phase": "implementation", "overall_status": "implementing"}
    if progress and progress.total > 0 and progress.completed == progress.total:
        return {"current_phase": "completed", "overall_status": "completed"}
    return {"current_phase": "implementation", "overall_status": "ready-for-implementation"}


def _format_context(heading: str, sections: List[str]) -> str:
    body = "\n\n---\n\n".join(sections)
    return f"{heading}\n\n{body}\n\n**Note**: These documents are pre-loaded; there is no need to read them again."


class WorkflowEngine:
    """Entry point used by the MCP tools for one project."""

    def __init__(self, root: Path | str, workflow_dir: Optional[str] = None):
        project_root = validate_project_path(root)
        self.paths = WorkflowPaths.for_project(project_root, workflow_dir)
        self.approvals = ApprovalStore(self.paths)
        self.archive = ArchiveManager(self.paths, self.approvals)
        self.specs = SpecRepository(self.paths, self.archive)
        self.sessions = SessionManager(self.paths)

    @property
    def project_root(self) -> Path:
        return self.paths.project_root

    def _project_context(self, **extra: Any) -> Dict[str, Any]:
        return {
            "project_path": str(self.paths.project_root),
            "workflow_root": str(self.paths.workflow_root),
            "dashboard_url": self.sessions.get_dashboard_url(),
            **extra,
        }

    def _failure(
        self,
        error: Exception,
        operation: str,
        suggestion: str,
        next_step: str,
        **context: Any,
    ) -> Dict[str, Any]:
        if isinstance(error, (WorkflowError, ValueError)):
            logger.warning(f"{operation} failed: {error}")
        else:
            log_error_with_context(error, {"operation": operation, **context})

        payload: Dict[str, Any] = {
            "error": str(error),
            "error_type": type(error).__name__,
            "suggestion": suggestion,
            "next_suggested_step": next_step,
            "message": f"Error: {error}",
        }
        if isinstance(error, NotFoundError):
            payload["identifier"] = error.identifier
        return payload

    # ------------------------------------------------------------------
    # Specifications
    # ------------------------------------------------------------------

    def spec_list(self) -> Dict[str, Any]:
        """List active and archived specifications with task progress."""
        try:
            active = self.specs.list_specs()
            archived = self.specs.list_archived_specs()
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "spec_list",
                "Check that the project root exists and is readable",
                "spec_list",
            )

        return {
            "specs": [bundle.to_dict() for bundle in active],
            "archived_specs": [bundle.to_dict() for bundle in archived],
            "total": len(active),
            "next_suggested_step": "spec_status" if active else "create_spec_doc",
            "workflow_tip": (
                "Next: Inspect a specification with spec_status"
                if active
                else "Next: Create requirements for a new specification using create_spec_doc"
            ),
            "project_context": self._project_context(),
            "message": f"Found {len(active)} active and {len(archived)} archived specification(s)",
        }

    def spec_status(self, spec_name: str) -> Dict[str, Any]:
        """Report phase completion, task progress and pending approvals for a spec."""
        try:
            bundle = self.specs.get_spec(spec_name)
            pending = self.approvals.list_pending(spec_name)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "spec_status",
                "Use spec_list to see available specifications",
                "spec_list",
                spec_name=spec_name,
            )

        phase = determine_phase(bundle)
        next_steps = {
            "requirements": ("create_spec_doc", "Create requirements.md, then request approval for it"),
            "design": ("create_spec_doc", "Create design.md from the approved requirements"),
            "tasks": ("create_spec_doc", "Break the design down into tasks.md"),
            "implementation": ("manage_tasks", "Use manage_tasks with action 'next-pending' to pick up work"),
            "completed": ("archive_spec", "All tasks are complete; archive the specification when done"),
        }
        next_step, tip = next_steps[phase["current_phase"]]
        if pending:
            next_step, tip = "get_approval_status", f"Wait for {len(pending)} pending approval(s) before continuing"

        return {
            "spec": bundle.to_dict(),
            **phase,
            "task_progress": bundle.task_progress.to_dict() if bundle.task_progress else {
                "total": 0, "completed": 0, "pending": 0,
            },
            "pending_approvals": [record.id for record in pending],
            "next_suggested_step": next_step,
            "workflow_tip": tip,
            "project_context": self._project_context(spec_name=spec_name),
            "message": f"Specification '{spec_name}' status: {phase['overall_status']}",
        }

    @log_performance("create_spec_document")
    def create_spec_document(self, spec_name: str, document: str, content: str) -> Dict[str, Any]:
        """Write requirements, design or tasks for a specification."""
        try:
            if not content or not content.strip():
                raise ValueError("Document content cannot be empty")
            with log_operation("create_spec_document", spec_name=spec_name, document=document):
                ensure_workflow_directory(self.paths)
                path = self.specs.save_document(spec_name, document, content)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "create_spec_document",
                "Use a single-segment spec name and one of requirements, design or tasks",
                "create_spec_doc",
                spec_name=spec_name,
                document=document,
            )

        relative = self.paths.relative(path)
        return {
            "spec_name": spec_name,
            "document": document,
            "file_path": relative,
            "next_suggested_step": "request_approval",
            "workflow_tip": f"Next: Request approval for {document}.md with request_approval",
            "message": f"Saved {relative}",
        }

    def create_steering_document(self, name: str, content: str) -> Dict[str, Any]:
        try:
            if not content or not content.strip():
                raise ValueError("Steering content cannot be empty")
            path = self.specs.save_steering(name, content)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "create_steering_document",
                "Steering documents are product, tech and structure",
                "create_steering_doc",
                document=name,
            )
        return {
            "document": name,
            "file_path": self.paths.relative(path),
            "steering": self.specs.steering_status().to_dict(),
            "next_suggested_step": "request_approval",
            "message": f"Saved steering document {name}.md",
        }

    # ------------------------------------------------------------------
    # Context loading
    # ------------------------------------------------------------------

    def get_steering_context(self) -> Dict[str, Any]:
        """Load product, tech and structure documents as one markdown context."""
        try:
            steering = self.specs.steering_status()
            sections: List[str] = []
            documents: Dict[str, bool] = {}
            for name, title in zip(STEERING_DOCUMENTS, ("Product Context", "Technology Context", "Structure Context")):
                content = self.specs.read_steering(name).content.strip()
                documents[name] = bool(content)
                if content:
                    sections.append(f"### {title}\n{content}")
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "get_steering_context",
                "Check that the steering directory is readable",
                "create_steering_doc",
            )

        if not sections:
            message = "Steering documents exist but are empty" if steering.exists else "No steering documents found"
            return {
                "context": "## Steering Documents Context\n\n" + (
                    "Steering documents found but all are empty."
                    if steering.exists
                    else "No steering documents found. Proceed using best practices for the detected technology stack."
                ),
                "documents": documents,
                "sections": 0,
                "next_suggested_step": "create_spec_doc",
                "workflow_tip": "Steering documents are optional; create them with create_steering_doc if the project needs them",
                "project_context": self._project_context(),
                "message": message,
            }

        return {
            "context": _format_context("## Steering Documents Context (Pre-loaded)", sections),
            "documents": documents,
            "sections": len(sections),
            "next_suggested_step": "create_spec_doc",
            "workflow_tip": "Keep requirements, design and tasks aligned with the steering documents",
            "project_context": self._project_context(),
            "message": "Steering context loaded",
        }

    def get_spec_context(self, spec_name: str) -> Dict[str, Any]:
        """Load requirements, design and tasks of a spec as one markdown context."""
        try:
            bundle = self.specs.get_spec(spec_name)
            sections: List[str] = []
            documents: Dict[str, bool] = {}
            for document in SPEC_DOCUMENTS:
                try:
                    content = self.specs.read_document(spec_name, document).content.strip()
                except DocumentNotFoundError:
                    content = ""
                documents[document] = bool(content)
                if content:
                    sections.append(f"### {document.capitalize()}\n{content}")
        except _HANDLED_ERRORS as e:
            failure = self._failure(
                e,
                "get_spec_context",
                "Use spec_list to see available specifications",
                "spec_list",
                spec_name=spec_name,
            )
            if isinstance(e, SpecNotFoundError):
                failure["available_specs"] = self._available_spec_names()
            return failure

        spec_dir = (
            self.paths.archived_spec_dir(spec_name)
            if bundle.location == "archived"
            else self.paths.spec_dir(spec_name)
        )
        spec_path = self.paths.relative(spec_dir)
        if not sections:
            return {
                "spec_name": spec_name,
                "location": bundle.location,
                "context": f"## Specification Context\n\nNo specification documents found for: {spec_name}",
                "documents": documents,
                "sections": 0,
                "spec_path": spec_path,
                "next_suggested_step": "create_spec_doc",
                "workflow_tip": "Write requirements.md first with create_spec_doc",
                "project_context": self._project_context(spec_name=spec_name),
                "message": f"Specification documents for '{spec_name}' exist but are empty",
            }

        return {
            "spec_name": spec_name,
            "location": bundle.location,
            "context": _format_context(f"## Specification Context (Pre-loaded): {spec_name}", sections),
            "documents": documents,
            "sections": len(sections),
            "spec_path": spec_path,
            "next_suggested_step": "manage_tasks" if documents["tasks"] else "create_spec_doc",
            "workflow_tip": "Reference requirements and design when implementing tasks",
            "project_context": self._project_context(spec_name=spec_name),
            "message": f"Specification context loaded for '{spec_name}'",
        }

    def _available_spec_names(self) -> List[str]:
        try:
            return [bundle.name for bundle in self.specs.list_specs()]
        except _HANDLED_ERRORS as e:
            logger.warning(f"Could not list specifications: {e}")
            return []

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def manage_tasks(
        self,
        spec_name: str,
        action: str = "list",
        task_id: Optional[str] = None,
        status: Optional[str] = None,
        demote_others: bool = False,
    ) -> Dict[str, Any]:
        """List, inspect and update the tasks of a specification."""
        try:
            if action not in TASK_ACTIONS:
                raise ValueError(f"Invalid action '{action}': expected one of {', '.join(TASK_ACTIONS)}")
            if action in ("get", "set-status", "context") and not task_id:
                raise ValueError(f"Task ID required for {action} action")
            if action == "set-status" and status not in TASK_STATUSES:
                raise ValueError(f"Status required for set-status action: one of {', '.join(TASK_STATUSES)}")

            if action == "set-status":
                change = self.specs.update_task_status(spec_name, task_id, status, demote_others=demote_others)
                next_step = "manage_tasks" if status != "in-progress" else "implement"
                return {
                    **change.to_dict(),
                    "next_suggested_step": next_step,
                    "workflow_tip": (
                        "Begin implementation of this task"
                        if status == "in-progress"
                        else "Use action 'next-pending' to get the next task"
                    ),
                    "project_context": self._project_context(spec_name=spec_name),
                    "message": f"Task {change.task_id} status updated to {status}",
                }

            result = self.specs.get_tasks(spec_name)
            tasks = result.tasks

            if action == "list":
                summary = result.summary
                return {
                    "spec_name": spec_name,
                    "tasks": [task.to_dict() for task in tasks],
                    "summary": summary.to_dict(),
                    "in_progress": result.in_progress_task,
                    "next_suggested_step": "manage_tasks",
                    "message": (
                        f"Found {summary.total} tasks ({summary.completed} completed, "
                        f"{summary.in_progress} in-progress, {summary.pending} pending)"
                    ),
                }

            if action == "next-pending":
                task = find_next_pending_task(tasks)
                in_progress = [t.to_dict() for t in tasks if t.in_progress and not t.is_header]
                if task is None:
                    message = (
                        f"No pending tasks. {len(in_progress)} task(s) in progress."
                        if in_progress else "All tasks are completed"
                    )
                    return {
                        "spec_name": spec_name,
                        "next_task": None,
                        "in_progress_tasks": in_progress,
                        "next_suggested_step": "manage_tasks" if in_progress else "archive_spec",
                        "message": message,
                    }
                return {
                    "spec_name": spec_name,
                    "next_task": task.to_dict(),
                    "in_progress_tasks": in_progress,
                    "next_suggested_step": "manage_tasks",
                    "workflow_tip": f"Mark task {task.id} in-progress with action 'set-status' before starting",
                    "message": f"Next pending task: {task.id} - {task.description}",
                }

            task = get_task_by_id(tasks, task_id.strip())
            if task is None or task.is_header:
                raise TaskNotFoundError(task_id.strip())

            if action == "get":
                return {
                    "spec_name": spec_name,
                    "task": task.to_dict(),
                    "next_suggested_step": "manage_tasks",
                    "message": f"Task {task.id}: {task.description}",
                }

            context: Dict[str, Optional[str]] = {}
            for document in ("requirements", "design"):
                try:
                    context[document] = self.specs.read_document(spec_name, document).content
                except DocumentNotFoundError:
                    context[document] = None
            return {
                "spec_name": spec_name,
                "task": task.to_dict(),
                "requirements": context["requirements"],
                "design": context["design"],
                "next_suggested_step": "manage_tasks",
                "workflow_tip": f"Mark task {task.id} in-progress, implement it, then mark it completed",
                "message": f"Implementation context for task {task.id}",
            }
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "manage_tasks",
                "Use action 'list' to see available task IDs",
                "manage_tasks",
                spec_name=spec_name,
                action=action,
                task_id=task_id,
            )

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def request_approval(
        self,
        title: str,
        file_path: str,
        spec_name: str,
        approval_type: str = "document",
    ) -> Dict[str, Any]:
        """Create a pending approval request for a document of ``spec_name``."""
        try:
            record = self.approvals.create(title, file_path, spec_name, approval_type)
            artifact = self.approvals.resolve_artifact(record)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "request_approval",
                "Provide a title, a file path relative to the project root and the spec name",
                "request_approval",
                spec_name=spec_name,
                file_path=file_path,
            )

        dashboard_url = self.sessions.get_dashboard_url()
        payload = {
            "approval_id": record.id,
            "approval": record.to_dict(),
            "artifact_found": artifact is not None,
            "dashboard_url": dashboard_url,
            "next_suggested_step": "get_approval_status",
            "workflow_tip": (
                f"Ask the reviewer to respond in the dashboard ({dashboard_url or 'not running'}), "
                f"then poll get_approval_status with '{record.id}'"
            ),
            "message": f"Approval request '{record.title}' created with ID {record.id}",
        }
        if artifact is None:
            payload["warning"] = f"No readable file found for '{file_path}'; reviewers will not see its content"
        return payload

    def get_approval_status(self, approval_id: str) -> Dict[str, Any]:
        try:
            record = self.approvals.get(approval_id)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "get_approval_status",
                "Check the approval ID returned by request_approval",
                "request_approval",
                approval_id=approval_id,
            )

        next_steps = {
            "pending": ("get_approval_status", "Approval is still pending; poll again after the reviewer responds"),
            "approved": ("delete_approval", "Approved; delete the approval request and continue"),
            "rejected": ("create_spec_doc", "Rejected; revise the document using the response"),
            "needs-revision": ("create_spec_doc", "Revise the document using the response and comments"),
        }
        next_step, tip = next_steps[record.status]
        return {
            "approval_id": record.id,
            "title": record.title,
            "status": record.status,
            "created_at": record.created_at,
            "responded_at": record.responded_at,
            "response": record.response,
            "annotations": record.annotations,
            "comments": [comment.to_dict() for comment in record.comments],
            "is_completed": record.status in ("approved", "rejected"),
            "next_suggested_step": next_step,
            "workflow_tip": tip,
            "message": f"Approval status: {record.status}",
        }

    def delete_approval(self, approval_id: str) -> Dict[str, Any]:
        try:
            record = self.approvals.delete(approval_id)
        except _HANDLED_ERRORS as e:
            step = "get_approval_status" if isinstance(e, PreconditionFailedError) else "request_approval"
            return self._failure(
                e,
                "delete_approval",
                "Only approved requests can be deleted; check the status first",
                step,
                approval_id=approval_id,
            )
        return {
            "approval_id": record.id,
            "deleted": True,
            "next_suggested_step": "spec_status",
            "message": f"Approval {record.id} deleted",
        }

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive_spec(self, spec_name: str) -> Dict[str, Any]:
        try:
            destination = self.archive.archive(spec_name)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "archive_spec",
                "Resolve pending approvals and make sure the spec is active",
                "spec_status",
                spec_name=spec_name,
            )
        return {
            "spec_name": spec_name,
            "location": "archived",
            "path": self.paths.relative(destination),
            "next_suggested_step": "spec_list",
            "message": f"Specification '{spec_name}' archived",
        }

    def unarchive_spec(self, spec_name: str) -> Dict[str, Any]:
        try:
            destination = self.archive.unarchive(spec_name)
        except _HANDLED_ERRORS as e:
            return self._failure(
                e,
                "unarchive_spec",
                "Use spec_list to see archived specifications",
                "spec_list",
                spec_name=spec_name,
            )
        return {
            "spec_name": spec_name,
            "location": "active",
            "path": self.paths.relative(destination),
            "next_suggested_step": "spec_status",
            "message": f"Specification '{spec_name}' restored to active specs",
        }
