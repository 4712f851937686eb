"""MCP server exposing spec workflow tools to coding agents."""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from spec_workflow.config import PROJECT_ROOT_ENV, WorkflowConfig, workflow_dir_name
from spec_workflow.errors import NotFoundError
from spec_workflow.workflow import WorkflowEngine
from spec_workflow.workflow_logging import setup_logging

mcp = FastMCP("spec-workflow")


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    return [cwd, *cwd.parents]


def _locate_workspace_root() -> Optional[Path]:
    marker = workflow_dir_name()
    for base in _candidate_bases():
        if (base / marker).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _engine(root: Optional[str]) -> WorkflowEngine:
    return WorkflowEngine(_resolve_root(root))


def _root_error(error: Exception) -> Dict[str, Any]:
    return {
        "error": str(error),
        "suggestion": f"Pass the project 'root' argument or set {PROJECT_ROOT_ENV}",
        "next_suggested_step": "spec_list",
        "message": f"Error: {error}",
    }


def _engine_or_error(root: Optional[str]) -> WorkflowEngine | Dict[str, Any]:
    try:
        return _engine(root)
    except (ValueError, NotFoundError) as e:
        return _root_error(e)


@mcp.tool()
def spec_list(root: Optional[str] = None) -> Dict[str, Any]:
    """List all specifications with document status and task progress.
    Archived specifications are reported separately."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.spec_list()


@mcp.tool()
def spec_status(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Show the current phase, task progress and pending approvals of one specification."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.spec_status(spec_name)


@mcp.tool()
def create_spec_doc(spec_name: str, document: str, content: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Create or replace a specification document.
    document is one of 'requirements', 'design' or 'tasks'. Request approval for it afterwards."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.create_spec_document(spec_name, document, content)


@mcp.tool()
def create_steering_doc(document: str, content: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Create or replace a steering document: 'product', 'tech' or 'structure'."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.create_steering_document(document, content)


@mcp.tool()
def get_steering_context(root: Optional[str] = None) -> Dict[str, Any]:
    """Load the product, tech and structure steering documents as project context.
    Only needed when the steering context is not already loaded in this conversation."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.get_steering_context()


@mcp.tool()
def get_spec_context(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Load requirements, design and tasks of an existing specification as context.
    Use when resuming work on a spec; documents written in this conversation need no reload."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.get_spec_context(spec_name)


@mcp.tool()
def manage_tasks(
    spec_name: str,
    action: str = "list",
    task_id: Optional[str] = None,
    status: Optional[str] = None,
    demote_others: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Task management for spec implementation.

    Actions:
    - 'list': all tasks with a summary
    - 'get': one task by task_id
    - 'set-status': set task_id to 'pending', 'in-progress' or 'completed'
    - 'next-pending': the first pending task
    - 'context': one task plus the requirements and design documents

    Mark a task in-progress before starting work and completed when done.
    Status markers: [ ] pending, [-] in-progress, [x] completed.
    With demote_others, setting a task in-progress resets any other in-progress task to pending.
    """

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.manage_tasks(spec_name, action=action, task_id=task_id, status=status,
                               demote_others=demote_others)


@mcp.tool()
def request_approval(
    title: str,
    file_path: str,
    spec_name: str,
    type: str = "document",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Ask a human reviewer to approve a document or action.
    file_path is relative to the project root. Poll get_approval_status until it is no longer pending."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.request_approval(title, file_path, spec_name, approval_type=type)


@mcp.tool()
def get_approval_status(approval_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Check whether an approval request has been approved, rejected or needs revision."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.get_approval_status(approval_id)


@mcp.tool()
def delete_approval(approval_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete an approved approval request once its outcome has been acted on."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.delete_approval(approval_id)


@mcp.tool()
def archive_spec(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move a finished specification into the archive. Refused while approvals are pending."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.archive_spec(spec_name)


@mcp.tool()
def unarchive_spec(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Restore an archived specification to the active specifications."""

    engine = _engine_or_error(root)
    if isinstance(engine, dict):
        return engine
    return engine.unarchive_spec(spec_name)


@mcp.resource("spec-workflow://specs")
def resource_specs() -> str:
    """Resource view listing specifications and their task progress."""

    try:
        engine = _engine(None)
    except (ValueError, NotFoundError):
        return (
            f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."
        )

    specs = engine.specs.list_specs()
    if not specs:
        return "No specifications have been created yet."

    lines = ["Spec Workflow Specifications"]
    for bundle in specs:
        lines.append("")
        lines.append(f"- {bundle.name}: {bundle.display_name}")
        for document, status in bundle.documents.items():
            lines.append(f"  {document.capitalize()}: {'present' if status.exists else 'missing'}")
        if bundle.task_progress:
            progress = bundle.task_progress
            lines.append(f"  Tasks: {progress.completed}/{progress.total} completed")

    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Spec workflow MCP server")
    parser.add_argument("root", nargs="?", help="Project root (defaults to auto-detection)")
    parser.add_argument("--dashboard", action="store_true", help="Run the reviewer dashboard instead of the tool server")
    parser.add_argument("--port", type=int, default=None, help="Dashboard port")
    args = parser.parse_args(argv)

    config = WorkflowConfig.from_env()
    setup_logging(config.log_level, config.log_file)

    if args.dashboard:
        from spec_workflow.dashboard import serve

        root = args.root or (str(config.project_root) if config.project_root else str(Path.cwd()))
        serve(
            root,
            host=config.dashboard_host,
            port=args.port or config.dashboard_port,
            poll_interval=config.poll_interval,
        )
        return

    if args.root:
        os.environ[PROJECT_ROOT_ENV] = str(Path(args.root).expanduser().resolve())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
