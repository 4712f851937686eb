"""Document tree layout shared by every component.

All components must agree on where specifications, archived specifications,
approval records and steering documents live, so the layout is computed in
exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import workflow_dir_name
from .errors import NotFoundError

SPEC_DOCUMENTS = ("requirements", "design", "tasks")
STEERING_DOCUMENTS = ("product", "tech", "structure")


def validate_name(value: str, what: str = "name") -> str:
    """Ensure ``value`` is usable as a single path component."""
    if not value or not value.strip():
        raise ValueError(f"{what.capitalize()} cannot be empty")
    if "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"Invalid {what} '{value}': must be a single path component")
    return value


def validate_spec_document(document: str) -> str:
    if document not in SPEC_DOCUMENTS:
        raise ValueError(
            f"Invalid document type '{document}': expected one of {', '.join(SPEC_DOCUMENTS)}"
        )
    return document


def validate_steering_document(name: str) -> str:
    if name not in STEERING_DOCUMENTS:
        raise ValueError(
            f"Invalid steering document '{name}': expected one of {', '.join(STEERING_DOCUMENTS)}"
        )
    return name


@dataclass(frozen=True)
class WorkflowPaths:
    """Paths of the workflow tree rooted at ``<project>/<workflow dir>``."""

    project_root: Path
    workflow_dir: str = ".spec-workflow"

    @classmethod
    def for_project(cls, project_root: Path | str, workflow_dir: Optional[str] = None) -> "WorkflowPaths":
        return cls(Path(project_root).resolve(), workflow_dir or workflow_dir_name())

    @property
    def workflow_root(self) -> Path:
        return self.project_root / self.workflow_dir

    @property
    def specs_root(self) -> Path:
        return self.workflow_root / "specs"

    @property
    def archive_root(self) -> Path:
        return self.workflow_root / "archive" / "specs"

    @property
    def approvals_root(self) -> Path:
        return self.workflow_root / "approvals"

    @property
    def steering_root(self) -> Path:
        return self.workflow_root / "steering"

    @property
    def session_file(self) -> Path:
        return self.workflow_root / "session.json"

    def spec_dir(self, spec_name: str) -> Path:
        return self.specs_root / validate_name(spec_name, "spec name")

    def archived_spec_dir(self, spec_name: str) -> Path:
        return self.archive_root / validate_name(spec_name, "spec name")

    def approval_category_dir(self, category_name: str) -> Path:
        return self.approvals_root / validate_name(category_name, "category name")

    def steering_document(self, name: str) -> Path:
        return self.steering_root / f"{validate_steering_document(name)}.md"

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the project root using forward slashes."""
        try:
            return path.resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()


def as_workflow_paths(value: "WorkflowPaths | Path | str") -> WorkflowPaths:
    if isinstance(value, WorkflowPaths):
        return value
    return WorkflowPaths.for_project(value)


def validate_project_path(project_path: Path | str) -> Path:
    """Resolve a project path and check it is a usable directory."""
    if not str(project_path).strip():
        raise ValueError("Project path cannot be empty")
    resolved = Path(project_path).expanduser().resolve()
    if resolved == Path(resolved.anchor):
        raise ValueError(
            f"Invalid project path: {resolved}. Cannot use a filesystem root for the spec workflow."
        )
    if not resolved.exists():
        raise NotFoundError(str(project_path), f"Project path does not exist: {project_path}")
    if not resolved.is_dir():
        raise ValueError(f"Project path is not a directory: {resolved}")
    return resolved


def ensure_workflow_directory(paths: WorkflowPaths) -> Path:
    """Create the workflow root and its standing sub-directories.

    The approvals directory is created on demand by the approval store.
    """
    for directory in (paths.workflow_root, paths.specs_root, paths.archive_root, paths.steering_root):
        directory.mkdir(parents=True, exist_ok=True)
    return paths.workflow_root
