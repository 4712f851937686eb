"""Shared fixtures for the spec workflow test suites."""

import json

import pytest

from spec_workflow.paths import WorkflowPaths, ensure_workflow_directory


@pytest.fixture
def paths(tmp_path):
    """A project with an initialized workflow directory."""
    workflow_paths = WorkflowPaths.for_project(tmp_path, ".spec-workflow")
    ensure_workflow_directory(workflow_paths)
    return workflow_paths


@pytest.fixture
def make_spec(paths):
    """Create an active (or archived) spec with the given documents."""

    def _make_spec(name, archived=False, **documents):
        root = paths.archived_spec_dir(name) if archived else paths.spec_dir(name)
        root.mkdir(parents=True, exist_ok=True)
        for document, content in documents.items():
            (root / f"{document}.md").write_text(content, encoding="utf-8")
        return root

    return _make_spec


@pytest.fixture
def write_approval(paths):
    """Write a raw approval record, in a category directory or the legacy flat layout."""

    def _write_approval(record, category=None):
        directory = paths.approvals_root / category if category else paths.approvals_root
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{record['id']}.json"
        path.write_text(json.dumps(record, indent=2), encoding="utf-8")
        return path

    return _write_approval
