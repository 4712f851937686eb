"""Unit tests for task document parsing and status rewrites."""

import pytest

from spec_workflow.errors import (
    AmbiguousTaskError,
    PreconditionFailedError,
    TaskNotFoundError,
)
from spec_workflow.task_parser import (
    find_next_pending_task,
    get_task_by_id,
    parse_tasks,
    set_task_status,
    status_for_marker,
    task_progress,
)

NESTED_DOCUMENT = """# Tasks

- [ ] 1. Setup project
  - Files: pyproject.toml, src/app.py (new)
  - _Requirements: 1.1, 2, NFR_
  - _Leverage: src/utils.py, lib/base.py_
  - Purpose: Establish layout
  - Create package skeleton
- 2. Core features
  - [-] 2.1 Build the parser
  - [x] 2.2 Write tests
"""


class TestParseTasks:
    """Test cases for parse_tasks."""

    def test_parses_statuses_and_ids(self):
        """Test the three markers map to their statuses."""
        result = parse_tasks("- [ ] 1. Setup\n- [-] 2. Build\n- [x] 3. Ship\n")

        assert [task.id for task in result.tasks] == ["1", "2", "3"]
        assert [task.status for task in result.tasks] == ["pending", "in-progress", "completed"]
        assert result.tasks[1].description == "Build"
        assert result.in_progress_task == "2"

    def test_summary_counts(self):
        """Test the summary adds up over non-header tasks."""
        summary = parse_tasks(NESTED_DOCUMENT).summary

        assert summary.total == 3
        assert summary.completed == 1
        assert summary.in_progress == 1
        assert summary.pending == 1
        assert summary.headers == 1
        assert summary.completed <= summary.total

    def test_header_introduces_children(self):
        """Test a numbered line without a marker becomes a header."""
        result = parse_tasks(NESTED_DOCUMENT)
        header = get_task_by_id(result.tasks, "2")

        assert header is not None
        assert header.is_header
        assert header.description == "Core features"
        assert header.status == "pending"
        assert [t.id for t in result.tasks if not t.is_header] == ["1", "2.1", "2.2"]

    def test_markdown_heading_header(self):
        """Test a markdown heading with a number is a header when it has children."""
        result = parse_tasks("## 1. Foundation\n\n- [ ] 1.1 Create models\n")

        assert result.summary.total == 1
        assert result.summary.headers == 1
        assert result.tasks[0].is_header

    def test_numbered_line_without_children_is_ignored(self):
        """Test a plain numbered list item is not a task or header."""
        result = parse_tasks("1. Read the design first\n\n- [ ] 2. Implement\n")

        assert [task.id for task in result.tasks] == ["2"]
        assert result.summary.headers == 0

    def test_unknown_marker_parses_as_pending(self):
        """Test unrecognized markers fall back to pending."""
        result = parse_tasks("- [X] 1. Upper\n- [~] 2. Tilde\n")

        assert [task.status for task in result.tasks] == ["pending", "pending"]
        assert status_for_marker("?") == "pending"

    def test_checkbox_without_id_is_not_a_task(self):
        """Test checkbox lines need a numeric id."""
        result = parse_tasks("- [ ] Write docs\n- [ ] 1. Real task\n")

        assert result.summary.total == 1
        assert result.tasks[0].id == "1"

    def test_bullet_is_optional(self):
        """Test bare marker lines are tasks and keep their metadata."""
        result = parse_tasks("[ ] 1. Setup\n  - Files: setup.cfg\n[-] 2. Build\n")

        assert [task.id for task in result.tasks] == ["1", "2"]
        assert result.tasks[0].files == ["setup.cfg"]
        assert result.in_progress_task == "2"

    def test_metadata_extraction(self):
        """Test metadata lines are attached to the preceding task."""
        task = get_task_by_id(parse_tasks(NESTED_DOCUMENT).tasks, "1")

        assert task.files == ["pyproject.toml", "src/app.py"]
        assert task.requirements == ["1.1", "2"]
        assert task.leverage == "src/utils.py, lib/base.py"
        assert task.purposes == ["Establish layout"]
        assert task.implementation_details == ["Create package skeleton"]
        assert task.has_metadata()

    def test_metadata_does_not_leak_into_next_task(self):
        """Test metadata blocks end at the next task line."""
        tasks = parse_tasks(NESTED_DOCUMENT).tasks

        assert not get_task_by_id(tasks, "2.1").has_metadata()

    def test_indent_levels(self):
        """Test nested tasks report their indent level."""
        tasks = parse_tasks(NESTED_DOCUMENT).tasks

        assert get_task_by_id(tasks, "1").indent_level == 0
        assert get_task_by_id(tasks, "2.1").indent_level == 1

    def test_crlf_document(self):
        """Test carriage returns are not part of descriptions."""
        result = parse_tasks("- [ ] 1. Setup\r\n- [x] 2. Build\r\n")

        assert result.tasks[0].description == "Setup"
        assert result.summary.completed == 1

    def test_empty_document(self):
        """Test an empty document yields no tasks."""
        result = parse_tasks("")

        assert result.tasks == []
        assert result.summary.total == 0
        assert result.in_progress_task is None

    def test_to_dict_uses_camel_case(self):
        """Test task records serialize with wire field names."""
        data = parse_tasks("- [-] 1. Build\n").tasks[0].to_dict()

        assert data["lineNumber"] == 0
        assert data["inProgress"] is True
        assert data["isHeader"] is False
        assert "files" not in data


class TestSetTaskStatus:
    """Test cases for set_task_status."""

    def test_completes_task(self):
        """Test completing one task touches only its marker."""
        text = "- [ ] 1. Setup\n- [-] 2. Build\n"

        updated = set_task_status(text, "2", "completed")

        assert updated == "- [ ] 1. Setup\n- [x] 2. Build\n"
        assert updated.split("\n")[0] == text.split("\n")[0]
        summary = parse_tasks(updated).summary
        assert summary.total == 2
        assert summary.completed == 1

    def test_completes_task_without_bullets(self):
        """Test marker-only task lines are rewritten in place."""
        text = "[ ] 1. Setup\n[-] 2. Build\n"

        updated = set_task_status(text, "2", "completed")

        assert updated == "[ ] 1. Setup\n[x] 2. Build\n"
        summary = parse_tasks(updated).summary
        assert summary.total == 2
        assert summary.completed == 1

    def test_idempotent(self):
        """Test applying the same status twice changes nothing more."""
        once = set_task_status(NESTED_DOCUMENT, "2.1", "completed")
        twice = set_task_status(once, "2.1", "completed")

        assert once == twice

    def test_same_status_returns_identical_text(self):
        """Test a no-op status change leaves the document untouched."""
        assert set_task_status(NESTED_DOCUMENT, "2.2", "completed") == NESTED_DOCUMENT

    def test_preserves_every_other_line(self):
        """Test metadata, blank lines and trailing whitespace survive a rewrite."""
        text = "Intro  \n\n- [ ] 1. Setup   \n  - Files: a.py\n\n- [ ] 2. Build\n"

        updated = set_task_status(text, "1", "in-progress")

        before = text.split("\n")
        after = updated.split("\n")
        assert len(before) == len(after)
        changed = [i for i, (a, b) in enumerate(zip(before, after)) if a != b]
        assert changed == [2]
        assert after[2] == "- [-] 1. Setup   "

    def test_preserves_crlf(self):
        """Test Windows line endings are kept byte for byte."""
        text = "- [ ] 1. Setup\r\n- [-] 2. Build\r\n"

        assert set_task_status(text, "2", "completed") == "- [ ] 1. Setup\r\n- [x] 2. Build\r\n"

    def test_preserves_missing_final_newline(self):
        """Test a document without a trailing newline stays without one."""
        assert set_task_status("- [ ] 1. Only", "1", "completed") == "- [x] 1. Only"

    def test_unknown_marker_is_replaced(self):
        """Test a task with an unrecognized marker can be rewritten."""
        assert set_task_status("- [X] 1. Upper\n", "1", "completed") == "- [x] 1. Upper\n"

    def test_nested_task(self):
        """Test indented tasks keep their indentation."""
        updated = set_task_status(NESTED_DOCUMENT, "2.1", "pending")

        assert "  - [ ] 2.1 Build the parser" in updated.split("\n")

    def test_task_not_found(self):
        """Test an unknown id fails with the id attached."""
        with pytest.raises(TaskNotFoundError) as exc_info:
            set_task_status(NESTED_DOCUMENT, "9", "completed")

        assert exc_info.value.identifier == "9"

    def test_duplicate_id_is_ambiguous(self):
        """Test two lines with the same id are refused."""
        with pytest.raises(AmbiguousTaskError) as exc_info:
            set_task_status("- [ ] 1. A\n- [ ] 1. B\n", "1", "completed")

        assert exc_info.value.line_numbers == [0, 1]

    def test_header_cannot_change_status(self):
        """Test headers have no marker to rewrite."""
        with pytest.raises(PreconditionFailedError):
            set_task_status(NESTED_DOCUMENT, "2", "completed")

    def test_invalid_status(self):
        """Test unknown statuses are rejected."""
        with pytest.raises(ValueError):
            set_task_status(NESTED_DOCUMENT, "1", "done")

    def test_leaves_other_in_progress_tasks_by_default(self):
        """Test other in-progress tasks are untouched without demote_others."""
        updated = set_task_status("- [-] 1. A\n- [ ] 2. B\n", "2", "in-progress")

        assert updated == "- [-] 1. A\n- [-] 2. B\n"

    def test_demote_others(self):
        """Test demote_others keeps a single task in progress."""
        updated = set_task_status("- [-] 1. A\n- [ ] 2. B\n", "2", "in-progress", demote_others=True)

        assert updated == "- [ ] 1. A\n- [-] 2. B\n"
        assert parse_tasks(updated).in_progress_task == "2"


class TestHelpers:
    """Test cases for task lookup helpers."""

    def test_find_next_pending_task_skips_headers(self):
        """Test the next pending task is never a header."""
        text = "- 1. Group\n  - [x] 1.1 Done\n  - [ ] 1.2 Todo\n"

        task = find_next_pending_task(parse_tasks(text).tasks)

        assert task.id == "1.2"

    def test_find_next_pending_task_none(self):
        """Test no pending task yields None."""
        assert find_next_pending_task(parse_tasks("- [x] 1. Done\n").tasks) is None

    def test_task_progress(self):
        """Test progress counts match the summary."""
        progress = task_progress(NESTED_DOCUMENT)

        assert progress.to_dict() == {"total": 3, "completed": 1, "pending": 1}
