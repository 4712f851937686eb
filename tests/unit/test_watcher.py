"""Unit tests for change classification and polling."""

import asyncio
import os

import pytest

from spec_workflow.watcher import ChangeWatcher, classify_path


class TestClassifyPath:
    """Test cases for classify_path."""

    def test_active_task_document(self, paths):
        """Test tasks.md under an active spec."""
        event = classify_path(paths, paths.spec_dir("auth") / "tasks.md", "modified")

        assert event.subsystem == "task-document"
        assert event.zone == "active"
        assert event.spec_name == "auth"
        assert event.document == "tasks"

    def test_archived_spec_document(self, paths):
        """Test documents under the archive root."""
        event = classify_path(paths, paths.archived_spec_dir("auth") / "design.md", "created")

        assert event.subsystem == "spec-document"
        assert event.zone == "archived"
        assert event.document == "design"

    def test_spec_directory(self, paths):
        """Test a spec directory appearing or disappearing."""
        event = classify_path(paths, paths.spec_dir("auth"), "deleted")

        assert event.subsystem == "spec-directory"
        assert event.spec_name == "auth"
        assert event.document is None

    def test_approval_records(self, paths):
        """Test category and legacy approval files."""
        nested = classify_path(paths, paths.approvals_root / "auth" / "a1.json", "created")
        flat = classify_path(paths, paths.approvals_root / "a1.json", "created")

        assert nested.subsystem == "approval"
        assert nested.spec_name == "auth"
        assert flat.subsystem == "approval"
        assert flat.spec_name is None

    def test_steering_document(self, paths):
        """Test steering documents carry no spec name."""
        event = classify_path(paths, paths.steering_root / "tech.md", "modified")

        assert event.subsystem == "steering"
        assert event.zone == "steering"
        assert event.spec_name is None
        assert event.document == "tech"

    @pytest.mark.parametrize("relative", [
        "session.json",
        "specs",
        "archive/specs",
        "specs/auth/notes/extra.md",
        "specs/auth/.tasks.md.x1y2.tmp",
        "approvals/auth",
        "steering/logo.png",
    ])
    def test_unrecognized_shapes(self, paths, relative):
        """Test paths outside the known layout are ignored."""
        assert classify_path(paths, paths.workflow_root / relative, "created") is None

    def test_outside_workflow_root(self, paths):
        """Test paths outside the workflow directory are ignored."""
        assert classify_path(paths, paths.project_root / "README.md", "created") is None

    def test_invalid_action(self, paths):
        """Test only created, modified and deleted are accepted."""
        with pytest.raises(ValueError):
            classify_path(paths, paths.steering_root / "tech.md", "renamed")


class TestChangeWatcherScan:
    """Test cases for snapshot diffing."""

    def test_first_scan_primes_snapshot(self, paths, make_spec):
        """Test existing files are not reported as new."""
        make_spec("auth", tasks="- [ ] 1. A\n")

        assert ChangeWatcher(paths).scan() == []

    def test_detects_created_modified_deleted(self, paths, make_spec):
        """Test each kind of change is classified."""
        watcher = ChangeWatcher(paths)
        watcher.scan()

        root = make_spec("auth", tasks="- [ ] 1. A\n")
        created = watcher.scan()
        assert [(e.action, e.subsystem) for e in created] == [
            ("created", "spec-directory"),
            ("created", "task-document"),
        ]

        tasks = root / "tasks.md"
        tasks.write_text("- [x] 1. A\n- [ ] 2. B\n")
        stats = tasks.stat()
        os.utime(tasks, ns=(stats.st_atime_ns, stats.st_mtime_ns + 1_000_000_000))
        modified = watcher.scan()
        assert [(e.action, e.document) for e in modified] == [("modified", "tasks")]

        tasks.unlink()
        deleted = watcher.scan()
        assert [(e.action, e.document) for e in deleted] == [("deleted", "tasks")]

    def test_no_changes(self, paths, make_spec):
        """Test an unchanged tree produces no events."""
        make_spec("auth", tasks="- [ ] 1. A\n")
        watcher = ChangeWatcher(paths)
        watcher.scan()

        assert watcher.scan() == []

    def test_hidden_temporary_files_ignored(self, paths, make_spec):
        """Test leftovers of atomic writes never produce events."""
        root = make_spec("auth")
        watcher = ChangeWatcher(paths)
        watcher.scan()

        (root / ".tasks.md.abc123.tmp").write_text("partial")

        assert watcher.scan() == []

    def test_invalid_interval(self, paths):
        """Test the poll interval must be positive."""
        with pytest.raises(ValueError):
            ChangeWatcher(paths, interval=0)


class TestChangeWatcherDispatch:
    """Test cases for listener dispatch and the polling loop."""

    def test_dispatch_isolates_failing_listener(self, paths):
        """Test one failing listener does not stop the others."""
        watcher = ChangeWatcher(paths)
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        async def async_listener(event):
            received.append(("async", event.document))

        watcher.add_listener(broken)
        watcher.add_listener(lambda event: received.append(("sync", event.document)))
        watcher.add_listener(async_listener)

        event = classify_path(paths, paths.steering_root / "tech.md", "modified")
        asyncio.run(watcher.dispatch([event]))

        assert received == [("sync", "tech"), ("async", "tech")]

    def test_polling_loop_delivers_events(self, paths):
        """Test the background loop notices a new file."""
        watcher = ChangeWatcher(paths, interval=0.01)
        received = []
        watcher.add_listener(received.append)

        async def scenario():
            await watcher.start()
            try:
                (paths.steering_root / "product.md").write_text("# Product\n")
                for _ in range(200):
                    if received:
                        break
                    await asyncio.sleep(0.01)
            finally:
                await watcher.stop()

        asyncio.run(scenario())

        assert received
        assert received[0].subsystem == "steering"
        assert not watcher.running
