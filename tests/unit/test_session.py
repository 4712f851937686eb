"""Unit tests for the dashboard session record."""

import json
import os
from unittest.mock import patch

from spec_workflow.session import SessionManager


class TestSessionManager:
    """Test cases for SessionManager."""

    def test_create_and_read(self, paths):
        """Test a created session is reported while this process runs."""
        manager = SessionManager(paths)

        session = manager.create_session("http://127.0.0.1:5000")

        assert session["pid"] == os.getpid()
        assert json.loads(paths.session_file.read_text())["dashboardUrl"] == "http://127.0.0.1:5000"
        assert manager.get_dashboard_url() == "http://127.0.0.1:5000"

    def test_stale_session_is_ignored(self, paths):
        """Test a session whose process is gone has no dashboard URL."""
        paths.session_file.write_text(json.dumps({"dashboardUrl": "http://localhost:5000", "pid": 999999}))
        manager = SessionManager(paths)

        with patch("spec_workflow.session.psutil.pid_exists", return_value=False):
            assert manager.get_dashboard_url() is None

        assert manager.get_session()["pid"] == 999999

    def test_malformed_session_file(self, paths):
        """Test unreadable session files read as no session."""
        paths.session_file.write_text("{not json")

        assert SessionManager(paths).get_session() is None

    def test_missing_pid(self, paths):
        """Test records without a usable pid are never alive."""
        manager = SessionManager(paths)

        assert manager.is_alive({"dashboardUrl": "http://x"}) is False
        assert manager.is_alive({"dashboardUrl": "http://x", "pid": "abc"}) is False

    def test_clear_only_own_session(self, paths):
        """Test another process's session survives a default clear."""
        paths.session_file.write_text(json.dumps({"dashboardUrl": "http://x", "pid": os.getpid() + 1}))
        manager = SessionManager(paths)

        assert manager.clear_session() is False
        assert paths.session_file.exists()

        assert manager.clear_session(only_own=False) is True
        assert not paths.session_file.exists()

    def test_clear_own_session(self, paths):
        """Test this process removes the session it created."""
        manager = SessionManager(paths)
        manager.create_session("http://127.0.0.1:5000")

        assert manager.clear_session() is True
        assert manager.get_session() is None
