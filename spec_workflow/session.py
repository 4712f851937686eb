"""Dashboard session record.

The running dashboard writes its URL and process id to ``session.json`` so the
tool server can point agents at it. A record whose process is gone is stale and
never reported as a live dashboard.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from .models import utc_now
from .paths import WorkflowPaths, as_workflow_paths
from .storage import read_text, write_json_atomic

logger = logging.getLogger("spec_workflow.session")


class SessionManager:
    def __init__(self, project: WorkflowPaths | Path | str):
        self.paths = as_workflow_paths(project)

    @property
    def session_file(self) -> Path:
        return self.paths.session_file

    def create_session(self, dashboard_url: str) -> Dict[str, Any]:
        session = {
            "dashboardUrl": dashboard_url,
            "startedAt": utc_now(),
            "pid": os.getpid(),
        }
        write_json_atomic(self.session_file, session)
        logger.info(f"Dashboard session recorded at {dashboard_url}")
        return session

    def get_session(self) -> Optional[Dict[str, Any]]:
        """The stored session, or ``None`` when missing or unreadable."""
        try:
            data = json.loads(read_text(self.session_file))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable session file {self.session_file}: {exc}")
            return None
        if not isinstance(data, dict) or not data.get("dashboardUrl"):
            return None
        return data

    def is_alive(self, session: Dict[str, Any]) -> bool:
        try:
            pid = int(session.get("pid"))
        except (TypeError, ValueError):
            return False
        return pid > 0 and psutil.pid_exists(pid)

    def get_dashboard_url(self) -> Optional[str]:
        """URL of the running dashboard; stale sessions are ignored."""
        session = self.get_session()
        if session is None or not self.is_alive(session):
            return None
        return session["dashboardUrl"]

    def clear_session(self, only_own: bool = True) -> bool:
        """Remove the session file, by default only when this process wrote it."""
        session = self.get_session()
        if session is None:
            return False
        if only_own and session.get("pid") != os.getpid():
            return False
        try:
            self.session_file.unlink()
        except FileNotFoundError:
            return False
        logger.info("Dashboard session cleared")
        return True
