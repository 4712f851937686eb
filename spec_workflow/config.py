"""Environment-driven configuration for the spec workflow engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

PROJECT_ROOT_ENV = "SPEC_WORKFLOW_PROJECT_ROOT"
WORKFLOW_DIR_ENV = "SPEC_WORKFLOW_DIR"
LOG_LEVEL_ENV = "SPEC_WORKFLOW_LOG_LEVEL"
LOG_FILE_ENV = "SPEC_WORKFLOW_LOG_FILE"
POLL_INTERVAL_ENV = "SPEC_WORKFLOW_POLL_INTERVAL"
DASHBOARD_PORT_ENV = "SPEC_WORKFLOW_DASHBOARD_PORT"
DASHBOARD_HOST_ENV = "SPEC_WORKFLOW_DASHBOARD_HOST"

DEFAULT_WORKFLOW_DIR = ".spec-workflow"
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_DASHBOARD_HOST = "127.0.0.1"
DEFAULT_DASHBOARD_PORT = 5000

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def workflow_dir_name(env: Optional[Mapping[str, str]] = None) -> str:
    """Return the name of the workflow directory inside a project."""
    source = os.environ if env is None else env
    name = (source.get(WORKFLOW_DIR_ENV) or DEFAULT_WORKFLOW_DIR).strip()
    if not name or "/" in name or "\\" in name or name in {".", ".."}:
        raise ValueError(f"{WORKFLOW_DIR_ENV} must be a single directory name, got '{name}'")
    return name


@dataclass(slots=True)
class WorkflowConfig:
    """Runtime settings shared by the tool server and the dashboard."""

    project_root: Optional[Path] = None
    workflow_dir: str = DEFAULT_WORKFLOW_DIR
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    dashboard_host: str = DEFAULT_DASHBOARD_HOST
    dashboard_port: int = DEFAULT_DASHBOARD_PORT

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "WorkflowConfig":
        """Build a configuration from environment variables."""
        source = os.environ if env is None else env

        root_value = source.get(PROJECT_ROOT_ENV)
        project_root = Path(root_value).expanduser().resolve() if root_value else None

        log_level = (source.get(LOG_LEVEL_ENV) or "INFO").strip().upper()
        if log_level not in _LOG_LEVELS:
            raise ValueError(
                f"{LOG_LEVEL_ENV} must be one of {', '.join(sorted(_LOG_LEVELS))}, got '{log_level}'"
            )

        log_file_value = source.get(LOG_FILE_ENV)
        log_file = Path(log_file_value).expanduser() if log_file_value else None

        poll_value = source.get(POLL_INTERVAL_ENV)
        try:
            poll_interval = float(poll_value) if poll_value else DEFAULT_POLL_INTERVAL
        except ValueError:
            raise ValueError(f"{POLL_INTERVAL_ENV} must be a number, got '{poll_value}'") from None
        if poll_interval <= 0:
            raise ValueError(f"{POLL_INTERVAL_ENV} must be positive, got '{poll_value}'")

        port_value = source.get(DASHBOARD_PORT_ENV)
        try:
            dashboard_port = int(port_value) if port_value else DEFAULT_DASHBOARD_PORT
        except ValueError:
            raise ValueError(f"{DASHBOARD_PORT_ENV} must be an integer, got '{port_value}'") from None
        if not 0 < dashboard_port < 65536:
            raise ValueError(f"{DASHBOARD_PORT_ENV} must be between 1 and 65535, got {dashboard_port}")

        return cls(
            project_root=project_root,
            workflow_dir=workflow_dir_name(source),
            log_level=log_level,
            log_file=log_file,
            poll_interval=poll_interval,
            dashboard_host=(source.get(DASHBOARD_HOST_ENV) or DEFAULT_DASHBOARD_HOST).strip(),
            dashboard_port=dashboard_port,
        )
