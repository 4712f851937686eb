"""Change detection over the document tree.

The watcher polls ``(mtime_ns, size)`` signatures of everything under the
workflow root and turns differences into classified :class:`ChangeEvent`
objects. Events for writes made by this process are delivered too; there is
no debouncing, so a rapid sequence of writes may produce several events.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .config import DEFAULT_POLL_INTERVAL
from .paths import WorkflowPaths

logger = logging.getLogger("spec_workflow.watcher")

CHANGE_ACTIONS = ("created", "modified", "deleted")

Listener = Callable[["ChangeEvent"], Union[None, Awaitable[None]]]
Signature = Tuple[int, int]

# Directories have no content signature; only their appearance matters.
_DIRECTORY_SIGNATURE: Signature = (-1, -1)


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A classified change to one path in the document tree."""

    action: str
    subsystem: str
    zone: str
    path: Path
    spec_name: Optional[str] = None
    document: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "subsystem": self.subsystem,
            "zone": self.zone,
            "specName": self.spec_name,
            "document": self.document,
            "path": str(self.path),
        }


def classify_path(paths: WorkflowPaths, path: Path, action: str) -> Optional[ChangeEvent]:
    """Classify a changed path by its shape relative to the workflow root.

    Returns ``None`` for anything outside the known layout, including the
    temporary files atomic writes leave behind for an instant.
    """
    if action not in CHANGE_ACTIONS:
        raise ValueError(f"Invalid change action '{action}'")
    try:
        parts = Path(path).relative_to(paths.workflow_root).parts
    except ValueError:
        return None
    if not parts or parts[-1].startswith("."):
        return None

    if parts[0] == "specs":
        return _classify_spec(path, action, "active", parts[1:])
    if parts[:2] == ("archive", "specs"):
        return _classify_spec(path, action, "archived", parts[2:])

    if parts[0] == "approvals" and parts[-1].endswith(".json"):
        if len(parts) == 2:
            return ChangeEvent(action, "approval", "approvals", path)
        if len(parts) == 3:
            return ChangeEvent(action, "approval", "approvals", path, spec_name=parts[1])
        return None

    if parts[0] == "steering" and len(parts) == 2 and parts[1].endswith(".md"):
        return ChangeEvent(action, "steering", "steering", path, document=parts[1][:-3])

    return None


def _classify_spec(path: Path, action: str, zone: str, rest: Tuple[str, ...]) -> Optional[ChangeEvent]:
    if len(rest) == 1 and not rest[0].endswith(".md"):
        return ChangeEvent(action, "spec-directory", zone, path, spec_name=rest[0])
    if len(rest) == 2 and rest[1].endswith(".md"):
        document = rest[1][:-3]
        subsystem = "task-document" if document == "tasks" else "spec-document"
        return ChangeEvent(action, subsystem, zone, path, spec_name=rest[0], document=document)
    return None


class ChangeWatcher:
    """Poll the workflow root and notify listeners of classified changes."""

    def __init__(self, paths: WorkflowPaths, interval: float = DEFAULT_POLL_INTERVAL):
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        self.paths = paths
        self.interval = interval
        self._snapshot: Optional[Dict[Path, Signature]] = None
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _take_snapshot(self) -> Dict[Path, Signature]:
        root = self.paths.workflow_root
        snapshot: Dict[Path, Signature] = {}
        if not root.is_dir():
            return snapshot

        def on_error(error: OSError) -> None:
            logger.debug(f"Skipping unreadable path during scan: {error}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            current = Path(dirpath)
            dirnames[:] = [name for name in dirnames if not name.startswith(".")]
            for name in dirnames:
                snapshot[current / name] = _DIRECTORY_SIGNATURE
            for name in filenames:
                if name.startswith("."):
                    continue
                file_path = current / name
                try:
                    stats = file_path.stat()
                except OSError:
                    continue
                snapshot[file_path] = (stats.st_mtime_ns, stats.st_size)
        return snapshot

    def scan(self) -> List[ChangeEvent]:
        """Diff the tree against the previous scan and classify the changes.

        The first scan only records the current state and returns nothing.
        """
        current = self._take_snapshot()
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return []

        changes: List[Tuple[str, Path]] = []
        for path in sorted(previous.keys() - current.keys()):
            changes.append(("deleted", path))
        for path in sorted(current.keys() - previous.keys()):
            changes.append(("created", path))
        for path in sorted(current.keys() & previous.keys()):
            if current[path] != previous[path]:
                changes.append(("modified", path))

        events = []
        for action, path in changes:
            event = classify_path(self.paths, path, action)
            if event is not None:
                events.append(event)
        return events

    async def dispatch(self, events: List[ChangeEvent]) -> None:
        """Deliver events to every listener; a failing listener is logged and skipped."""
        for event in events:
            logger.debug(f"Change detected: {event.action} {event.subsystem} {event.path}")
            for listener in list(self._listeners):
                try:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(f"Change listener failed for {event.path}")

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                events = await asyncio.to_thread(self.scan)
            except OSError as exc:
                logger.warning(f"Workflow scan failed: {exc}")
                continue
            if events:
                await self.dispatch(events)

    async def start(self) -> None:
        if self.running:
            return
        await asyncio.to_thread(self.scan)
        self._task = asyncio.create_task(self._poll())
        logger.info(f"Watching {self.paths.workflow_root} every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Change watcher stopped")
