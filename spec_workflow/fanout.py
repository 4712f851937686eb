"""Push notifications to connected reviewers.

Each connected observer gets an :class:`ObserverSession` that holds its own
selected specification and the last message delivered per update key. A
change to the document tree recomputes only the affected projection and pushes
the new value to every interested session concurrently.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .approvals import ApprovalStore
from .errors import NotFoundError, WorkflowError
from .specs import SpecRepository
from .watcher import ChangeEvent

logger = logging.getLogger("spec_workflow.fanout")


class Observer(Protocol):
    async def send(self, message: Dict[str, Any]) -> None:
        ...


@dataclass(slots=True)
class ObserverSession:
    """Per-connection state for one observer."""

    observer: Observer
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    selected_spec: Optional[str] = None
    last_delivered: Dict[str, str] = field(default_factory=dict)

    def select_spec(self, spec_name: Optional[str]) -> None:
        """Switch the selected spec; a selection always gets a fresh task list."""
        self.selected_spec = spec_name or None
        if self.selected_spec:
            self.last_delivered.pop(f"task-status-update:{self.selected_spec}", None)

    def wants_tasks_for(self, spec_name: str) -> bool:
        return self.selected_spec is None or self.selected_spec == spec_name


def _fingerprint(message: Dict[str, Any]) -> str:
    return json.dumps(message, sort_keys=True, default=str)


class NotificationHub:
    """Registry of observer sessions and the push entry points."""

    def __init__(self, specs: SpecRepository, approvals: ApprovalStore):
        self.specs = specs
        self.approvals = approvals
        self._sessions: Dict[str, ObserverSession] = {}

    @property
    def sessions(self) -> List[ObserverSession]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def _specs_payload(self) -> Dict[str, Any]:
        return {
            "specs": [bundle.to_dict() for bundle in self.specs.list_specs()],
            "archivedSpecs": [bundle.to_dict() for bundle in self.specs.list_archived_specs()],
        }

    def _approvals_payload(self) -> Dict[str, Any]:
        return {"approvals": [record.to_dict() for record in self.approvals.list()]}

    def _steering_payload(self) -> Dict[str, Any]:
        return {"steering": self.specs.steering_status().to_dict()}

    def _tasks_payload(self, spec_name: str) -> Dict[str, Any]:
        result = self.specs.get_tasks(spec_name)
        return {
            "specName": spec_name,
            "location": self.specs.archive.locate(spec_name),
            "taskList": [task.to_dict() for task in result.tasks],
            "summary": result.summary.to_dict(),
            "inProgress": result.in_progress_task,
        }

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def connect(self, observer: Observer) -> ObserverSession:
        """Register an observer and send it the full initial state."""
        session = ObserverSession(observer=observer)
        self._sessions[session.id] = session
        logger.info(f"Observer connected: {session.id} ({len(self._sessions)} active)")

        data: Dict[str, Any] = {}
        data.update(self._specs_payload())
        data.update(self._approvals_payload())
        data.update(self._steering_payload())
        await self._deliver(session, "initial", {"type": "initial", "data": data})
        return session

    def disconnect(self, session: ObserverSession) -> None:
        if self._sessions.pop(session.id, None) is not None:
            logger.info(f"Observer disconnected: {session.id} ({len(self._sessions)} active)")

    async def handle_client_message(self, session: ObserverSession, message: Any) -> None:
        """Apply a message received from an observer; unknown types are ignored."""
        if not isinstance(message, dict):
            logger.debug(f"Ignoring non-object message from {session.id}")
            return
        if message.get("type") == "select-spec":
            spec_name = message.get("specName")
            session.select_spec(spec_name if isinstance(spec_name, str) else None)
            logger.debug(f"Session {session.id} selected spec {session.selected_spec!r}")
            if session.selected_spec:
                await self._push_tasks(session.selected_spec, [session])
            return
        logger.debug(f"Ignoring unknown message type {message.get('type')!r} from {session.id}")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, session: ObserverSession, key: str, message: Dict[str, Any]) -> bool:
        fingerprint = _fingerprint(message)
        if session.last_delivered.get(key) == fingerprint:
            return False
        try:
            await session.observer.send(message)
        except Exception as exc:
            logger.warning(f"Delivery of {message['type']} to {session.id} failed: {exc}")
            return False
        session.last_delivered[key] = fingerprint
        return True

    async def _push(self, key: str, message: Dict[str, Any], sessions: Iterable[ObserverSession]) -> int:
        targets = list(sessions)
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver(session, key, message) for session in targets))
        return sum(1 for delivered in results if delivered)

    async def _push_tasks(self, spec_name: str, sessions: Iterable[ObserverSession]) -> int:
        try:
            data = self._tasks_payload(spec_name)
        except NotFoundError as exc:
            logger.debug(f"No task list to push for {spec_name}: {exc}")
            return 0
        message = {"type": "task-status-update", "data": data}
        return await self._push(f"task-status-update:{spec_name}", message, sessions)

    # ------------------------------------------------------------------
    # Broadcasts
    # ------------------------------------------------------------------

    async def broadcast_specs(self) -> int:
        message = {"type": "spec-update", "data": self._specs_payload()}
        return await self._push("spec-update", message, self.sessions)

    async def broadcast_approvals(self) -> int:
        message = {"type": "approval-update", "data": self._approvals_payload()}
        return await self._push("approval-update", message, self.sessions)

    async def broadcast_steering(self) -> int:
        message = {"type": "steering-update", "data": self._steering_payload()}
        return await self._push("steering-update", message, self.sessions)

    async def broadcast_tasks(self, spec_name: str) -> int:
        """Push the task list of ``spec_name`` to sessions interested in it."""
        targets = [session for session in self.sessions if session.wants_tasks_for(spec_name)]
        return await self._push_tasks(spec_name, targets)

    async def handle_change(self, event: ChangeEvent) -> None:
        """Recompute the projection affected by ``event`` and push it."""
        try:
            if event.subsystem == "task-document":
                if event.action != "deleted" and event.spec_name:
                    await self.broadcast_tasks(event.spec_name)
                await self.broadcast_specs()
            elif event.subsystem in ("spec-document", "spec-directory"):
                await self.broadcast_specs()
            elif event.subsystem == "approval":
                await self.broadcast_approvals()
            elif event.subsystem == "steering":
                await self.broadcast_steering()
        except (WorkflowError, OSError) as exc:
            logger.warning(f"Unable to push {event.subsystem} change for {event.path}: {exc}")
