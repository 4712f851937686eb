"""HTTP and WebSocket surface for human reviewers.

Routes read through the same components the agent tools use. Every write
triggers an explicit broadcast; the change watcher running in the app lifespan
covers writes made by anything else, and per-session de-duplication keeps the
two paths from delivering the same update twice.
"""

from __future__ import annotations

import contextlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from .approvals import ApprovalStore
from .archive import ArchiveManager
from .config import DEFAULT_DASHBOARD_HOST, DEFAULT_DASHBOARD_PORT, DEFAULT_POLL_INTERVAL
from .errors import (
    DocumentNotFoundError,
    IOFailureError,
    MalformedRecordError,
    NotFoundError,
    PreconditionFailedError,
)
from .fanout import NotificationHub
from .paths import WorkflowPaths, ensure_workflow_directory, validate_project_path
from .session import SessionManager
from .specs import SpecRepository
from .watcher import ChangeWatcher

logger = logging.getLogger("spec_workflow.dashboard")

APPROVAL_ACTIONS = {
    "approve": "approved",
    "reject": "rejected",
    "needs-revision": "needs-revision",
}


class WebSocketObserver:
    """Adapts a Starlette websocket to the hub's observer interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _components(request: Request):
    return request.app.state


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Request body is not valid JSON: {exc}") from None
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def _content_from(body: Dict[str, Any]) -> str:
    content = body.get("content")
    if not isinstance(content, str):
        raise ValueError("Content must be a string")
    return content


# ----------------------------------------------------------------------
# Specifications
# ----------------------------------------------------------------------


async def list_specs(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    return JSONResponse([bundle.to_dict() for bundle in specs.list_specs()])


async def list_archived_specs(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    return JSONResponse([bundle.to_dict() for bundle in specs.list_archived_specs()])


async def get_spec(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    return JSONResponse(specs.get_spec(request.path_params["name"]).to_dict())


async def get_document(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    document = specs.read_document(request.path_params["name"], request.path_params["document"])
    return JSONResponse(document.to_dict())


async def put_document(request: Request) -> JSONResponse:
    state = _components(request)
    name = request.path_params["name"]
    document = request.path_params["document"]
    content = _content_from(await _json_body(request))

    state.specs.get_spec(name)
    path = state.specs.save_document(name, document, content)
    if document == "tasks":
        await state.hub.broadcast_tasks(name)
    await state.hub.broadcast_specs()
    return JSONResponse({"success": True, "filePath": state.paths.relative(path)})


async def get_tasks(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    name = request.path_params["name"]
    result = specs.get_tasks(name)
    return JSONResponse({
        "specName": name,
        "location": specs.archive.locate(name),
        "taskList": [task.to_dict() for task in result.tasks],
        "summary": result.summary.to_dict(),
        "inProgress": result.in_progress_task,
    })


async def put_task_status(request: Request) -> JSONResponse:
    state = _components(request)
    name = request.path_params["name"]
    body = await _json_body(request)
    status = body.get("status")
    if not isinstance(status, str):
        raise ValueError("Status must be one of pending, in-progress or completed")

    change = state.specs.update_task_status(
        name,
        request.path_params["task_id"],
        status,
        demote_others=bool(body.get("demoteOthers", False)),
    )
    await state.hub.broadcast_tasks(name)
    await state.hub.broadcast_specs()
    return JSONResponse({"success": True, **change.to_dict()})


async def archive_spec(request: Request) -> JSONResponse:
    state = _components(request)
    name = request.path_params["name"]
    destination = state.archive.archive(name)
    await state.hub.broadcast_specs()
    return JSONResponse({"success": True, "specName": name, "location": "archived",
                         "path": state.paths.relative(destination)})


async def unarchive_spec(request: Request) -> JSONResponse:
    state = _components(request)
    name = request.path_params["name"]
    destination = state.archive.unarchive(name)
    await state.hub.broadcast_specs()
    return JSONResponse({"success": True, "specName": name, "location": "active",
                         "path": state.paths.relative(destination)})


# ----------------------------------------------------------------------
# Approvals
# ----------------------------------------------------------------------


async def list_approvals(request: Request) -> JSONResponse:
    approvals: ApprovalStore = _components(request).approvals
    records = approvals.list()
    status = request.query_params.get("status")
    if status:
        records = [record for record in records if record.status == status]
    return JSONResponse([record.to_dict() for record in records])


async def get_approval(request: Request) -> JSONResponse:
    approvals: ApprovalStore = _components(request).approvals
    return JSONResponse(approvals.get(request.path_params["approval_id"]).to_dict())


async def get_approval_content(request: Request) -> JSONResponse:
    approvals: ApprovalStore = _components(request).approvals
    record = approvals.get(request.path_params["approval_id"])
    artifact = approvals.resolve_artifact(record)
    if artifact is None:
        raise DocumentNotFoundError(
            record.file_path,
            f"Failed to read file at any known location for '{record.file_path}'",
        )
    return JSONResponse(artifact.to_dict())


async def respond_to_approval(request: Request) -> JSONResponse:
    state = _components(request)
    action = request.path_params["action"]
    if action not in APPROVAL_ACTIONS:
        raise ValueError(f"Invalid approval action '{action}': expected one of {', '.join(APPROVAL_ACTIONS)}")
    body = await _json_body(request)
    response = body.get("response", "")
    if not isinstance(response, str):
        raise ValueError("Response must be a string")

    record = state.approvals.transition(
        request.path_params["approval_id"],
        APPROVAL_ACTIONS[action],
        response,
        annotations=body.get("annotations"),
        comments=body.get("comments"),
    )
    await state.hub.broadcast_approvals()
    return JSONResponse({"success": True, "approval": record.to_dict()})


# ----------------------------------------------------------------------
# Steering
# ----------------------------------------------------------------------


async def get_steering(request: Request) -> JSONResponse:
    specs: SpecRepository = _components(request).specs
    return JSONResponse(specs.read_steering(request.path_params["name"]).to_dict())


async def put_steering(request: Request) -> JSONResponse:
    state = _components(request)
    content = _content_from(await _json_body(request))
    path = state.specs.save_steering(request.path_params["name"], content)
    await state.hub.broadcast_steering()
    return JSONResponse({"success": True, "filePath": state.paths.relative(path)})


# ----------------------------------------------------------------------
# Push channel
# ----------------------------------------------------------------------


async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    hub: NotificationHub = websocket.app.state.hub
    session = await hub.connect(WebSocketObserver(websocket))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring malformed message from {session.id}")
                continue
            await hub.handle_client_message(session, message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(session)


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    body: Dict[str, Any] = {"error": str(exc), "errorType": type(exc).__name__}
    if isinstance(exc, NotFoundError):
        body["identifier"] = exc.identifier
    return JSONResponse(body, status_code=status_code)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(404, exc)


async def _precondition_failed(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(409, exc)


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(400, exc)


async def _server_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(500, exc)


EXCEPTION_HANDLERS = {
    NotFoundError: _not_found,
    PreconditionFailedError: _precondition_failed,
    MalformedRecordError: _server_error,
    ValueError: _bad_request,
    IOFailureError: _server_error,
}


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------


ROUTES = [
    Route("/api/specs", list_specs, methods=["GET"]),
    Route("/api/specs/archived", list_archived_specs, methods=["GET"]),
    Route("/api/specs/{name}", get_spec, methods=["GET"]),
    Route("/api/specs/{name}/documents/{document}", get_document, methods=["GET"]),
    Route("/api/specs/{name}/documents/{document}", put_document, methods=["PUT"]),
    Route("/api/specs/{name}/tasks", get_tasks, methods=["GET"]),
    Route("/api/specs/{name}/tasks/{task_id}/status", put_task_status, methods=["PUT"]),
    Route("/api/specs/{name}/archive", archive_spec, methods=["POST"]),
    Route("/api/specs/{name}/unarchive", unarchive_spec, methods=["POST"]),
    Route("/api/approvals", list_approvals, methods=["GET"]),
    Route("/api/approvals/{approval_id}", get_approval, methods=["GET"]),
    Route("/api/approvals/{approval_id}/content", get_approval_content, methods=["GET"]),
    Route("/api/approvals/{approval_id}/{action}", respond_to_approval, methods=["POST"]),
    Route("/api/steering/{name}", get_steering, methods=["GET"]),
    Route("/api/steering/{name}", put_steering, methods=["PUT"]),
    WebSocketRoute("/ws", websocket_endpoint),
]


def create_app(
    project: WorkflowPaths | Path | str,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    watch: bool = True,
) -> Starlette:
    """Build the reviewer application for one project."""
    if isinstance(project, WorkflowPaths):
        paths = project
    else:
        paths = WorkflowPaths.for_project(validate_project_path(project))
    ensure_workflow_directory(paths)

    approvals = ApprovalStore(paths)
    archive = ArchiveManager(paths, approvals)
    specs = SpecRepository(paths, archive)
    hub = NotificationHub(specs, approvals)
    watcher = ChangeWatcher(paths, interval=poll_interval)
    watcher.add_listener(hub.handle_change)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        if watch:
            await watcher.start()
        try:
            yield
        finally:
            await watcher.stop()

    app = Starlette(routes=ROUTES, exception_handlers=EXCEPTION_HANDLERS, lifespan=lifespan)
    app.state.paths = paths
    app.state.approvals = approvals
    app.state.archive = archive
    app.state.specs = specs
    app.state.hub = hub
    app.state.watcher = watcher
    return app


def serve(
    project: WorkflowPaths | Path | str,
    host: str = DEFAULT_DASHBOARD_HOST,
    port: int = DEFAULT_DASHBOARD_PORT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    public_url: Optional[str] = None,
) -> None:
    """Run the dashboard with uvicorn and record the session while it is up."""
    app = create_app(project, poll_interval=poll_interval)
    url = public_url or f"http://{host}:{port}"
    sessions = SessionManager(app.state.paths)
    sessions.create_session(url)
    logger.info(f"Dashboard for {app.state.paths.project_root} at {url}")
    try:
        uvicorn.run(app, host=host, port=port, log_config=None)
    finally:
        sessions.clear_session()
