"""Integration tests for the reviewer HTTP and WebSocket surface."""

import json

import pytest
from starlette.testclient import TestClient

from spec_workflow.dashboard import create_app


@pytest.fixture
def app(paths):
    return create_app(paths, watch=False)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _pending(approval_id, spec_name="auth", file_path=".spec-workflow/specs/auth/requirements.md"):
    return {
        "id": approval_id,
        "title": "Review requirements",
        "filePath": file_path,
        "categoryName": spec_name,
        "status": "pending",
        "createdAt": "2024-05-01T10:00:00Z",
    }


class TestSpecRoutes:
    """Test cases for specification routes."""

    def test_list_active_and_archived(self, client, make_spec):
        """Test the two listings stay separate."""
        make_spec("auth", requirements="# R", tasks="- [x] 1. A\n")
        make_spec("legacy", archived=True, requirements="# R")

        active = client.get("/api/specs").json()
        archived = client.get("/api/specs/archived").json()

        assert [spec["name"] for spec in active] == ["auth"]
        assert active[0]["taskProgress"] == {"total": 1, "completed": 1, "pending": 0}
        assert [spec["name"] for spec in archived] == ["legacy"]

    def test_unknown_spec_is_404(self, client):
        """Test a missing spec maps to 404 with its identifier."""
        response = client.get("/api/specs/ghost")

        assert response.status_code == 404
        assert response.json()["identifier"] == "ghost"
        assert response.json()["errorType"] == "SpecNotFoundError"

    def test_document_round_trip(self, client, make_spec):
        """Test a document saved by a reviewer reads back."""
        make_spec("auth", requirements="# R")

        saved = client.put("/api/specs/auth/documents/design", json={"content": "# Design\n"})
        loaded = client.get("/api/specs/auth/documents/design")

        assert saved.status_code == 200
        assert saved.json()["filePath"] == ".spec-workflow/specs/auth/design.md"
        assert loaded.json()["content"] == "# Design\n"
        assert loaded.json()["location"] == "active"

    def test_put_document_requires_existing_spec(self, client, paths):
        """Test reviewers cannot create specs by saving documents."""
        response = client.put("/api/specs/ghost/documents/design", json={"content": "x"})

        assert response.status_code == 404
        assert not paths.spec_dir("ghost").exists()

    @pytest.mark.parametrize("body", [b"{broken", b"[1, 2]", b'{"content": 5}'])
    def test_invalid_document_body_is_400(self, client, make_spec, body):
        """Test malformed bodies are rejected before anything is written."""
        make_spec("auth", requirements="# R")

        response = client.put("/api/specs/auth/documents/design", content=body)

        assert response.status_code == 400

    def test_task_status_update(self, client, make_spec):
        """Test a task status change through the API."""
        root = make_spec("auth", tasks="- [-] 1. Setup\n- [ ] 2. Build\n")

        response = client.put("/api/specs/auth/tasks/2/status",
                              json={"status": "in-progress", "demoteOthers": True})

        assert response.status_code == 200
        assert response.json()["previousStatus"] == "pending"
        assert (root / "tasks.md").read_text() == "- [ ] 1. Setup\n- [-] 2. Build\n"
        tasks = client.get("/api/specs/auth/tasks").json()
        assert tasks["inProgress"] == "2"
        assert tasks["location"] == "active"

    def test_unknown_task_is_404(self, client, make_spec):
        make_spec("auth", tasks="- [ ] 1. Setup\n")

        response = client.put("/api/specs/auth/tasks/9/status", json={"status": "completed"})

        assert response.status_code == 404

    def test_archive_blocked_by_pending_approval(self, client, make_spec, write_approval):
        """Test archive preconditions map to 409."""
        make_spec("auth", requirements="# R")
        write_approval(_pending("a1"), category="auth")

        response = client.post("/api/specs/auth/archive")

        assert response.status_code == 409
        assert response.json()["errorType"] == "PendingApprovalsExistError"

    def test_archive_and_restore(self, client, make_spec):
        make_spec("auth", requirements="# R")

        archived = client.post("/api/specs/auth/archive")
        restored = client.post("/api/specs/auth/unarchive")

        assert archived.json()["location"] == "archived"
        assert restored.json()["location"] == "active"
        assert [spec["name"] for spec in client.get("/api/specs").json()] == ["auth"]


class TestApprovalRoutes:
    """Test cases for approval routes."""

    def test_list_with_status_filter(self, client, write_approval):
        write_approval(_pending("p1"), category="auth")
        write_approval({**_pending("d1"), "status": "approved"}, category="auth")

        every = client.get("/api/approvals").json()
        pending = client.get("/api/approvals", params={"status": "pending"}).json()

        assert {record["id"] for record in every} == {"p1", "d1"}
        assert [record["id"] for record in pending] == ["p1"]

    def test_content_resolves_artifact(self, client, make_spec, write_approval):
        """Test the reviewed file is found from the stored path."""
        make_spec("auth", requirements="# Requirements\n")
        write_approval(_pending("a1"), category="auth")

        response = client.get("/api/approvals/a1/content")

        assert response.status_code == 200
        assert response.json()["content"] == "# Requirements\n"

    def test_content_missing_artifact_is_404(self, client, write_approval):
        write_approval(_pending("a1", file_path="nowhere/requirements.md"), category="auth")

        assert client.get("/api/approvals/a1/content").status_code == 404

    def test_respond_with_comments(self, client, write_approval):
        """Test a reviewer decision is stored with its comments."""
        write_approval(_pending("a1"), category="auth")

        response = client.post("/api/approvals/a1/needs-revision", json={
            "response": "Please split requirement 2",
            "comments": [{"type": "selection", "comment": "Too broad", "selectedText": "all users",
                          "startLine": 3, "endLine": 4}],
        })

        approval = response.json()["approval"]
        assert response.status_code == 200
        assert approval["status"] == "needs-revision"
        assert approval["comments"][0]["startLine"] == 3
        assert "respondedAt" in approval

    def test_respond_twice_is_409(self, client, write_approval):
        """Test decided approvals cannot be decided again."""
        write_approval(_pending("a1"), category="auth")
        client.post("/api/approvals/a1/approve", json={"response": "ok"})

        response = client.post("/api/approvals/a1/reject", json={"response": "changed my mind"})

        assert response.status_code == 409

    def test_unknown_action_is_400(self, client, write_approval):
        write_approval(_pending("a1"), category="auth")

        assert client.post("/api/approvals/a1/escalate", json={}).status_code == 400

    def test_malformed_record_is_500(self, client, paths):
        """Test a corrupt record is a server-side failure, not a bad request."""
        directory = paths.approvals_root / "auth"
        directory.mkdir(parents=True)
        (directory / "broken.json").write_text("{not json")

        response = client.get("/api/approvals/broken")

        assert response.status_code == 500
        assert response.json()["errorType"] == "MalformedRecordError"


class TestSteeringRoutes:
    """Test cases for steering routes."""

    def test_save_and_read(self, client):
        saved = client.put("/api/steering/product", json={"content": "# Product\n"})

        assert saved.status_code == 200
        assert client.get("/api/steering/product").json()["content"] == "# Product\n"

    def test_unknown_steering_document_is_400(self, client):
        assert client.get("/api/steering/roadmap").status_code == 400


class TestPushChannel:
    """Test cases for the WebSocket push channel."""

    def test_initial_then_selected_tasks(self, client, make_spec):
        """Test a new connection gets the snapshot and then its selected task list."""
        make_spec("auth", tasks="- [-] 1. Setup\n")

        with client.websocket_connect("/ws") as websocket:
            initial = websocket.receive_json()
            websocket.send_text(json.dumps({"type": "select-spec", "specName": "auth"}))
            tasks = websocket.receive_json()

        assert initial["type"] == "initial"
        assert [spec["name"] for spec in initial["data"]["specs"]] == ["auth"]
        assert tasks["type"] == "task-status-update"
        assert tasks["data"]["inProgress"] == "1"

    def test_write_is_pushed_to_observers(self, client, make_spec, app):
        """Test a reviewer write reaches connected observers."""
        make_spec("auth", requirements="# R")

        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            client.put("/api/steering/tech", json={"content": "# Tech\n"})
            update = websocket.receive_json()

        assert update["type"] == "steering-update"
        assert update["data"]["steering"]["documents"]["tech"] is True
        assert app.state.watcher.running is False

    def test_malformed_client_messages_are_ignored(self, client):
        """Test garbage from a client does not close the connection."""
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            websocket.send_text("not json")
            websocket.send_text(json.dumps({"type": "unknown"}))
            client.put("/api/steering/product", json={"content": "# P\n"})
            update = websocket.receive_json()

        assert update["type"] == "steering-update"

    def test_external_change_is_pushed(self, paths):
        """Test the watcher picks up writes made outside the dashboard."""
        app = create_app(paths, poll_interval=0.01)

        with TestClient(app) as client:
            assert app.state.watcher.running
            with client.websocket_connect("/ws") as websocket:
                websocket.receive_json()
                (paths.steering_root / "structure.md").write_text("# Layout\n")
                update = websocket.receive_json()

        assert update["type"] == "steering-update"
        assert update["data"]["steering"]["documents"]["structure"] is True
        assert not app.state.watcher.running
