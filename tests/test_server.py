"""
Tests for the HTTP API.

Requests go through httpx's ASGI transport, so no server is started.
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from tasktree.api.move_handler import Authorizer, MoveNodeHandler
from tasktree.api.server import create_app
from tasktree.config import Config
from tasktree.services.activity_service import ActivityService


class DenyAll(Authorizer):
    """Authorizer refusing every actor."""

    async def can_modify(self, actor_id, project_id):
        return False


def top_level_append(task_id):
    return {"activeId": str(task_id), "oldParentId": None, "sameParentReorder": False}


def make_client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(db_manager, tmp_path):
    """HTTP client bound to an app over the test database."""
    app = create_app(db_manager=db_manager, config=Config(tmp_path / "none.ini"))
    async with make_client(app) as http_client:
        yield http_client


class TestReorderEndpoint:
    """Tests for POST /api/tasks/reorder."""

    @pytest.mark.asyncio
    async def test_reorder_success(self, client, task_tree):
        """Test a successful reorder with a camelCase body."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A"]),
            "oldParentId": None,
            "newParentId": None,
            "targetSiblingId": str(task_tree["B"]),
            "sameParentReorder": True,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["error"] is None
        assert body["kind"] == "reorder"
        assert [node["title"] for node in body["updatedNodes"]] == ["B", "A", "C"]

    @pytest.mark.asyncio
    async def test_noop_returns_empty_update(self, client, task_tree):
        """Test that a no-op answers 200 with no updated nodes."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["C"]),
            "oldParentId": None,
            "sameParentReorder": True,
        })

        assert response.status_code == 200
        assert response.json()["updatedNodes"] == []

    @pytest.mark.asyncio
    async def test_cycle_is_bad_request(self, client, task_tree):
        """Test that a cycle attempt answers 400 with CYCLE_REJECTED."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A"]),
            "oldParentId": None,
            "newParentId": str(task_tree["A1"]),
            "sameParentReorder": False,
        })

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "CYCLE_REJECTED"
        assert body["error"]["retryable"] is False

    @pytest.mark.asyncio
    async def test_unknown_task_is_not_found(self, client, task_tree):
        """Test that an unknown task answers 404."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(uuid4()),
            "oldParentId": None,
            "sameParentReorder": False,
        })

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_stale_parent_is_conflict(self, client, task_tree):
        """Test that an old parent mismatch answers 409."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A1"]),
            "oldParentId": str(task_tree["B"]),
            "newParentId": None,
            "sameParentReorder": False,
        })

        assert response.status_code == 409
        assert response.json()["error"]["retryable"] is True

    @pytest.mark.asyncio
    async def test_forbidden(self, db_manager, tmp_path, task_tree):
        """Test that an authorizer refusal answers 403."""
        app = create_app(
            db_manager=db_manager,
            handler=MoveNodeHandler(db_manager, authorizer=DenyAll()),
            config=Config(tmp_path / "none.ini"),
        )

        async with make_client(app) as client:
            response = await client.post("/api/tasks/reorder", json=top_level_append(task_tree["A"]))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_malformed_body_is_unprocessable(self, client):
        """Test that a request without activeId fails validation."""
        response = await client.post("/api/tasks/reorder", json={"newParentId": None})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_old_parent_is_unprocessable(self, client, task_tree, sample_project_id, load_tree, titles):
        """Test that oldParentId must be sent, even when it is null."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A"]),
            "targetSiblingId": str(task_tree["B"]),
            "sameParentReorder": True,
        })

        assert response.status_code == 422
        assert titles(await load_tree(sample_project_id)) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_missing_reorder_hint_is_unprocessable(self, client, task_tree):
        """Test that sameParentReorder must be sent."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A"]),
            "oldParentId": None,
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_omitted_new_parent_means_root(self, client, task_tree, sample_project_id, load_tree, titles):
        """Test that leaving out newParentId moves the task to the top level."""
        response = await client.post("/api/tasks/reorder", json={
            "activeId": str(task_tree["A2"]),
            "oldParentId": str(task_tree["A"]),
            "sameParentReorder": False,
        })

        assert response.status_code == 200
        assert titles(await load_tree(sample_project_id)) == ["A", "B", "C", "A2"]

    @pytest.mark.asyncio
    async def test_repeated_request_is_noop(self, client, task_tree, sample_project_id, load_tree, titles):
        """Test that sending a committed drop again answers success without changes."""
        body = {
            "activeId": str(task_tree["A"]),
            "oldParentId": None,
            "targetSiblingId": str(task_tree["B"]),
            "sameParentReorder": True,
            "placement": "after",
        }

        first = await client.post("/api/tasks/reorder", json=body)
        second = await client.post("/api/tasks/reorder", json=body)

        assert first.status_code == second.status_code == 200
        assert second.json()["updatedNodes"] == []
        assert titles(await load_tree(sample_project_id)) == ["B", "A", "C"]

    @pytest.mark.asyncio
    async def test_user_header_is_recorded(self, client, db_manager, task_tree, sample_project_id):
        """Test that X-User-Id is stored as the actor of the move."""
        response = await client.post(
            "/api/tasks/reorder",
            json=top_level_append(task_tree["A"]),
            headers={"X-User-Id": "carol"},
        )

        assert response.status_code == 200
        async with db_manager.get_session() as session:
            activities = await ActivityService(session).get_for_project(sample_project_id)
        assert activities[0].actor_id == "carol"


class TestTreeEndpoint:
    """Tests for GET /api/projects/{project_id}/tree."""

    @pytest.mark.asyncio
    async def test_tree_in_display_order(self, client, task_tree, sample_project_id):
        """Test that nodes come back parents first, in sibling order."""
        response = await client.get(f"/api/projects/{sample_project_id}/tree")

        assert response.status_code == 200
        body = response.json()
        assert body["projectId"] == str(sample_project_id)
        assert [node["title"] for node in body["nodes"]] == ["A", "A1", "A1a", "A2", "B", "C"]
        a1 = body["nodes"][1]
        assert a1["parent_id"] == str(task_tree["A"])

    @pytest.mark.asyncio
    async def test_unknown_project_is_not_found(self, client):
        """Test that an unknown project answers 404."""
        response = await client.get(f"/api/projects/{uuid4()}/tree")

        assert response.status_code == 404


class TestProjectsEndpoint:
    """Tests for GET /api/projects."""

    @pytest.mark.asyncio
    async def test_lists_projects_with_counts(self, client, task_tree, sample_project_id, other_project):
        """Test that every project is listed with its task count."""
        response = await client.get("/api/projects")

        assert response.status_code == 200
        projects = {project["id"]: project for project in response.json()["projects"]}
        assert set(projects) == {str(sample_project_id), str(other_project)}
        assert projects[str(sample_project_id)]["name"] == "Work"
        assert projects[str(sample_project_id)]["task_count"] == 6


class TestActivityEndpoint:
    """Tests for GET /api/projects/{project_id}/activity."""

    @pytest.mark.asyncio
    async def test_recent_moves_newest_first(self, client, task_tree, sample_project_id):
        """Test that committed moves show up in the activity log."""
        await client.post("/api/tasks/reorder", json=top_level_append(task_tree["A"]))
        await client.post(
            "/api/tasks/reorder",
            json={
                "activeId": str(task_tree["A2"]),
                "oldParentId": str(task_tree["A"]),
                "newParentId": str(task_tree["B"]),
                "sameParentReorder": False,
            },
            headers={"X-User-Id": "erin"},
        )

        response = await client.get(f"/api/projects/{sample_project_id}/activity")

        assert response.status_code == 200
        body = response.json()
        assert body["projectId"] == str(sample_project_id)
        assert [entry["action"] for entry in body["activities"]] == ["moved", "reordered"]
        assert body["activities"][0]["actor_id"] == "erin"

    @pytest.mark.asyncio
    async def test_limit(self, client, task_tree, sample_project_id):
        """Test that limit caps the number of entries."""
        await client.post("/api/tasks/reorder", json=top_level_append(task_tree["A"]))
        await client.post("/api/tasks/reorder", json=top_level_append(task_tree["B"]))

        response = await client.get(f"/api/projects/{sample_project_id}/activity", params={"limit": 1})

        assert len(response.json()["activities"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_project_is_not_found(self, client):
        """Test that an unknown project answers 404."""
        response = await client.get(f"/api/projects/{uuid4()}/activity")

        assert response.status_code == 404
