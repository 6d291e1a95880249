"""
Tests for the MoveNode handler.

Tests cover:
- Simple reorder and reparent with updated sibling lists
- Rejections: cycles, self-parenting, cross-project, unknown ids, permissions
- Stale client state (old parent mismatch, stale target sibling)
- No-op idempotence
- Repeated requests after a committed move
- Wire format of requests and error responses
"""

from uuid import uuid4

import pytest

from tasktree.api.move_handler import Authorizer, MoveNodeHandler
from tasktree.api.schemas import ErrorCode, MoveNodeRequest, MoveNodeResponse
from tasktree.config import Config
from tasktree.services.activity_service import ActivityService
from tasktree.services.move_errors import CycleRejectedError
from tasktree.services.move_planner import MoveKind, Placement


class DenyAll(Authorizer):
    """Authorizer refusing every actor."""

    async def can_modify(self, actor_id, project_id):
        return False


class ExplodingApplier:
    """Applier failing with an unexpected error."""

    async def apply(self, planned, actor_id=None):
        raise RuntimeError("disk on fire")


@pytest.fixture
def handler(db_manager):
    """Create a MoveNode handler over the test database."""
    return MoveNodeHandler(db_manager)


async def orders(load_tree, project_id):
    store = await load_tree(project_id)
    return {node.title: (node.parent_id, node.order) for node in store.nodes()}


class TestSuccessfulMoves:
    """Tests for moves that are committed."""

    @pytest.mark.asyncio
    async def test_simple_reorder(self, handler, task_tree, sample_project_id, load_tree, titles):
        """Test [A, B, C] with A dropped on B answers [B, A, C]."""
        request = MoveNodeRequest(
            active_id=task_tree["A"],
            old_parent_id=None,
            new_parent_id=None,
            target_sibling_id=task_tree["B"],
            same_parent_reorder=True,
        )

        response = await handler.move_node(request)

        assert response.success
        assert response.error is None
        assert response.kind == MoveKind.REORDER
        assert [node.title for node in response.updated_nodes] == ["B", "A", "C"]
        assert titles(await load_tree(sample_project_id)) == ["B", "A", "C"]

    @pytest.mark.asyncio
    async def test_reparent(self, handler, task_tree, sample_project_id, load_tree, titles):
        """Test moving a subtask under another top-level task."""
        request = MoveNodeRequest(
            active_id=task_tree["A1"],
            old_parent_id=task_tree["A"],
            new_parent_id=task_tree["B"],
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert response.success
        assert response.kind == MoveKind.REPARENT
        assert {node.title for node in response.updated_nodes} == {"A1", "A2"}
        moved = next(node for node in response.updated_nodes if node.title == "A1")
        assert moved.parent_id == task_tree["B"]

        store = await load_tree(sample_project_id)
        assert titles(store, task_tree["B"]) == ["A1"]
        assert titles(store, task_tree["A1"]) == ["A1a"]

    @pytest.mark.asyncio
    async def test_reparent_before_sibling(self, handler, task_tree, sample_project_id, load_tree, titles):
        """Test that a target sibling in the new parent positions the task before it."""
        request = MoveNodeRequest(
            active_id=task_tree["C"],
            new_parent_id=task_tree["A"],
            target_sibling_id=task_tree["A2"],
            old_parent_id=None,
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert response.success
        assert titles(await load_tree(sample_project_id), task_tree["A"]) == ["A1", "C", "A2"]

    @pytest.mark.asyncio
    async def test_actor_is_recorded(self, handler, db_manager, task_tree, sample_project_id):
        """Test that the actor ends up in the activity log."""
        request = MoveNodeRequest(
            active_id=task_tree["A2"],
            old_parent_id=task_tree["A"],
            same_parent_reorder=False,
        )

        await handler.move_node(request, actor_id="bob")

        async with db_manager.get_session() as session:
            activities = await ActivityService(session).get_for_project(sample_project_id)
        assert [activity.actor_id for activity in activities] == ["bob"]

    @pytest.mark.asyncio
    async def test_wrong_reorder_hint_is_ignored(self, handler, task_tree, sample_project_id, load_tree):
        """Test that the server derives the move kind itself."""
        request = MoveNodeRequest(
            active_id=task_tree["A2"],
            old_parent_id=task_tree["A"],
            new_parent_id=None,
            same_parent_reorder=True,
        )

        response = await handler.move_node(request)

        assert response.success
        assert response.kind == MoveKind.REPARENT
        assert (await load_tree(sample_project_id)).get_node(task_tree["A2"]).parent_id is None

    @pytest.mark.asyncio
    async def test_from_config(self, db_manager, tmp_path, monkeypatch, task_tree):
        """Test building the handler from configuration."""
        monkeypatch.setenv("TASKTREE_ORDER_GAP", "10")
        monkeypatch.setenv("TASKTREE_LOCK_TIMEOUT", "2.5")

        handler = MoveNodeHandler.from_config(db_manager, Config(tmp_path / "none.ini"))

        assert handler.order_gap == 10.0
        assert handler.applier.lock_timeout == 2.5

        response = await handler.move_node(MoveNodeRequest(
            active_id=task_tree["A"],
            old_parent_id=None,
            same_parent_reorder=False,
        ))
        moved = next(node for node in response.updated_nodes if node.title == "A")
        assert moved.order == 3010.0


class TestNoOp:
    """Tests for moves that change nothing."""

    @pytest.mark.asyncio
    async def test_drop_on_self_is_noop(self, handler, task_tree, sample_project_id, load_tree):
        """Test that targeting the task itself succeeds without changes."""
        before = await orders(load_tree, sample_project_id)
        request = MoveNodeRequest(
            active_id=task_tree["B"],
            target_sibling_id=task_tree["B"],
            same_parent_reorder=True,
            old_parent_id=None,
        )

        response = await handler.move_node(request)

        assert response.success
        assert response.updated_nodes == []
        assert await orders(load_tree, sample_project_id) == before

    @pytest.mark.asyncio
    async def test_repeated_append_is_idempotent(self, handler, task_tree, sample_project_id, load_tree):
        """Test that appending the last child to its parent twice changes nothing."""
        before = await orders(load_tree, sample_project_id)
        request = MoveNodeRequest(
            active_id=task_tree["C"],
            same_parent_reorder=True,
            old_parent_id=None,
        )

        first = await handler.move_node(request)
        second = await handler.move_node(request)

        assert first.success and second.success
        assert first.updated_nodes == [] and second.updated_nodes == []
        assert await orders(load_tree, sample_project_id) == before


    @pytest.mark.asyncio
    async def test_repeated_sibling_drop_is_noop(self, handler, task_tree, sample_project_id, load_tree, titles):
        """Test that a drop after a later sibling, sent twice, is applied once."""
        request = MoveNodeRequest(
            active_id=task_tree["A"],
            old_parent_id=None,
            target_sibling_id=task_tree["B"],
            same_parent_reorder=True,
            placement=Placement.AFTER,
        )

        first = await handler.move_node(request)
        second = await handler.move_node(request)

        assert first.kind == MoveKind.REORDER
        assert second.success
        assert second.updated_nodes == []
        assert titles(await load_tree(sample_project_id)) == ["B", "A", "C"]

    @pytest.mark.asyncio
    async def test_repeated_reparent_is_noop(self, handler, task_tree, sample_project_id, load_tree, titles):
        """Test that a reparent sent again finds the task in place despite the old parent."""
        request = MoveNodeRequest(
            active_id=task_tree["A2"],
            old_parent_id=task_tree["A"],
            new_parent_id=task_tree["B"],
            same_parent_reorder=False,
        )

        await handler.move_node(request)
        before = await orders(load_tree, sample_project_id)
        second = await handler.move_node(request)

        assert second.success
        assert second.updated_nodes == []
        assert await orders(load_tree, sample_project_id) == before
        assert titles(await load_tree(sample_project_id), task_tree["B"]) == ["A2"]

    @pytest.mark.asyncio
    async def test_repeat_after_further_changes_is_conflict(self, handler, task_tree):
        """Test that a repeated reparent whose result was since changed is not silently accepted."""
        request = MoveNodeRequest(
            active_id=task_tree["A2"],
            old_parent_id=task_tree["A"],
            new_parent_id=task_tree["B"],
            same_parent_reorder=False,
        )
        await handler.move_node(request)
        await handler.move_node(MoveNodeRequest(
            active_id=task_tree["A1"],
            old_parent_id=task_tree["A"],
            new_parent_id=task_tree["B"],
            same_parent_reorder=False,
        ))

        response = await handler.move_node(request)

        assert response.error.code == ErrorCode.CONCURRENCY_CONFLICT

class TestRejectedMoves:
    """Tests for moves that are refused and leave the tree alone."""

    @pytest.mark.asyncio
    async def test_cycle_attempt(self, handler, task_tree, sample_project_id, load_tree):
        """Test that moving a task under its grandchild is rejected."""
        before = await orders(load_tree, sample_project_id)
        request = MoveNodeRequest(
            active_id=task_tree["A"],
            new_parent_id=task_tree["A1a"],
            old_parent_id=None,
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert not response.success
        assert response.error.code == ErrorCode.CYCLE_REJECTED
        assert not response.error.retryable
        assert response.updated_nodes == []
        assert await orders(load_tree, sample_project_id) == before

    @pytest.mark.asyncio
    async def test_self_parent(self, handler, task_tree):
        """Test that a task cannot become its own parent."""
        request = MoveNodeRequest(
            active_id=task_tree["B"],
            new_parent_id=task_tree["B"],
            old_parent_id=None,
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert response.error.code == ErrorCode.CYCLE_REJECTED

    @pytest.mark.asyncio
    async def test_cross_project(self, handler, task_tree, other_project, seed_tasks, sample_project_id, load_tree):
        """Test that a parent from another project is rejected."""
        foreign = await seed_tasks(other_project, ("Foreign", None, 1000.0))
        before = await orders(load_tree, sample_project_id)

        response = await handler.move_node(
            MoveNodeRequest(
                active_id=task_tree["B"],
                new_parent_id=foreign["Foreign"],
                old_parent_id=None,
                same_parent_reorder=False,
            )
        )

        assert response.error.code == ErrorCode.CROSS_SCOPE
        assert await orders(load_tree, sample_project_id) == before

    @pytest.mark.asyncio
    async def test_unknown_task(self, handler, task_tree):
        """Test that an unknown active task is reported as not found."""
        response = await handler.move_node(MoveNodeRequest(
            active_id=uuid4(),
            old_parent_id=None,
            same_parent_reorder=False,
        ))

        assert response.error.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_parent(self, handler, task_tree):
        """Test that an unknown new parent is reported as not found."""
        response = await handler.move_node(
            MoveNodeRequest(
                active_id=task_tree["B"],
                new_parent_id=uuid4(),
                old_parent_id=None,
                same_parent_reorder=False,
            )
        )

        assert response.error.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_forbidden(self, db_manager, task_tree, sample_project_id, load_tree):
        """Test that the authorizer can refuse a move."""
        handler = MoveNodeHandler(db_manager, authorizer=DenyAll())
        before = await orders(load_tree, sample_project_id)

        response = await handler.move_node(
            MoveNodeRequest(
                active_id=task_tree["A"],
                target_sibling_id=task_tree["C"],
                old_parent_id=None,
                same_parent_reorder=False,
            ),
            actor_id="mallory",
        )

        assert response.error.code == ErrorCode.FORBIDDEN
        assert await orders(load_tree, sample_project_id) == before

    @pytest.mark.asyncio
    async def test_old_parent_mismatch_is_conflict(self, handler, task_tree, sample_project_id, load_tree):
        """Test that a client with a stale parent gets a retryable conflict."""
        before = await orders(load_tree, sample_project_id)
        request = MoveNodeRequest(
            active_id=task_tree["A1"],
            old_parent_id=None,
            new_parent_id=task_tree["B"],
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert response.error.code == ErrorCode.CONCURRENCY_CONFLICT
        assert response.error.retryable
        assert await orders(load_tree, sample_project_id) == before

    @pytest.mark.asyncio
    async def test_stale_target_sibling_is_conflict(self, handler, task_tree):
        """Test that a target sibling outside the new parent is a conflict."""
        request = MoveNodeRequest(
            active_id=task_tree["B"],
            new_parent_id=task_tree["A"],
            target_sibling_id=task_tree["C"],
            old_parent_id=None,
            same_parent_reorder=False,
        )

        response = await handler.move_node(request)

        assert response.error.code == ErrorCode.CONCURRENCY_CONFLICT

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, db_manager, task_tree):
        """Test that errors outside the move taxonomy are raised, not wrapped."""
        handler = MoveNodeHandler(db_manager, applier=ExplodingApplier())

        with pytest.raises(RuntimeError):
            await handler.move_node(MoveNodeRequest(
                active_id=task_tree["A"],
                old_parent_id=None,
                same_parent_reorder=False,
            ))


class TestWireFormat:
    """Tests for the camelCase wire schema."""

    def test_request_accepts_camel_case(self, make_node):
        """Test that camelCase keys populate the request."""
        node = make_node("A")

        request = MoveNodeRequest.model_validate({
            "activeId": str(node.id),
            "oldParentId": None,
            "newParentId": None,
            "targetSiblingId": str(node.id),
            "sameParentReorder": True,
        })

        assert request.active_id == node.id
        assert request.target_sibling_id == node.id
        assert request.same_parent_reorder

    def test_error_response_dumps_camel_case(self):
        """Test the serialized form of a rejected move."""
        response = MoveNodeResponse.failure(CycleRejectedError("would create a cycle"))

        body = response.model_dump(mode="json", by_alias=True)

        assert body["success"] is False
        assert body["updatedNodes"] == []
        assert body["error"] == {
            "code": "CYCLE_REJECTED",
            "message": "would create a cycle",
            "retryable": False,
        }

    def test_raise_for_error_restores_exception(self):
        """Test that a failed response can be turned back into its exception."""
        response = MoveNodeResponse.failure(CycleRejectedError("nope"))

        with pytest.raises(CycleRejectedError, match="nope"):
            response.raise_for_error()

        MoveNodeResponse(success=True).raise_for_error()
