"""
Mutation applier for TaskTree.

Commits planned moves, creations and deletions. Each apply() holds the lock of the project being
changed for the whole validate-then-write sequence, re-reads the latest
committed tree, re-runs the cycle guard against it, and writes inside a
single session so a rejected or failed move leaves nothing behind.
create() and delete() take the same lock, so a task is never added under
or removed from a parent while a move into that parent is being validated.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktree.config import Config
from tasktree.database import DatabaseManager, TaskORM
from tasktree.logging_config import get_logger
from tasktree.models import ORDER_GAP, TaskNode
from tasktree.services.activity_service import ActivityService, describe_move
from tasktree.services.cycle_guard import validate_move
from tasktree.services.move_errors import (
    ConcurrencyConflictError,
    CrossScopeError,
    NodeNotFoundError,
)
from tasktree.services.move_planner import PlannedMove
from tasktree.services.task_service import DeletePolicy, TaskNotFoundError, TaskService
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


class UpdatedSubtree(BaseModel):
    """Children of the parents touched by a move, as committed."""

    old_parent_id: Optional[UUID] = None
    new_parent_id: Optional[UUID] = None
    old_siblings: List[TaskNode] = Field(default_factory=list)
    new_siblings: List[TaskNode] = Field(default_factory=list)

    @property
    def nodes(self) -> List[TaskNode]:
        """New parent's children followed by the old parent's remaining children."""
        seen = set()
        result = []
        for node in self.new_siblings + self.old_siblings:
            if node.id not in seen:
                seen.add(node.id)
                result.append(node)
        return result


class ScopeLockRegistry:
    """One asyncio lock per project, created on first use."""

    def __init__(self) -> None:
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def get(self, scope_id: UUID) -> asyncio.Lock:
        """Get the lock guarding a project."""
        lock = self._locks.get(scope_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, scope_id: UUID, timeout: float) -> AsyncIterator[None]:
        """
        Hold a project's lock for the duration of the block.

        Args:
            scope_id: Project to lock
            timeout: Seconds to wait for the lock

        Raises:
            ConcurrencyConflictError: If the lock is not acquired in time
        """
        lock = self.get(scope_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out waiting for project lock: project_id={scope_id}, timeout={timeout}s")
            raise ConcurrencyConflictError(
                "The project is being modified by another request, try again"
            )
        try:
            yield
        finally:
            lock.release()


async def ensure_parent_in_scope(
    session: AsyncSession,
    parent_id: Optional[UUID],
    project_id: UUID,
) -> None:
    """
    Check that a proposed parent exists in the given project.

    Args:
        session: Active async database session
        parent_id: Proposed parent, None for the project root
        project_id: Project of the moved task

    Raises:
        NodeNotFoundError: If the parent does not exist at all
        CrossScopeError: If the parent exists in another project
    """
    if parent_id is None:
        return

    result = await session.execute(
        select(TaskORM.project_id).where(TaskORM.id == str(parent_id))
    )
    parent_project_id = result.scalar_one_or_none()

    if parent_project_id is None:
        raise NodeNotFoundError(f"New parent task {parent_id} not found")
    if parent_project_id != str(project_id):
        raise CrossScopeError("Cannot move task to a different project")


class MutationApplier:
    """
    Commits changes to a project's tree atomically.

    The applier is the only component that writes to the tree store, and
    it only does so while holding the project lock.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        locks: Optional[ScopeLockRegistry] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        """
        Initialize the applier.

        Args:
            db_manager: Initialized database manager
            locks: Lock registry shared with other writers of the same projects
            lock_timeout: Seconds to wait for a project lock
        """
        self.db_manager = db_manager
        self.locks = locks or ScopeLockRegistry()
        self.lock_timeout = lock_timeout

    @classmethod
    def from_config(
        cls,
        db_manager: DatabaseManager,
        config: Optional[Config] = None,
    ) -> "MutationApplier":
        """Create an applier using the [move] section of the configuration."""
        move_config = (config or Config()).get_move_config()
        return cls(db_manager, lock_timeout=move_config['lock_timeout'])

    async def apply(self, planned: PlannedMove, actor_id: Optional[str] = None) -> UpdatedSubtree:
        """
        Validate a planned move against the current state and commit it.

        Args:
            planned: Move produced by the planner
            actor_id: Who requested the move, recorded in the activity log

        Returns:
            UpdatedSubtree with the committed children of both parents

        Raises:
            NodeNotFoundError: If the task or the new parent is gone
            CrossScopeError: If the new parent is in another project
            CycleRejectedError: If the move would create a cycle
            ConcurrencyConflictError: If the lock times out or the tree
                changed since the move was planned
        """
        async with self.locks.hold(planned.project_id, self.lock_timeout):
            try:
                async with self.db_manager.get_session() as session:
                    store = await TreeStore.load(session, planned.project_id)

                    if planned.new_parent_id is not None and planned.new_parent_id not in store:
                        await ensure_parent_in_scope(session, planned.new_parent_id, planned.project_id)

                    self._revalidate(store, planned)
                    await self._write(session, store, planned, actor_id)

                    committed = await TreeStore.load(session, planned.project_id)
            except Exception as e:
                logger.warning(f"Move rejected or failed: task_id={planned.active_id}, error={e}")
                raise

        logger.info(
            f"Committed {planned.kind.value}: task_id={planned.active_id}, "
            f"old_parent_id={planned.old_parent_id}, new_parent_id={planned.new_parent_id}, "
            f"order={planned.new_order}, renumbered={len(planned.renumbered)}"
        )

        return UpdatedSubtree(
            old_parent_id=planned.old_parent_id,
            new_parent_id=planned.new_parent_id,
            old_siblings=(
                committed.get_children(planned.old_parent_id)
                if planned.old_parent_id != planned.new_parent_id else []
            ),
            new_siblings=committed.get_children(planned.new_parent_id),
        )

    async def normalize(self, project_id: UUID, order_gap: float = ORDER_GAP) -> int:
        """
        Renumber every sibling group of a project while holding its lock.

        Returns:
            Number of tasks whose order changed

        Raises:
            ConcurrencyConflictError: If the lock times out
            ProjectNotFoundError: If the project does not exist
        """
        async with self.locks.hold(project_id, self.lock_timeout):
            async with self.db_manager.get_session() as session:
                return await TaskService(session, order_gap=order_gap).normalize_orders(project_id)

    async def create(
        self,
        title: str,
        project_id: UUID,
        parent_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        order_gap: float = ORDER_GAP,
    ) -> TaskNode:
        """
        Append a new task to its sibling group while holding the project lock.

        Raises:
            ConcurrencyConflictError: If the lock times out
            ProjectNotFoundError: If the project does not exist
            TaskNotFoundError: If the parent does not exist
            ValueError: If the parent belongs to another project
        """
        async with self.locks.hold(project_id, self.lock_timeout):
            async with self.db_manager.get_session() as session:
                return await TaskService(session, order_gap=order_gap).create_task(
                    title, project_id, parent_id=parent_id, notes=notes
                )

    async def delete(
        self,
        task_id: UUID,
        policy: DeletePolicy = DeletePolicy.CASCADE,
        actor_id: Optional[str] = None,
        order_gap: float = ORDER_GAP,
    ) -> int:
        """
        Delete a task while holding the lock of its project.

        Args:
            task_id: Task to delete
            policy: What happens to its descendants
            actor_id: Who deleted it, recorded in the activity log
            order_gap: Spacing used when children are reparented

        Returns:
            Number of tasks deleted

        Raises:
            ConcurrencyConflictError: If the lock times out
            TaskNotFoundError: If the task does not exist
        """
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(TaskORM.project_id).where(TaskORM.id == str(task_id))
            )
            project_id = result.scalar_one_or_none()
        if project_id is None:
            raise TaskNotFoundError(f"Task with id {task_id} not found")

        async with self.locks.hold(UUID(project_id), self.lock_timeout):
            async with self.db_manager.get_session() as session:
                task_service = TaskService(session, delete_policy=policy, order_gap=order_gap)
                return await task_service.delete_task(task_id, actor_id=actor_id)

    def _revalidate(self, store: TreeStore, planned: PlannedMove) -> None:
        """
        Re-check a planned move against the latest committed tree.

        Raises:
            NodeNotFoundError: If the task is gone
            ConcurrencyConflictError: If the task or target group changed
            CycleRejectedError: If the move would create a cycle
            CrossScopeError: If the parent is in another project
        """
        active = store.get_node(planned.active_id)

        if active.parent_id != planned.old_parent_id:
            raise ConcurrencyConflictError(
                f"Task {planned.active_id} was moved by another request"
            )

        validate_move(store, planned.active_id, planned.new_parent_id)

        if planned.renumbered:
            expected = set(planned.renumbered) - {planned.active_id}
            current = set(store.child_ids(planned.new_parent_id)) - {planned.active_id}
            if expected != current:
                raise ConcurrencyConflictError(
                    f"Siblings under {planned.new_parent_id} changed since the move was planned"
                )

    async def _write(
        self,
        session: AsyncSession,
        store: TreeStore,
        planned: PlannedMove,
        actor_id: Optional[str],
    ) -> None:
        """Write the new parent/order values and the activity entry."""
        ids = {str(planned.active_id)} | {str(node_id) for node_id in planned.renumbered}
        result = await session.execute(select(TaskORM).where(TaskORM.id.in_(ids)))
        rows = {row.id: row for row in result.scalars().all()}

        now = datetime.utcnow()
        for node_id, order in planned.renumbered.items():
            rows[str(node_id)].order = order

        active_orm = rows[str(planned.active_id)]
        active_orm.parent_id = str(planned.new_parent_id) if planned.new_parent_id else None
        active_orm.order = planned.new_order
        active_orm.updated_at = now

        new_parent = store.find_node(planned.new_parent_id)
        action, description = describe_move(
            active_orm.title,
            same_parent=planned.old_parent_id == planned.new_parent_id,
            new_parent_title=new_parent.title if new_parent else None,
        )
        await ActivityService(session).record(
            action,
            task_id=planned.active_id,
            project_id=planned.project_id,
            description=description,
            actor_id=actor_id,
        )

        await session.flush()
