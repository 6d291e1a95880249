"""
Task service for TaskTree application.

Implements task creation, reading, updating and deletion with database
persistence. New tasks are appended to the end of their sibling group;
moves go through the move planner and mutation applier instead.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktree.database import ProjectORM, TaskORM
from tasktree.logging_config import get_logger
from tasktree.models import ActivityAction, ORDER_GAP, TaskNode
from tasktree.services.activity_service import ActivityService
from tasktree.services.move_planner import renumber
from tasktree.services.tree_store import TreeStore, node_from_orm

logger = get_logger(__name__)


class TaskServiceError(Exception):
    """Base exception for task service errors."""
    pass


class TaskNotFoundError(TaskServiceError):
    """Raised when a task is not found."""
    pass


class ProjectNotFoundError(TaskServiceError):
    """Raised when a project is not found."""
    pass


class DeletePolicy(str, Enum):
    """What happens to the descendants of a deleted task."""

    CASCADE = "cascade"
    REPARENT = "reparent"


class TaskService:
    """
    Service layer for task operations.

    Handles CRUD operations for tasks with database persistence and
    hierarchy bookkeeping.
    """

    def __init__(
        self,
        session: AsyncSession,
        delete_policy: DeletePolicy = DeletePolicy.CASCADE,
        order_gap: float = ORDER_GAP,
    ) -> None:
        """
        Initialize task service with database session.

        Args:
            session: Active async database session
            delete_policy: Policy applied to descendants of deleted tasks
            order_gap: Spacing between appended siblings
        """
        self.session = session
        self.delete_policy = delete_policy
        self.order_gap = order_gap

    # ==============================================================================
    # VALIDATION HELPERS
    # ==============================================================================

    async def _verify_project_exists(self, project_id: UUID) -> None:
        """
        Verify that a project exists.

        Raises:
            ProjectNotFoundError: If project does not exist
        """
        result = await self.session.execute(
            select(ProjectORM).where(ProjectORM.id == str(project_id))
        )
        if not result.scalar_one_or_none():
            raise ProjectNotFoundError(f"Project with id {project_id} not found")

    async def _get_task_or_raise(self, task_id: UUID) -> TaskORM:
        """
        Get a task by ID or raise an exception.

        Raises:
            TaskNotFoundError: If task does not exist
        """
        result = await self.session.execute(
            select(TaskORM).where(TaskORM.id == str(task_id))
        )
        task_orm = result.scalar_one_or_none()
        if not task_orm:
            raise TaskNotFoundError(f"Task with id {task_id} not found")
        return task_orm

    async def _get_next_order(self, project_id: UUID, parent_id: Optional[UUID] = None) -> float:
        """
        Get the order placing a new task last among its siblings.

        Args:
            project_id: UUID of the project
            parent_id: Optional parent task UUID

        Returns:
            Next order value
        """
        query = select(func.max(TaskORM.order)).where(TaskORM.project_id == str(project_id))

        if parent_id is not None:
            query = query.where(TaskORM.parent_id == str(parent_id))
        else:
            query = query.where(TaskORM.parent_id.is_(None))

        result = await self.session.execute(query)
        highest = result.scalar_one_or_none()

        if highest is None:
            return self.order_gap
        return highest + self.order_gap

    def _query_children(self, project_id: UUID, parent_id: Optional[UUID]):
        """
        Build query for the ordered children of a parent.

        Args:
            project_id: Project to query
            parent_id: Parent task ID, None for top-level tasks

        Returns:
            SQLAlchemy select statement
        """
        query = select(TaskORM).where(TaskORM.project_id == str(project_id))
        if parent_id is not None:
            query = query.where(TaskORM.parent_id == str(parent_id))
        else:
            query = query.where(TaskORM.parent_id.is_(None))
        return query.order_by(TaskORM.order, TaskORM.id)

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def create_task(
        self,
        title: str,
        project_id: UUID,
        parent_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        order: Optional[float] = None,
    ) -> TaskNode:
        """
        Create a new task (top-level or child).

        Args:
            title: Task title
            project_id: UUID of the project
            parent_id: Optional parent task UUID (for subtasks)
            notes: Optional task notes
            order: Optional order (placed last among siblings if not provided)

        Returns:
            Created TaskNode

        Raises:
            ProjectNotFoundError: If project does not exist
            TaskNotFoundError: If parent task does not exist
            ValueError: If the parent belongs to another project
        """
        try:
            logger.debug(f"Creating task: title='{title}', project_id={project_id}, parent_id={parent_id}")

            await self._verify_project_exists(project_id)

            if parent_id is not None:
                parent_orm = await self._get_task_or_raise(parent_id)
                if parent_orm.project_id != str(project_id):
                    raise ValueError("Parent task belongs to a different project")

            if order is None:
                order = await self._get_next_order(project_id, parent_id=parent_id)

            task = TaskNode(
                title=title,
                notes=notes,
                project_id=project_id,
                parent_id=parent_id,
                order=order,
            )

            self.session.add(
                TaskORM(
                    id=str(task.id),
                    title=task.title,
                    notes=task.notes,
                    is_completed=task.is_completed,
                    parent_id=str(parent_id) if parent_id else None,
                    order=task.order,
                    project_id=str(project_id),
                    created_at=task.created_at,
                )
            )
            await self.session.flush()

            logger.info(f"Created task: id={task.id}, title='{title}', parent_id={parent_id}")
            return task
        except (ProjectNotFoundError, TaskNotFoundError, ValueError) as e:
            logger.error(f"Failed to create task: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to create task: {e}", exc_info=True)
            raise

    async def create_child_task(
        self,
        parent_id: UUID,
        title: str,
        notes: Optional[str] = None,
    ) -> TaskNode:
        """
        Create a child task under a parent task, in the parent's project.

        Raises:
            TaskNotFoundError: If parent task does not exist
        """
        parent_orm = await self._get_task_or_raise(parent_id)
        return await self.create_task(
            title,
            project_id=UUID(parent_orm.project_id),
            parent_id=parent_id,
            notes=notes,
        )

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def get_task_by_id(self, task_id: UUID) -> Optional[TaskNode]:
        """
        Get a task by its ID.

        Returns:
            TaskNode or None if not found
        """
        result = await self.session.execute(
            select(TaskORM).where(TaskORM.id == str(task_id))
        )
        task_orm = result.scalar_one_or_none()
        return node_from_orm(task_orm) if task_orm else None

    async def get_top_level_tasks(self, project_id: UUID) -> List[TaskNode]:
        """
        Get the top-level tasks of a project, in sibling order.

        Raises:
            ProjectNotFoundError: If project does not exist
        """
        await self._verify_project_exists(project_id)
        result = await self.session.execute(self._query_children(project_id, None))
        return [node_from_orm(task_orm) for task_orm in result.scalars().all()]

    async def get_children(self, parent_id: UUID) -> List[TaskNode]:
        """
        Get all direct children of a parent task, in sibling order.

        Raises:
            TaskNotFoundError: If parent task does not exist
        """
        parent_orm = await self._get_task_or_raise(parent_id)
        result = await self.session.execute(
            self._query_children(UUID(parent_orm.project_id), parent_id)
        )
        return [node_from_orm(task_orm) for task_orm in result.scalars().all()]

    async def get_all_descendants(self, parent_id: UUID) -> List[TaskNode]:
        """
        Get all descendants of a task in hierarchical (depth-first) order.

        Raises:
            TaskNotFoundError: If parent task does not exist
        """
        parent_orm = await self._get_task_or_raise(parent_id)
        store = await TreeStore.load(self.session, UUID(parent_orm.project_id))
        return [node for node, _ in store.walk(parent_id)]

    async def get_tree(self, project_id: UUID) -> TreeStore:
        """
        Load the whole task tree of a project.

        Raises:
            ProjectNotFoundError: If project does not exist
        """
        await self._verify_project_exists(project_id)
        return await TreeStore.load(self.session, project_id)

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def update_task(
        self,
        task_id: UUID,
        title: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TaskNode:
        """
        Update a task's title and/or notes.

        Raises:
            TaskNotFoundError: If task does not exist
            ValueError: If no fields are provided for update
        """
        if title is None and notes is None:
            raise ValueError("At least one of title or notes must be provided")

        task_orm = await self._get_task_or_raise(task_id)

        if title is not None:
            task_orm.title = title
        if notes is not None:
            task_orm.notes = notes
        task_orm.updated_at = datetime.utcnow()

        await self.session.flush()

        logger.info(f"Updated task: id={task_id}, title='{task_orm.title}'")
        return node_from_orm(task_orm)

    async def toggle_completion(self, task_id: UUID) -> TaskNode:
        """
        Toggle the completion status of a task.

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self._get_task_or_raise(task_id)

        if task_orm.is_completed:
            task_orm.is_completed = False
            task_orm.completed_at = None
        else:
            task_orm.is_completed = True
            task_orm.completed_at = datetime.utcnow()

        await self.session.flush()

        logger.info(
            f"Task completion toggled: task_id={task_id}, "
            f"new_state={'completed' if task_orm.is_completed else 'incomplete'}"
        )
        return node_from_orm(task_orm)

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def delete_task(
        self,
        task_id: UUID,
        policy: Optional[DeletePolicy] = None,
        actor_id: Optional[str] = None,
    ) -> int:
        """
        Delete a task, handling its descendants according to the delete policy.

        With CASCADE the whole subtree is deleted. With REPARENT the direct
        children are appended, in order, to the deleted task's parent.

        Args:
            task_id: UUID of the task to delete
            policy: Overrides the service's delete policy
            actor_id: Who deleted it, recorded in the activity log

        Returns:
            Number of tasks deleted

        Raises:
            TaskNotFoundError: If task does not exist
        """
        policy = policy or self.delete_policy

        try:
            task_orm = await self._get_task_or_raise(task_id)
            project_id = UUID(task_orm.project_id)
            parent_id = UUID(task_orm.parent_id) if task_orm.parent_id else None
            title = task_orm.title

            store = await TreeStore.load(self.session, project_id)

            if policy == DeletePolicy.CASCADE:
                doomed = [node.id for node, _ in store.walk(task_id)]
            else:
                doomed = []
                next_order = await self._get_next_order(project_id, parent_id=parent_id)
                for child in store.get_children(task_id):
                    child_orm = await self._get_task_or_raise(child.id)
                    child_orm.parent_id = str(parent_id) if parent_id else None
                    child_orm.order = next_order
                    next_order += self.order_gap

            # Deepest first
            for node_id in reversed(doomed):
                await self.session.delete(await self._get_task_or_raise(node_id))
            await self.session.delete(task_orm)

            await ActivityService(self.session).record(
                ActivityAction.DELETED,
                task_id=task_id,
                project_id=project_id,
                description=f'Task "{title}" was deleted',
                actor_id=actor_id,
            )
            await self.session.flush()

            logger.info(
                f"Deleted task: id={task_id}, title='{title}', policy={policy.value}, "
                f"descendants_deleted={len(doomed)}"
            )
            return len(doomed) + 1
        except TaskNotFoundError as e:
            logger.error(f"Failed to delete task - not found: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to delete task {task_id}: {e}", exc_info=True)
            raise

    # ==============================================================================
    # MAINTENANCE
    # ==============================================================================

    async def normalize_orders(self, project_id: UUID) -> int:
        """
        Renumber every sibling group of a project to evenly spaced orders.

        Relative order is preserved. Callers sharing a lock registry with
        the mutation applier should hold the project lock while this runs.

        Args:
            project_id: Project to renumber

        Returns:
            Number of tasks whose order changed
        """
        store = await self.get_tree(project_id)

        parent_ids = {None} | {node.id for node in store.nodes()}
        changed = 0
        for parent_id in parent_ids:
            sequence = store.child_ids(parent_id)
            for node_id, order in renumber(sequence, gap=self.order_gap).items():
                if store.get_node(node_id).order != order:
                    task_orm = await self._get_task_or_raise(node_id)
                    task_orm.order = order
                    changed += 1

        await self.session.flush()

        logger.info(f"Normalized task orders: project_id={project_id}, changed={changed}")
        return changed
