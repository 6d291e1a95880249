"""
Activity service for TaskTree application.

Records and reads the activity log kept for structural task changes.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktree.database import ActivityORM
from tasktree.logging_config import get_logger
from tasktree.models import Activity, ActivityAction

logger = get_logger(__name__)


def describe_move(
    title: str,
    same_parent: bool,
    new_parent_title: Optional[str],
) -> tuple[ActivityAction, str]:
    """
    Pick the action and description for a committed move.

    Args:
        title: Title of the moved task
        same_parent: True if the task stayed under the same parent
        new_parent_title: Title of the new parent, None for the project root

    Returns:
        Tuple of (action, description)
    """
    if same_parent:
        return ActivityAction.REORDERED, f'Task "{title}" was reordered within its parent'
    if new_parent_title is not None:
        return (
            ActivityAction.MOVED,
            f'Task "{title}" was moved to be a subtask of "{new_parent_title}"',
        )
    return ActivityAction.PROMOTED, f'Subtask "{title}" was promoted to a top-level task'


class ActivityService:
    """
    Service layer for the activity log.

    Entries are written inside the caller's session so they commit or roll
    back together with the change they describe.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize activity service with database session.

        Args:
            session: Active async database session
        """
        self.session = session

    async def record(
        self,
        action: ActivityAction,
        task_id: UUID,
        project_id: UUID,
        description: str,
        actor_id: Optional[str] = None,
    ) -> Activity:
        """
        Add an entry to the activity log.

        Args:
            action: What happened
            task_id: Task the entry is about
            project_id: Project of the task
            description: Human readable description
            actor_id: Who did it, if known

        Returns:
            Created Activity
        """
        activity = Activity(
            id=uuid4(),
            action=action,
            task_id=task_id,
            project_id=project_id,
            actor_id=actor_id,
            description=description,
            created_at=datetime.utcnow(),
        )

        self.session.add(
            ActivityORM(
                id=str(activity.id),
                action=activity.action.value,
                task_id=str(task_id),
                project_id=str(project_id),
                actor_id=actor_id,
                description=description,
                created_at=activity.created_at,
            )
        )
        await self.session.flush()

        logger.debug(f"Recorded activity: action={action.value}, task_id={task_id}")
        return activity

    async def get_for_project(self, project_id: UUID, limit: int = 50) -> List[Activity]:
        """
        Get the most recent activity entries of a project.

        Args:
            project_id: Project to read
            limit: Maximum number of entries

        Returns:
            Entries, newest first
        """
        result = await self.session.execute(
            select(ActivityORM)
            .where(ActivityORM.project_id == str(project_id))
            .order_by(ActivityORM.created_at.desc())
            .limit(limit)
        )
        return [
            Activity(
                id=UUID(row.id),
                action=ActivityAction(row.action),
                task_id=UUID(row.task_id),
                project_id=UUID(row.project_id),
                actor_id=row.actor_id,
                description=row.description,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]
