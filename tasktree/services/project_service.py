"""
Project service for TaskTree application.

Provides CRUD operations for projects, the scopes task trees live in,
including default project creation on first run.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tasktree.database import ProjectORM, TaskORM
from tasktree.logging_config import get_logger
from tasktree.models import Project

logger = get_logger(__name__)


class ProjectService:
    """
    Service layer for project management.

    Handles creation, retrieval and deletion of projects, as well as
    initialization of the default project on first run.
    """

    DEFAULT_PROJECT = {"name": "Inbox", "id": "00000000-0000-0000-0000-000000000001"}

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the project service.

        Args:
            session: Active database session for operations
        """
        self.session = session

    async def create_project(
        self,
        name: str,
        project_id: Optional[UUID] = None,
    ) -> Project:
        """
        Create a new project.

        Args:
            name: Name of the project to create
            project_id: Optional UUID for the project (auto-generated if not provided)

        Returns:
            Created Project model

        Raises:
            ValueError: If a project with the same name already exists
        """
        try:
            logger.debug(f"Creating project: name='{name}', project_id={project_id}")

            existing = await self.get_project_by_name(name)
            if existing:
                logger.warning(f"Project creation failed - name already exists: '{name}'")
                raise ValueError(f"Project with name '{name}' already exists")

            project = Project(id=project_id or uuid4(), name=name, created_at=datetime.utcnow())

            self.session.add(
                ProjectORM(id=str(project.id), name=project.name, created_at=project.created_at)
            )
            await self.session.flush()

            logger.info(f"Created project: id={project.id}, name='{name}'")
            return project
        except ValueError:
            # Already logged, just re-raise
            raise
        except Exception as e:
            logger.error(f"Failed to create project: {e}", exc_info=True)
            raise

    async def get_all_projects(self) -> List[Project]:
        """
        Retrieve all projects ordered by creation date.

        Returns:
            List of Project models with task counts
        """
        result = await self.session.execute(
            select(ProjectORM).order_by(ProjectORM.created_at)
        )
        return [await self._orm_to_pydantic_with_counts(row) for row in result.scalars().all()]

    async def get_project_by_id(self, project_id: UUID) -> Optional[Project]:
        """
        Retrieve a project by ID.

        Returns:
            Project model if found, None otherwise
        """
        result = await self.session.execute(
            select(ProjectORM).where(ProjectORM.id == str(project_id))
        )
        project_orm = result.scalar_one_or_none()
        return await self._orm_to_pydantic_with_counts(project_orm) if project_orm else None

    async def get_project_by_name(self, name: str) -> Optional[Project]:
        """
        Retrieve a project by name.

        Returns:
            Project model if found, None otherwise
        """
        result = await self.session.execute(
            select(ProjectORM).where(ProjectORM.name == name)
        )
        project_orm = result.scalar_one_or_none()
        return await self._orm_to_pydantic_with_counts(project_orm) if project_orm else None

    async def delete_project(self, project_id: UUID) -> bool:
        """
        Delete a project and all its tasks (cascade).

        Returns:
            True if project was deleted, False if not found
        """
        try:
            result = await self.session.execute(
                select(ProjectORM).where(ProjectORM.id == str(project_id))
            )
            project_orm = result.scalar_one_or_none()

            if not project_orm:
                logger.warning(f"Delete failed - project not found: {project_id}")
                return False

            name = project_orm.name
            await self.session.delete(project_orm)
            await self.session.flush()

            logger.info(f"Deleted project: id={project_id}, name='{name}'")
            return True
        except Exception as e:
            logger.error(f"Failed to delete project {project_id}: {e}", exc_info=True)
            raise

    async def ensure_default_project(self) -> Project:
        """
        Ensure the default project exists, creating it on first run.

        Returns:
            The default Project
        """
        existing = await self.get_project_by_id(UUID(self.DEFAULT_PROJECT["id"]))
        if existing:
            return existing

        logger.info(f"Creating default project '{self.DEFAULT_PROJECT['name']}'")
        return await self.create_project(
            name=self.DEFAULT_PROJECT["name"],
            project_id=UUID(self.DEFAULT_PROJECT["id"]),
        )

    async def _orm_to_pydantic_with_counts(self, project_orm: ProjectORM) -> Project:
        """Convert ProjectORM to Pydantic with task counts populated."""
        project = Project(
            id=UUID(project_orm.id),
            name=project_orm.name,
            created_at=project_orm.created_at,
        )

        result = await self.session.execute(
            select(func.count(TaskORM.id)).where(TaskORM.project_id == project_orm.id)
        )
        task_count = result.scalar_one()

        result = await self.session.execute(
            select(func.count(TaskORM.id))
            .where(TaskORM.project_id == project_orm.id)
            .where(TaskORM.is_completed == True)  # noqa: E712
        )
        completed_count = result.scalar_one()

        project.update_counts(task_count, completed_count)
        return project
