"""
Persistence for TaskTree.

SQLAlchemy ORM tables for projects, tasks and the activity log, plus the
async engine and session management around a SQLite file.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tasktree.config import DEFAULT_DATABASE_URL
from tasktree.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class ProjectORM(Base):
    """
    SQLAlchemy ORM model for projects.

    A project bounds a task tree; tasks are deleted with their project.
    """
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        back_populates="project",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ProjectORM(id={self.id}, name={self.name})>"


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    The hierarchy is stored flat: parent_id is a plain indexed column holding
    another task's id, never a foreign key relationship, so a move only ever
    rewrites parent_id and order on a single row.
    """
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Hierarchy
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    order: Mapped[float] = mapped_column("sort_order", Float, nullable=False, default=0.0)

    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    project: Mapped["ProjectORM"] = relationship("ProjectORM", back_populates="tasks")

    def __repr__(self) -> str:
        return f"<TaskORM(id={self.id}, title={self.title}, parent_id={self.parent_id}, order={self.order})>"


class ActivityORM(Base):
    """
    SQLAlchemy ORM model for activity log entries.

    Keeps task_id as a plain column so entries survive the deletion of the
    task they describe.
    """
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<ActivityORM(id={self.id}, action={self.action}, task_id={self.task_id})>"


class DatabaseManager:
    """
    Owns the async engine and hands out sessions.

    One manager is shared by the TUI, the API server and the CLI commands
    of a process. Tests create their own over a temporary file.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        """
        Args:
            database_url: SQLAlchemy async URL, e.g. sqlite+aiosqlite:///path/to/tasktree.db
        """
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        """True once initialize() has created the engine."""
        return self.engine is not None

    async def initialize(self) -> None:
        """Create the engine and session factory, then any missing tables."""
        try:
            logger.info(f"Initializing database: {self.database_url}")
            self.engine = create_async_engine(self.database_url, echo=False)
            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database {self.database_url}: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """Dispose of the engine. The manager can be initialized again afterwards."""
        if self.engine is None:
            return

        logger.info("Closing database connection")
        try:
            await self.engine.dispose()
        except Exception as e:
            logger.error(f"Error closing database connection: {e}", exc_info=True)
            raise
        finally:
            self.engine = None
            self.session_maker = None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session whose block is one transaction.

        Commits when the block exits normally and rolls back when it raises,
        so a rejected move leaves nothing behind.

        Example:
            async with db_manager.get_session() as session:
                store = await TreeStore.load(session, project_id)
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.warning(f"Database session error, rolling back: {e}")
                await session.rollback()
                raise


_db_manager: Optional[DatabaseManager] = None


def get_database_manager(database_url: str = DEFAULT_DATABASE_URL) -> DatabaseManager:
    """
    Return the process-wide database manager, creating it on first call.

    The URL is only used on that first call.
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)
    return _db_manager
