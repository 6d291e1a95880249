"""
Pytest configuration and fixtures for TaskTree tests.

Provides database fixtures, tree factories, and common test utilities.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from tasktree.database import DatabaseManager, ProjectORM, TaskORM
from tasktree.models import TaskNode
from tasktree.services.tree_store import TreeStore


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    """
    Create a file-backed SQLite database for testing.

    A file (rather than :memory:) lets several sessions, and concurrent
    moves, see the same data.

    Yields:
        Initialized DatabaseManager
    """
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'tasktree_test.db'}")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session that commits when the test ends.

    Yields:
        AsyncSession for database operations
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def sample_project_id():
    """Generate a consistent UUID for the main test project."""
    return UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def other_project_id():
    """Generate a consistent UUID for a second project."""
    return UUID("87654321-4321-8765-4321-876543218765")


async def _add_project(db_manager: DatabaseManager, project_id: UUID, name: str) -> UUID:
    async with db_manager.get_session() as session:
        session.add(ProjectORM(id=str(project_id), name=name, created_at=datetime.utcnow()))
    return project_id


@pytest_asyncio.fixture
async def sample_project(db_manager, sample_project_id):
    """Create the "Work" project and return its ID."""
    return await _add_project(db_manager, sample_project_id, "Work")


@pytest_asyncio.fixture
async def other_project(db_manager, other_project_id):
    """Create the "Home" project and return its ID."""
    return await _add_project(db_manager, other_project_id, "Home")


@pytest.fixture
def seed_tasks(db_manager):
    """
    Factory inserting tasks straight into the database.

    Each row is (title, parent_title, order). Parents must come before
    their children. Returns a dict mapping title to task ID.

    Example:
        ids = await seed_tasks(project_id, ("A", None, 1000.0), ("A1", "A", 1000.0))
    """
    async def _seed(project_id: UUID, *rows: Tuple[str, Optional[str], float]) -> Dict[str, UUID]:
        ids: Dict[str, UUID] = {}
        async with db_manager.get_session() as session:
            for title, parent_title, order in rows:
                ids[title] = uuid4()
                session.add(
                    TaskORM(
                        id=str(ids[title]),
                        title=title,
                        is_completed=False,
                        parent_id=str(ids[parent_title]) if parent_title else None,
                        order=order,
                        project_id=str(project_id),
                        created_at=datetime.utcnow(),
                    )
                )
        return ids
    return _seed


@pytest_asyncio.fixture
async def task_tree(sample_project, seed_tasks):
    """
    Create a small hierarchy in the sample project.

    Creates:
        A
          A1
            A1a
          A2
        B
        C

    Returns:
        Dict mapping title to task ID
    """
    return await seed_tasks(
        sample_project,
        ("A", None, 1000.0),
        ("A1", "A", 1000.0),
        ("A1a", "A1", 1000.0),
        ("A2", "A", 2000.0),
        ("B", None, 2000.0),
        ("C", None, 3000.0),
    )


@pytest.fixture
def load_tree(db_manager):
    """Factory loading the committed tree of a project."""
    async def _load(project_id: UUID) -> TreeStore:
        async with db_manager.get_session() as session:
            return await TreeStore.load(session, project_id)
    return _load


@pytest.fixture
def titles():
    """Helper listing the titles of a parent's children in sibling order."""
    def _titles(store: TreeStore, parent_id: Optional[UUID] = None) -> List[str]:
        return [node.title for node in store.get_children(parent_id)]
    return _titles


@pytest.fixture
def make_node(sample_project_id):
    """
    Factory fixture for creating TaskNode models without a database.

    Example:
        def test_something(make_node):
            node = make_node("Write docs", order=2000.0)
    """
    def _make_node(
        title: str = "Test Task",
        parent_id: Optional[UUID] = None,
        order: float = 1000.0,
        project_id: Optional[UUID] = None,
        id: Optional[UUID] = None,
    ) -> TaskNode:
        return TaskNode(
            id=id or uuid4(),
            title=title,
            parent_id=parent_id,
            order=order,
            project_id=project_id or sample_project_id,
        )
    return _make_node
