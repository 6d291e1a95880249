"""
Pydantic models for TaskTree application.

Defines the core data structures for projects, task nodes and the activity
log with validation, computed properties, and proper typing.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, PrivateAttr, computed_field


# Spacing between consecutive sibling orders when a group is (re)numbered
ORDER_GAP = 1000.0


class Project(BaseModel):
    """
    Represents a project, the scope a task tree lives in.

    Every task belongs to exactly one project and can never be moved
    underneath a task of another project.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the project")
    name: str = Field(..., min_length=1, max_length=100, description="Project name")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")

    # Private attributes for computed properties
    _task_count: int = PrivateAttr(default=0)
    _completed_count: int = PrivateAttr(default=0)

    @computed_field
    @property
    def task_count(self) -> int:
        """Total number of tasks in this project."""
        return self._task_count

    @computed_field
    @property
    def completion_percentage(self) -> float:
        """
        Calculate completion percentage for this project.

        Returns:
            Percentage of completed tasks (0-100)
        """
        if self._task_count == 0:
            return 0.0
        return round((self._completed_count / self._task_count) * 100, 1)

    def update_counts(self, task_count: int, completed_count: int) -> None:
        """
        Update the task counts for computed properties.

        Args:
            task_count: Total number of tasks
            completed_count: Number of completed tasks
        """
        self._task_count = task_count
        self._completed_count = completed_count


class TaskNode(BaseModel):
    """
    A single task or subtask participating in the hierarchy.

    The tree is stored flat: each node only knows its parent_id. Children are
    derived by grouping on parent_id and sorting by (order, id).
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the task")
    title: str = Field(..., min_length=1, max_length=500, description="Task title")
    notes: Optional[str] = Field(default=None, max_length=5000, description="Optional task notes")

    is_completed: bool = Field(default=False, description="Whether the task is completed")

    # Hierarchy
    parent_id: Optional[UUID] = Field(default=None, description="Parent task ID, None for scope roots")
    order: float = Field(default=ORDER_GAP, description="Rank among siblings, not contiguous")

    # Scope
    project_id: UUID = Field(..., description="ID of the project this task belongs to")

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Completion timestamp")

    @property
    def sort_key(self) -> tuple:
        """Total sibling ordering: order first, id breaks ties."""
        return (self.order, str(self.id))

    @property
    def is_root(self) -> bool:
        """True if the node sits directly under its project."""
        return self.parent_id is None

    def mark_completed(self) -> None:
        """Mark the task as completed with timestamp."""
        self.is_completed = True
        self.completed_at = datetime.utcnow()

    def mark_incomplete(self) -> None:
        """Mark the task as incomplete, removing completion timestamp."""
        self.is_completed = False
        self.completed_at = None


class ActivityAction(str, Enum):
    """Kinds of entries written to the activity log."""

    REORDERED = "reordered"
    MOVED = "moved"
    PROMOTED = "promoted"
    DELETED = "deleted"


class Activity(BaseModel):
    """An activity log entry describing a structural change to a task."""

    id: UUID = Field(default_factory=uuid4)
    action: ActivityAction
    task_id: UUID
    project_id: UUID
    actor_id: Optional[str] = None
    description: str = Field(..., max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
