"""
Wire schemas for the TaskTree API.

Field names are snake_case in Python and camelCase on the wire
(activeId, newParentId, ...). Both spellings are accepted on input.
"""

from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tasktree.models import Activity, Project, TaskNode
from tasktree.services.move_errors import (
    ConcurrencyConflictError,
    CrossScopeError,
    CycleRejectedError,
    MoveError,
    NodeNotFoundError,
    PermissionDeniedError,
    TransportFailureError,
)
from tasktree.services.move_planner import MoveKind, Placement


class ErrorCode(str, Enum):
    """Machine readable error codes returned by MoveNode."""

    NOT_FOUND = "NOT_FOUND"
    CROSS_SCOPE = "CROSS_SCOPE"
    CYCLE_REJECTED = "CYCLE_REJECTED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    FORBIDDEN = "FORBIDDEN"
    MOVE_ERROR = "MOVE_ERROR"


ERROR_CLASSES = {
    ErrorCode.NOT_FOUND: NodeNotFoundError,
    ErrorCode.CROSS_SCOPE: CrossScopeError,
    ErrorCode.CYCLE_REJECTED: CycleRejectedError,
    ErrorCode.CONCURRENCY_CONFLICT: ConcurrencyConflictError,
    ErrorCode.TRANSPORT_FAILURE: TransportFailureError,
    ErrorCode.FORBIDDEN: PermissionDeniedError,
}


class WireModel(BaseModel):
    """Base for models exchanged with clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorInfo(WireModel):
    """Why a move was not applied."""

    code: ErrorCode
    message: str
    retryable: bool = False

    @classmethod
    def from_error(cls, error: MoveError) -> "ErrorInfo":
        """Build the wire form of a move error."""
        return cls(code=ErrorCode(error.code), message=str(error), retryable=error.retryable)


class MoveNodeRequest(WireModel):
    """
    Request to move a task.

    old_parent_id is the parent the client believes the task has. The
    server compares it with the stored parent and answers with a
    concurrency conflict when they differ, unless the task already sits
    where the request would put it (a retried request whose first attempt
    committed). same_parent_reorder is only a hint; the server derives the
    move kind itself. placement names the side of target_sibling_id to
    land on; without it the side is derived from the stored positions.
    """

    active_id: UUID
    new_parent_id: Optional[UUID] = None
    old_parent_id: Optional[UUID] = Field(...)
    target_sibling_id: Optional[UUID] = None
    same_parent_reorder: bool = Field(...)
    placement: Optional[Placement] = None


class MoveNodeResponse(WireModel):
    """Outcome of a move; updated_nodes is empty for a no-op."""

    success: bool
    updated_nodes: List[TaskNode] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
    kind: Optional[MoveKind] = None

    @classmethod
    def failure(cls, error: MoveError) -> "MoveNodeResponse":
        """Build a failed response from a move error."""
        return cls(success=False, error=ErrorInfo.from_error(error))

    def raise_for_error(self) -> None:
        """
        Raise the move error carried by a failed response.

        Raises:
            MoveError: Subclass matching the error code
        """
        if self.success or self.error is None:
            return
        error_class = ERROR_CLASSES.get(self.error.code, MoveError)
        raise error_class(self.error.message)


class TreeResponse(WireModel):
    """Flat node list of a project, in display order."""

    project_id: UUID
    nodes: List[TaskNode] = Field(default_factory=list)


class ProjectsResponse(WireModel):
    """Every project, oldest first."""

    projects: List[Project] = Field(default_factory=list)


class ActivityResponse(WireModel):
    """Most recent activity entries of a project, newest first."""

    project_id: UUID
    activities: List[Activity] = Field(default_factory=list)
