"""
Cycle guard for TaskTree.

Rejects structurally invalid moves before they reach storage. Always called
with the pre-move tree, and always searches the whole subtree of the moved
task, since a task may be dropped onto a deeply nested descendant.
"""

from typing import Optional
from uuid import UUID

from tasktree.logging_config import get_logger
from tasktree.services.move_errors import (
    CrossScopeError,
    CycleRejectedError,
    MoveError,
)
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)


def validate_move(store: TreeStore, active_id: UUID, proposed_parent_id: Optional[UUID]) -> None:
    """
    Validate moving a task underneath a proposed parent.

    Args:
        store: Tree snapshot taken before the move
        active_id: Task being moved
        proposed_parent_id: New parent, None for the project root

    Raises:
        NodeNotFoundError: If either task is not in the store
        CycleRejectedError: If the task would become its own ancestor
        CrossScopeError: If the parent belongs to another project
    """
    active = store.get_node(active_id)

    if proposed_parent_id is None:
        return

    if proposed_parent_id == active_id:
        logger.warning(f"Rejected self-parenting move: task_id={active_id}")
        raise CycleRejectedError("A task cannot be its own parent")

    proposed_parent = store.get_node(proposed_parent_id)

    if proposed_parent.project_id != active.project_id:
        logger.warning(
            f"Rejected cross-project move: task_id={active_id}, "
            f"project_id={active.project_id}, parent_project_id={proposed_parent.project_id}"
        )
        raise CrossScopeError("Cannot move task to a different project")

    if store.find_descendant(active_id, proposed_parent_id):
        logger.warning(
            f"Rejected cyclic move: task_id={active_id} under its descendant {proposed_parent_id}"
        )
        raise CycleRejectedError("Cannot create a circular reference in the task hierarchy")


def is_valid_move(store: TreeStore, active_id: UUID, proposed_parent_id: Optional[UUID]) -> bool:
    """
    Check if a move would pass validate_move.

    Args:
        store: Tree snapshot taken before the move
        active_id: Task being moved
        proposed_parent_id: New parent, None for the project root

    Returns:
        True if the move is structurally valid
    """
    try:
        validate_move(store, active_id, proposed_parent_id)
    except MoveError:
        return False
    return True
