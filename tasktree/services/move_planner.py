"""
Move planner for TaskTree.

Translates the outcome of a drag gesture (the dragged task and what it was
dropped over) into a concrete planned mutation: the new parent, the new
order value and, when the order values around the drop point are exhausted,
a renumbering of the whole target sibling group.

Placement next to a sibling follows sortable-list semantics: inside the
same parent a task dropped on a later sibling lands after it and a task
dropped on an earlier sibling lands before it, so [A, B, C] with A dropped
on B becomes [B, A, C]. In a different parent the task lands before the
sibling it was dropped on. Dropping on a container appends. Callers may
also name the side explicitly, which is what clients do so that a
repeated request finds the task already in place.
"""

from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tasktree.logging_config import get_logger
from tasktree.models import ORDER_GAP
from tasktree.services.move_errors import ConcurrencyConflictError
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)

# Neighbour distance below which a midpoint is no longer inserted
MIN_ORDER_GAP = 1e-6


class MoveKind(str, Enum):
    """Classification of a planned move."""

    REORDER = "reorder"
    REPARENT = "reparent"


class Placement(str, Enum):
    """Which side of the target sibling the moved task lands on."""

    BEFORE = "before"
    AFTER = "after"


class PlannedMove(BaseModel):
    """A validated-shape move ready for the mutation applier."""

    active_id: UUID
    project_id: UUID
    old_parent_id: Optional[UUID] = None
    new_parent_id: Optional[UUID] = None
    new_order: float
    kind: MoveKind
    target_sibling_id: Optional[UUID] = None
    placement: Optional[Placement] = None
    renumbered: Dict[UUID, float] = Field(default_factory=dict)

    @property
    def requires_renumber(self) -> bool:
        """True if sibling orders are rewritten along with the moved task."""
        return bool(self.renumbered)


def order_between(
    prev_order: Optional[float],
    next_order: Optional[float],
    gap: float = ORDER_GAP,
    min_gap: float = MIN_ORDER_GAP,
) -> Optional[float]:
    """
    Compute an order value strictly between two neighbours.

    Args:
        prev_order: Order of the sibling before the slot, None at the start
        next_order: Order of the sibling after the slot, None at the end
        gap: Spacing used at either end of the group
        min_gap: Smallest neighbour distance still split by a midpoint

    Returns:
        The new order, or None if the slot has no room left and the
        group has to be renumbered
    """
    if prev_order is None and next_order is None:
        return gap
    if prev_order is None:
        candidate = next_order - gap
    elif next_order is None:
        candidate = prev_order + gap
    else:
        if next_order - prev_order < min_gap:
            return None
        candidate = (prev_order + next_order) / 2

    # Float exhaustion: the candidate collapsed onto a neighbour
    if prev_order is not None and not candidate > prev_order:
        return None
    if next_order is not None and not candidate < next_order:
        return None
    return candidate


def renumber(sequence: List[UUID], gap: float = ORDER_GAP) -> Dict[UUID, float]:
    """Assign evenly spaced orders to an ordered sibling group."""
    return {node_id: (index + 1) * gap for index, node_id in enumerate(sequence)}


def plan_move(
    store: TreeStore,
    active_id: UUID,
    target_parent_id: Optional[UUID],
    target_sibling_id: Optional[UUID] = None,
    gap: float = ORDER_GAP,
    min_gap: float = MIN_ORDER_GAP,
    placement: Optional[Placement] = None,
) -> Optional[PlannedMove]:
    """
    Plan moving a task under a parent, optionally next to a sibling.

    An explicit placement makes the plan independent of where the task
    currently sits, so planning the same request again after it committed
    yields None.

    Args:
        store: Tree snapshot the plan is computed against
        active_id: Task being moved
        target_parent_id: New parent, None for the project root
        target_sibling_id: Sibling to position next to, None to append
        gap: Spacing used for appends and renumbering
        min_gap: Smallest neighbour distance still split by a midpoint
        placement: Side of the target sibling to land on; derived with
            sortable-list semantics if not given

    Returns:
        PlannedMove, or None if the move changes nothing

    Raises:
        NodeNotFoundError: If the task or the target sibling does not exist
        ConcurrencyConflictError: If the target sibling is no longer a child
            of the target parent
    """
    active = store.get_node(active_id)
    old_parent_id = active.parent_id
    same_parent = old_parent_id == target_parent_id

    current_group = store.child_ids(target_parent_id)
    siblings = [node_id for node_id in current_group if node_id != active_id]

    if target_sibling_id is None:
        index = len(siblings)
        placement = None
    else:
        if target_sibling_id == active_id:
            return None

        target = store.get_node(target_sibling_id)
        if target.parent_id != target_parent_id:
            raise ConcurrencyConflictError(
                f"Task {target_sibling_id} is no longer a child of {target_parent_id}"
            )

        if placement is None:
            if same_parent and current_group.index(active_id) < current_group.index(target_sibling_id):
                placement = Placement.AFTER
            else:
                placement = Placement.BEFORE

        index = siblings.index(target_sibling_id)
        if placement == Placement.AFTER:
            index += 1

    new_sequence = siblings[:index] + [active_id] + siblings[index:]
    if same_parent and new_sequence == current_group:
        logger.debug(f"Move is a no-op: task_id={active_id}")
        return None

    prev_order = store.get_node(siblings[index - 1]).order if index > 0 else None
    next_order = store.get_node(siblings[index]).order if index < len(siblings) else None

    renumbered: Dict[UUID, float] = {}
    new_order = order_between(prev_order, next_order, gap=gap, min_gap=min_gap)
    if new_order is None:
        renumbered = renumber(new_sequence, gap=gap)
        new_order = renumbered[active_id]
        logger.info(
            f"Order values exhausted, renumbering {len(renumbered)} siblings "
            f"under parent_id={target_parent_id}"
        )

    kind = MoveKind.REORDER if same_parent else MoveKind.REPARENT

    logger.debug(
        f"Planned {kind.value}: task_id={active_id}, old_parent_id={old_parent_id}, "
        f"new_parent_id={target_parent_id}, new_order={new_order}, placement={placement}"
    )

    return PlannedMove(
        active_id=active_id,
        project_id=active.project_id,
        old_parent_id=old_parent_id,
        new_parent_id=target_parent_id,
        new_order=new_order,
        kind=kind,
        target_sibling_id=target_sibling_id,
        placement=placement,
        renumbered=renumbered,
    )


def plan_gesture(
    store: TreeStore,
    active_id: UUID,
    over_id: Optional[UUID],
    over_is_container: bool = False,
    gap: float = ORDER_GAP,
    min_gap: float = MIN_ORDER_GAP,
) -> Optional[PlannedMove]:
    """
    Plan the move described by the end of a drag gesture.

    Args:
        store: Tree snapshot taken at drag start
        active_id: Task that was dragged
        over_id: Task or container the drag ended over, None for nothing
        over_is_container: True if over_id names a child list rather than a
            task; a container with over_id None is the project root
        gap: Spacing used for appends and renumbering
        min_gap: Smallest neighbour distance still split by a midpoint

    Returns:
        PlannedMove, or None if the gesture changes nothing
    """
    if over_id is not None and over_id == active_id:
        return None

    if over_is_container:
        return plan_move(store, active_id, over_id, None, gap=gap, min_gap=min_gap)

    if over_id is None:
        return None

    over = store.get_node(over_id)
    return plan_move(store, active_id, over.parent_id, over_id, gap=gap, min_gap=min_gap)
