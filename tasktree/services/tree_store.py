"""
Tree store for TaskTree.

Holds an immutable snapshot of the tasks of one project, indexed flat by id,
and answers structural queries over it. Children are derived from parent_id
on construction and sorted by (order, id). Every traversal is iterative and
tracks visited ids, so a corrupt cyclic snapshot cannot hang a caller.
"""

from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktree.database import TaskORM
from tasktree.logging_config import get_logger
from tasktree.models import TaskNode
from tasktree.services.move_errors import NodeNotFoundError

logger = get_logger(__name__)


def node_from_orm(task_orm: TaskORM) -> TaskNode:
    """
    Convert TaskORM to a TaskNode model.

    Args:
        task_orm: SQLAlchemy ORM task instance

    Returns:
        TaskNode instance
    """
    return TaskNode(
        id=UUID(task_orm.id),
        title=task_orm.title,
        notes=task_orm.notes,
        is_completed=task_orm.is_completed,
        parent_id=UUID(task_orm.parent_id) if task_orm.parent_id else None,
        order=task_orm.order,
        project_id=UUID(task_orm.project_id),
        created_at=task_orm.created_at,
        completed_at=task_orm.completed_at,
    )


class TreeStore:
    """
    Read-only view over the task nodes of one project.

    Mutating helpers (with_move, with_nodes) return a new store and leave
    the original untouched, which is what lets the client keep a pre-drag
    snapshot around for rollback.
    """

    def __init__(self, nodes: Iterable[TaskNode] = (), project_id: Optional[UUID] = None) -> None:
        """
        Build the store and its children index.

        Args:
            nodes: Task nodes of the scope
            project_id: Project the store represents, if known
        """
        self.project_id = project_id
        self._nodes: Dict[UUID, TaskNode] = {node.id: node for node in nodes}

        children: Dict[Optional[UUID], List[TaskNode]] = defaultdict(list)
        for node in self._nodes.values():
            children[node.parent_id].append(node)

        self._children: Dict[Optional[UUID], List[UUID]] = {
            parent_id: [n.id for n in sorted(group, key=lambda n: n.sort_key)]
            for parent_id, group in children.items()
        }

    @classmethod
    async def load(cls, session: AsyncSession, project_id: UUID) -> "TreeStore":
        """
        Load every task of a project from the database.

        Args:
            session: Active async database session
            project_id: Project to load

        Returns:
            TreeStore snapshot of the project
        """
        result = await session.execute(
            select(TaskORM).where(TaskORM.project_id == str(project_id))
        )
        nodes = [node_from_orm(task_orm) for task_orm in result.scalars().all()]
        logger.debug(f"Loaded tree store: project_id={project_id}, nodes={len(nodes)}")
        return cls(nodes, project_id=project_id)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def nodes(self) -> List[TaskNode]:
        """All nodes of the store, in no particular order."""
        return list(self._nodes.values())

    # ==============================================================================
    # STRUCTURAL QUERIES
    # ==============================================================================

    def get_node(self, node_id: UUID) -> TaskNode:
        """
        Get a node by id.

        Raises:
            NodeNotFoundError: If the node is not part of the store
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(f"Task with id {node_id} not found")
        return node

    def find_node(self, node_id: Optional[UUID]) -> Optional[TaskNode]:
        """Get a node by id, or None when absent."""
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def get_children(self, parent_id: Optional[UUID]) -> List[TaskNode]:
        """
        Get the direct children of a parent.

        Args:
            parent_id: Parent task id, None for the scope roots

        Returns:
            Children ordered by order, ties broken by id
        """
        return [self._nodes[child_id] for child_id in self._children.get(parent_id, [])]

    def child_ids(self, parent_id: Optional[UUID]) -> List[UUID]:
        """Ordered ids of the direct children of a parent."""
        return list(self._children.get(parent_id, []))

    def find_descendant(self, root_id: UUID, candidate_id: UUID) -> bool:
        """
        Check whether candidate_id occurs anywhere below root_id.

        Depth-first with an explicit stack. The root itself is not its own
        descendant.

        Args:
            root_id: Root of the subtree to search
            candidate_id: Node to look for

        Returns:
            True if candidate_id is a direct or transitive child of root_id
        """
        stack = list(self._children.get(root_id, []))
        visited = {root_id}

        while stack:
            current = stack.pop()
            if current == candidate_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self._children.get(current, []))

        return False

    def ancestors(self, node_id: UUID) -> List[UUID]:
        """
        Ids from the node's parent up to its root.

        Stops early if a parent is missing or already seen.
        """
        result: List[UUID] = []
        seen = {node_id}
        current = self.get_node(node_id).parent_id

        while current is not None and current not in seen:
            result.append(current)
            seen.add(current)
            parent = self._nodes.get(current)
            current = parent.parent_id if parent else None

        return result

    def depth(self, node_id: UUID) -> int:
        """Nesting depth of a node, 0 for roots."""
        return len(self.ancestors(node_id))

    def walk(self, parent_id: Optional[UUID] = None) -> Iterator[Tuple[TaskNode, int]]:
        """
        Yield (node, depth) pairs in display order (preorder).

        Args:
            parent_id: Start below this node, None for the whole forest
        """
        stack = [(child_id, 0) for child_id in reversed(self._children.get(parent_id, []))]
        visited = set()

        while stack:
            node_id, depth = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            yield self._nodes[node_id], depth
            for child_id in reversed(self._children.get(node_id, [])):
                stack.append((child_id, depth + 1))

    def is_acyclic(self) -> bool:
        """True if following parent_id from every node ends at a root."""
        for node in self._nodes.values():
            seen = {node.id}
            current = node.parent_id
            while current is not None:
                if current in seen:
                    return False
                seen.add(current)
                parent = self._nodes.get(current)
                current = parent.parent_id if parent else None
        return True

    # ==============================================================================
    # DERIVED STORES
    # ==============================================================================

    def with_move(
        self,
        active_id: UUID,
        new_parent_id: Optional[UUID],
        new_order: float,
        renumbered: Optional[Dict[UUID, float]] = None,
    ) -> "TreeStore":
        """
        Return a copy of the store with one node moved.

        Args:
            active_id: Node to move
            new_parent_id: Its new parent, None for the scope root
            new_order: Its new order value
            renumbered: Replacement orders for siblings of the target group
        """
        updates: List[TaskNode] = []
        for sibling_id, order in (renumbered or {}).items():
            if sibling_id != active_id and sibling_id in self._nodes:
                updates.append(self._nodes[sibling_id].model_copy(update={"order": order}))

        active = self.get_node(active_id)
        updates.append(active.model_copy(update={"parent_id": new_parent_id, "order": new_order}))

        return self.with_nodes(updates)

    def with_nodes(self, nodes: Iterable[TaskNode]) -> "TreeStore":
        """Return a copy of the store with the given nodes inserted or replaced."""
        merged = dict(self._nodes)
        for node in nodes:
            merged[node.id] = node
        return TreeStore(merged.values(), project_id=self.project_id)

    def without(self, node_ids: Iterable[UUID]) -> "TreeStore":
        """Return a copy of the store without the given nodes."""
        removed = set(node_ids)
        return TreeStore(
            (node for node in self._nodes.values() if node.id not in removed),
            project_id=self.project_id,
        )
