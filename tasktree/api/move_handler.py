"""
MoveNode handler for TaskTree.

The single entry point through which clients move tasks. The handler
never trusts the client's view of the tree: it loads the project from the
database, re-derives the current parent, runs the cycle guard, plans the
move and hands it to the mutation applier, which validates again under
the project lock before writing.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select

from tasktree.api.schemas import MoveNodeRequest, MoveNodeResponse
from tasktree.config import Config
from tasktree.database import DatabaseManager, TaskORM
from tasktree.logging_config import get_logger
from tasktree.models import ORDER_GAP
from tasktree.services.cycle_guard import validate_move
from tasktree.services.move_errors import (
    ConcurrencyConflictError,
    MoveError,
    NodeNotFoundError,
    PermissionDeniedError,
)
from tasktree.services.move_planner import MIN_ORDER_GAP, PlannedMove, plan_move
from tasktree.services.mutation_applier import MutationApplier, ensure_parent_in_scope
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)


class Authorizer:
    """
    Decides whether an actor may modify a project.

    The default allows everyone. Deployments with real users subclass it
    and override can_modify.
    """

    async def can_modify(self, actor_id: Optional[str], project_id: UUID) -> bool:
        return True


class MoveNodeHandler:
    """Validates, plans and applies MoveNode requests."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        applier: Optional[MutationApplier] = None,
        authorizer: Optional[Authorizer] = None,
        order_gap: float = ORDER_GAP,
        min_order_gap: float = MIN_ORDER_GAP,
    ) -> None:
        """
        Initialize the handler.

        Args:
            db_manager: Initialized database manager
            applier: Mutation applier, one is created if not given
            authorizer: Permission check, allow-all if not given
            order_gap: Spacing used for appends and renumbering
            min_order_gap: Smallest neighbour distance still split by a midpoint
        """
        self.db_manager = db_manager
        self.applier = applier or MutationApplier(db_manager)
        self.authorizer = authorizer or Authorizer()
        self.order_gap = order_gap
        self.min_order_gap = min_order_gap

    @classmethod
    def from_config(
        cls,
        db_manager: DatabaseManager,
        config: Optional[Config] = None,
        authorizer: Optional[Authorizer] = None,
    ) -> "MoveNodeHandler":
        """Create a handler and its applier from the [move] configuration."""
        config = config or Config()
        move_config = config.get_move_config()
        return cls(
            db_manager,
            applier=MutationApplier.from_config(db_manager, config),
            authorizer=authorizer,
            order_gap=move_config['order_gap'],
            min_order_gap=move_config['min_order_gap'],
        )

    async def move_node(
        self,
        request: MoveNodeRequest,
        actor_id: Optional[str] = None,
    ) -> MoveNodeResponse:
        """
        Move a task to a new parent and/or position.

        Args:
            request: The move to perform
            actor_id: Who asked for it, recorded in the activity log

        Returns:
            MoveNodeResponse; on success updated_nodes holds the committed
            children of every parent the move touched, empty for a no-op.
            Move errors are reported in the response, never raised.
        """
        logger.debug(
            f"MoveNode: active_id={request.active_id}, new_parent_id={request.new_parent_id}, "
            f"old_parent_id={request.old_parent_id}, target_sibling_id={request.target_sibling_id}, "
            f"placement={request.placement}"
        )

        try:
            planned = await self._plan(request, actor_id)
            if planned is None:
                return MoveNodeResponse(success=True)

            updated = await self.applier.apply(planned, actor_id=actor_id)
            return MoveNodeResponse(success=True, updated_nodes=updated.nodes, kind=planned.kind)
        except MoveError as e:
            logger.info(f"MoveNode rejected: active_id={request.active_id}, code={e.code}, reason={e}")
            return MoveNodeResponse.failure(e)
        except Exception as e:
            logger.error(f"MoveNode failed unexpectedly for {request.active_id}: {e}", exc_info=True)
            raise

    async def _plan(
        self,
        request: MoveNodeRequest,
        actor_id: Optional[str],
    ) -> Optional[PlannedMove]:
        """
        Check a request against the stored tree and plan it.

        Returns:
            PlannedMove, or None if the move changes nothing
        """
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(TaskORM.project_id).where(TaskORM.id == str(request.active_id))
            )
            project_id = result.scalar_one_or_none()
            if project_id is None:
                raise NodeNotFoundError(f"Task with id {request.active_id} not found")
            project_id = UUID(project_id)

            if not await self.authorizer.can_modify(actor_id, project_id):
                raise PermissionDeniedError("Not allowed to modify tasks in this project")

            await ensure_parent_in_scope(session, request.new_parent_id, project_id)
            store = await TreeStore.load(session, project_id)

        validate_move(store, request.active_id, request.new_parent_id)

        active = store.get_node(request.active_id)
        if active.parent_id != request.old_parent_id:
            if active.parent_id == request.new_parent_id and self._plan_request(store, request) is None:
                logger.info(
                    f"Task {request.active_id} is already in place under "
                    f"{request.new_parent_id}, treating the request as a repeat"
                )
                return None
            raise ConcurrencyConflictError(
                f"Task {request.active_id} is no longer under {request.old_parent_id}"
            )

        same_parent = active.parent_id == request.new_parent_id
        if request.same_parent_reorder != same_parent:
            logger.warning(
                f"Ignoring sameParentReorder={request.same_parent_reorder} for "
                f"{request.active_id}, the stored parent says {same_parent}"
            )

        return self._plan_request(store, request)

    def _plan_request(self, store: TreeStore, request: MoveNodeRequest) -> Optional[PlannedMove]:
        return plan_move(
            store,
            request.active_id,
            request.new_parent_id,
            request.target_sibling_id,
            gap=self.order_gap,
            min_gap=self.min_order_gap,
            placement=request.placement,
        )
