"""
Client reconciler for TaskTree.

Keeps the client's visible tree consistent with the server across a drag
gesture. The tree is snapshotted when a drag starts; the drop is shown
optimistically while the request is in flight and is then either
replaced by the nodes the server returns or rolled back to the snapshot.

States: IDLE -> DRAGGING -> COMMITTING -> IDLE, with ROLLING_BACK between
COMMITTING and IDLE when the server rejects the move or cannot be reached.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel

from tasktree.api.schemas import ErrorCode, ErrorInfo, MoveNodeRequest, MoveNodeResponse
from tasktree.client.transport import MoveTransport
from tasktree.config import Config
from tasktree.logging_config import get_logger
from tasktree.models import ORDER_GAP
from tasktree.services.cycle_guard import is_valid_move, validate_move
from tasktree.services.move_errors import MoveError, TransportFailureError
from tasktree.services.move_planner import (
    MIN_ORDER_GAP,
    MoveKind,
    PlannedMove,
    plan_gesture,
)
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)

# (message, severity) with severity one of "information", "warning", "error"
Notifier = Callable[[str, str], None]


def log_notifier(message: str, severity: str = "information") -> None:
    """Notifier used when no UI is attached."""
    if severity == "error":
        logger.error(message)
    elif severity == "warning":
        logger.warning(message)
    else:
        logger.info(message)


class ReconcilerState(str, Enum):
    """Lifecycle of one drag gesture."""

    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"


class ReconcileStatus(str, Enum):
    """How a drag gesture ended."""

    COMMITTED = "committed"
    NOOP = "noop"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"


class ReconcileResult(BaseModel):
    """Outcome of drag_end."""

    status: ReconcileStatus
    planned: Optional[PlannedMove] = None
    error: Optional[ErrorInfo] = None
    attempts: int = 0


class ClientReconciler:
    """
    Drives a drag gesture against a MoveTransport.

    Only one gesture is in flight at a time. A new drag cannot start and
    the current one cannot be cancelled once the request has been sent.
    """

    def __init__(
        self,
        store: TreeStore,
        transport: MoveTransport,
        notifier: Optional[Notifier] = None,
        commit_timeout: float = 10.0,
        max_retries: int = 2,
        order_gap: float = ORDER_GAP,
        min_order_gap: float = MIN_ORDER_GAP,
        on_change: Optional[Callable[[TreeStore], None]] = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            store: Tree currently shown to the user
            transport: Where MoveNode requests are sent
            notifier: Receives user-facing messages, logs them if not given
            commit_timeout: Seconds to wait for each send
            max_retries: Extra attempts for retryable failures
            order_gap: Spacing used for appends and renumbering
            min_order_gap: Smallest neighbour distance still split by a midpoint
            on_change: Called with the visible tree whenever it changes
        """
        self.transport = transport
        self.notifier = notifier or log_notifier
        self.commit_timeout = commit_timeout
        self.max_retries = max_retries
        self.order_gap = order_gap
        self.min_order_gap = min_order_gap
        self.on_change = on_change

        self._visible = store
        self._snapshot: Optional[TreeStore] = None
        self._preview: Optional[TreeStore] = None
        self._pending: Optional[PlannedMove] = None
        self._active_id: Optional[UUID] = None
        self._state = ReconcilerState.IDLE

    @classmethod
    def from_config(
        cls,
        store: TreeStore,
        transport: MoveTransport,
        notifier: Optional[Notifier] = None,
        config: Optional[Config] = None,
    ) -> "ClientReconciler":
        """Create a reconciler from the [client] and [move] configuration."""
        config = config or Config()
        client_config = config.get_client_config()
        move_config = config.get_move_config()
        return cls(
            store,
            transport,
            notifier=notifier,
            commit_timeout=client_config['commit_timeout'],
            max_retries=client_config['max_retries'],
            order_gap=move_config['order_gap'],
            min_order_gap=move_config['min_order_gap'],
        )

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def visible(self) -> TreeStore:
        """The tree the user should currently see."""
        return self._visible

    @property
    def preview(self) -> TreeStore:
        """Where the dragged task would land if dropped now."""
        return self._preview if self._preview is not None else self._visible

    @property
    def pending(self) -> Optional[PlannedMove]:
        """Move that would be sent if the drag ended now."""
        return self._pending

    @property
    def active_id(self) -> Optional[UUID]:
        """Task being dragged, None when idle."""
        return self._active_id

    def replace_store(self, store: TreeStore) -> None:
        """
        Show a freshly loaded tree.

        Raises:
            RuntimeError: If a gesture is in progress
        """
        self._require(ReconcilerState.IDLE)
        self._set_visible(store)

    # ==============================================================================
    # GESTURE
    # ==============================================================================

    def drag_start(self, active_id: UUID) -> None:
        """
        Pick up a task.

        Raises:
            RuntimeError: If another gesture is in progress
            NodeNotFoundError: If the task is not in the visible tree
        """
        self._require(ReconcilerState.IDLE)
        self._visible.get_node(active_id)

        self._snapshot = self._visible
        self._active_id = active_id
        self._preview = None
        self._pending = None
        self._state = ReconcilerState.DRAGGING
        logger.debug(f"Drag started: task_id={active_id}")

    def drag_over(self, over_id: Optional[UUID], over_is_container: bool = False) -> Optional[PlannedMove]:
        """
        Update the preview for the current hover target.

        Invalid targets (the task's own subtree, other projects) leave the
        preview at the snapshot.

        Returns:
            The move a drop here would request, None if it would do nothing
        """
        self._require(ReconcilerState.DRAGGING)

        try:
            planned = plan_gesture(
                self._snapshot,
                self._active_id,
                over_id,
                over_is_container,
                gap=self.order_gap,
                min_gap=self.min_order_gap,
            )
        except MoveError:
            planned = None

        if planned is not None and not is_valid_move(self._snapshot, planned.active_id, planned.new_parent_id):
            planned = None

        self._pending = planned
        self._preview = self._apply_locally(self._snapshot, planned) if planned else None
        return planned

    def cancel(self) -> ReconcileResult:
        """
        Abandon the drag without contacting the server.

        Raises:
            RuntimeError: If no drag is in progress or it is already committing
        """
        self._require(ReconcilerState.DRAGGING)
        logger.debug(f"Drag cancelled: task_id={self._active_id}")
        self._set_visible(self._snapshot)
        self._finish()
        return ReconcileResult(status=ReconcileStatus.CANCELLED)

    async def drag_end(self, over_id: Optional[UUID], over_is_container: bool = False) -> ReconcileResult:
        """
        Drop the task and commit the move.

        Args:
            over_id: Task or container the drag ended over
            over_is_container: True if over_id names a child list; a
                container with over_id None is the project root

        Returns:
            ReconcileResult; after COMMITTED the visible tree is the
            optimistic tree with the server's nodes laid over it, which
            leaves it untouched when a repeated request comes back as a
            no-op. After anything else it is the pre-drag snapshot.
        """
        self._require(ReconcilerState.DRAGGING)
        snapshot = self._snapshot

        try:
            planned = plan_gesture(
                snapshot,
                self._active_id,
                over_id,
                over_is_container,
                gap=self.order_gap,
                min_gap=self.min_order_gap,
            )
            if planned is not None:
                validate_move(snapshot, planned.active_id, planned.new_parent_id)
        except MoveError as e:
            return self._roll_back(ErrorInfo.from_error(e), planned=None, attempts=0)

        if planned is None:
            self._set_visible(snapshot)
            self._finish()
            return ReconcileResult(status=ReconcileStatus.NOOP)

        self._state = ReconcilerState.COMMITTING
        self._set_visible(self._apply_locally(snapshot, planned))

        request = MoveNodeRequest(
            active_id=planned.active_id,
            new_parent_id=planned.new_parent_id,
            old_parent_id=planned.old_parent_id,
            target_sibling_id=planned.target_sibling_id,
            same_parent_reorder=planned.kind == MoveKind.REORDER,
            placement=planned.placement,
        )

        try:
            response, error, attempts = await self._send_with_retries(request)
        except Exception as e:
            logger.error(f"MoveNode failed unexpectedly for {planned.active_id}: {e}", exc_info=True)
            self._roll_back(ErrorInfo(code=ErrorCode.MOVE_ERROR, message=str(e)), planned=planned, attempts=0)
            raise

        if response is not None and response.success:
            self._set_visible(self._visible.with_nodes(response.updated_nodes))
            self._finish()
            logger.info(f"Move committed: task_id={planned.active_id}, attempts={attempts}")
            return ReconcileResult(status=ReconcileStatus.COMMITTED, planned=planned, attempts=attempts)

        return self._roll_back(error, planned=planned, attempts=attempts)

    # ==============================================================================
    # INTERNALS
    # ==============================================================================

    async def _send_with_retries(self, request: MoveNodeRequest):
        """
        Send a request, repeating it for retryable failures.

        Returns:
            Tuple of (response or None, last error or None, attempts made)
        """
        attempts = 0
        error: Optional[ErrorInfo] = None

        while attempts <= self.max_retries:
            attempts += 1
            try:
                response: MoveNodeResponse = await asyncio.wait_for(
                    self.transport.send(request), timeout=self.commit_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"MoveNode timed out after {self.commit_timeout}s (attempt {attempts})")
                error = ErrorInfo.from_error(TransportFailureError("The server did not answer in time"))
                continue
            except MoveError as e:
                error = ErrorInfo.from_error(e)
                if e.retryable:
                    logger.warning(f"MoveNode attempt {attempts} failed: {e}")
                    continue
                break

            if response.success:
                return response, None, attempts

            error = response.error
            if error is None or not error.retryable:
                break
            logger.warning(f"MoveNode attempt {attempts} rejected: {error.code.value}")

        return None, error, attempts

    def _roll_back(
        self,
        error: Optional[ErrorInfo],
        planned: Optional[PlannedMove],
        attempts: int,
    ) -> ReconcileResult:
        """Restore the snapshot and tell the user why."""
        self._state = ReconcilerState.ROLLING_BACK
        self._set_visible(self._snapshot)

        message = error.message if error else "Unknown error"
        logger.warning(f"Move rolled back: task_id={self._active_id}, reason={message}")
        self.notifier(f"Could not move task: {message}", "error")

        self._finish()
        return ReconcileResult(
            status=ReconcileStatus.ROLLED_BACK,
            planned=planned,
            error=error,
            attempts=attempts,
        )

    @staticmethod
    def _apply_locally(store: TreeStore, planned: PlannedMove) -> TreeStore:
        return store.with_move(
            planned.active_id,
            planned.new_parent_id,
            planned.new_order,
            renumbered=planned.renumbered,
        )

    def _set_visible(self, store: TreeStore) -> None:
        self._visible = store
        if self.on_change is not None:
            self.on_change(store)

    def _finish(self) -> None:
        self._snapshot = None
        self._preview = None
        self._pending = None
        self._active_id = None
        self._state = ReconcilerState.IDLE

    def _require(self, state: ReconcilerState) -> None:
        if self._state != state:
            raise RuntimeError(f"Expected reconciler to be {state.value}, it is {self._state.value}")
