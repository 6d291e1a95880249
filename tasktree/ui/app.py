"""Main Textual application for TaskTree.

Shows the tasks of one project as a tree and lets the user move them from
the keyboard: pick a task up, walk the cursor to a drop target and drop it
next to, inside or above everything else. Moves go through the client
reconciler, so the tree updates immediately and snaps back if the move is
rejected.

With a server URL (tui --server, or client.base_url in the configuration)
the tree is loaded from and moves are sent to the HTTP API instead of the
local database.
"""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import Footer, Static, Tree
from textual.widgets.tree import TreeNode

from tasktree.api.move_handler import MoveNodeHandler
from tasktree.client.reconciler import (
    ClientReconciler,
    ReconcileResult,
    ReconcileStatus,
    ReconcilerState,
)
from tasktree.client.transport import HttpTransport, InProcessTransport, MoveTransport
from tasktree.config import Config
from tasktree.database import DatabaseManager, get_database_manager
from tasktree.logging_config import get_logger
from tasktree.models import Project, TaskNode
from tasktree.services.cycle_guard import is_valid_move
from tasktree.services.move_errors import TransportFailureError
from tasktree.services.mutation_applier import MutationApplier
from tasktree.services.project_service import ProjectService
from tasktree.services.task_service import DeletePolicy, TaskService
from tasktree.services.tree_store import TreeStore
from tasktree.ui.constants import (
    COMPLETED_MARKER,
    DRAGGED_MARKER,
    DROP_TARGET_MARKER,
    MAX_TITLE_LENGTH_IN_NOTIFICATION,
    NOTIFICATION_TIMEOUT_LONG,
    NOTIFICATION_TIMEOUT_MEDIUM,
    NOTIFICATION_TIMEOUT_SHORT,
    OPEN_MARKER,
)
from tasktree.ui.keybindings import TREE_ID, get_all_bindings
from tasktree.ui.theme import (
    BACKGROUND,
    BORDER,
    COMMENT,
    COMPLETE_COLOR,
    DRAG_COLOR,
    DROP_COLOR,
    ERROR_COLOR,
    FOREGROUND,
    LEVEL_0_COLOR,
    SELECTION,
    get_level_color,
)

# Initialize logger for this module
logger = get_logger(__name__)


class TaskTreeApp(App):
    """Task tree with keyboard drag and drop."""

    CSS = f"""
    Screen {{
        background: {BACKGROUND};
        layout: vertical;
    }}

    #{TREE_ID} {{
        height: 1fr;
        background: {BACKGROUND};
        color: {FOREGROUND};
        border: round {BORDER};
    }}

    #{TREE_ID}:focus {{
        border: round {LEVEL_0_COLOR};
    }}

    #status-bar {{
        height: 1;
        padding: 0 1;
        color: {COMMENT};
        background: {BACKGROUND};
    }}

    Footer {{
        background: {SELECTION};
    }}
    """

    BINDINGS = get_all_bindings()

    # ==============================================================================
    # LIFECYCLE METHODS
    # ==============================================================================

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        project_id: Optional[UUID] = None,
        transport: Optional[MoveTransport] = None,
        config: Optional[Config] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Initialize the TaskTree application.

        Args:
            db_manager: Database manager, the global one if not given
            project_id: Project to show, the default project if not given
            transport: Where moves are sent, the local database if not given
            config: Configuration, loaded from the default location if not given
            base_url: TaskTree API to work against instead of the local
                      database, client.base_url from the configuration if not given
        """
        super().__init__(**kwargs)
        self.title = "TaskTree"
        self._config = config or Config()
        self._db_manager = db_manager
        self._project_id = project_id
        self._project_name = "Tasks"
        self._transport = transport
        self._base_url = base_url or self._config.get_client_config()['base_url']
        self._applier: Optional[MutationApplier] = None
        self._tree_nodes: Dict[UUID, Tuple[TreeNode, int]] = {}
        self._drop_target: Optional[UUID] = None
        self._drop_rejected = False
        self.reconciler: Optional[ClientReconciler] = None

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Tree("Tasks", id=TREE_ID)
        yield Static("", id="status-bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Load the project and build the reconciler."""
        logger.info("TaskTree application mounted, initializing...")

        if self._transport is None and self._base_url:
            self._transport = HttpTransport(
                self._base_url,
                timeout=self._config.get_client_config()['commit_timeout'],
            )

        if self.is_remote:
            store = await self._load_remote()
        else:
            store = await self._load_local()

        self.reconciler = ClientReconciler.from_config(
            store,
            self._transport,
            notifier=self._notify_from_reconciler,
            config=self._config,
        )
        self.reconciler.on_change = self._render_tree

        self._render_tree(store)
        self.query_one(f"#{TREE_ID}", Tree).focus()
        logger.info(f"TaskTree ready: project='{self._project_name}', tasks={len(store)}, remote={self.is_remote}")

    async def on_unmount(self) -> None:
        """Called when app is shutting down."""
        if self._transport is not None:
            await self._transport.close()
        logger.info("TaskTree application shutdown complete")

    # ==============================================================================
    # PUBLIC OPERATIONS
    # ==============================================================================

    @property
    def project_id(self) -> Optional[UUID]:
        return self._project_id

    @property
    def is_remote(self) -> bool:
        """True if the tree lives behind the HTTP API."""
        return isinstance(self._transport, HttpTransport)

    def begin_move(self, task_id: UUID) -> None:
        """Pick up a task."""
        self.reconciler.drag_start(task_id)
        self._render_tree(self.reconciler.visible)
        title = self.reconciler.visible.get_node(task_id).title
        self._set_status(f"Moving '{title}': d drop here, i drop inside, r drop at root, Esc cancel")

    def hover(self, over_id: Optional[UUID], over_is_container: bool = False) -> None:
        """Show what dropping on the highlighted node would do and mark the target."""
        planned = self.reconciler.drag_over(over_id, over_is_container)
        active = self.reconciler.visible.get_node(self.reconciler.active_id)
        rejected = self._is_rejected_target(over_id, over_is_container)
        self._mark_drop_target(over_id, rejected)

        if rejected:
            self._set_status(Text(f"Moving '{active.title}': cannot drop into its own subtree", style=ERROR_COLOR))
            return
        if planned is None:
            self._set_status(f"Moving '{active.title}': no change here")
            return

        parent = self.reconciler.visible.find_node(planned.new_parent_id)
        where = f"under '{parent.title}'" if parent else "at the top level"
        self._set_status(f"Moving '{active.title}': drop {where}")

    async def finish_move(
        self,
        over_id: Optional[UUID],
        over_is_container: bool = False,
    ) -> ReconcileResult:
        """Drop the picked up task and wait for the move to commit."""
        self._drop_target = None
        result = await self.reconciler.drag_end(over_id, over_is_container)
        self._set_status("")
        self._render_tree(self.reconciler.visible)

        if result.status == ReconcileStatus.COMMITTED:
            self.notify("Task moved", severity="information", timeout=NOTIFICATION_TIMEOUT_SHORT)
        return result

    async def reload_tree(self) -> None:
        """Reload the project from the database or the server."""
        if self.is_remote:
            store = await self._transport.fetch_tree(self._project_id)
        else:
            async with self._with_task_service() as task_service:
                store = await task_service.get_tree(self._project_id)
        self.reconciler.replace_store(store)

    # ==============================================================================
    # EVENT HANDLERS
    # ==============================================================================

    def on_tree_node_highlighted(self, event: Tree.NodeHighlighted) -> None:
        """Cursor movement while dragging previews the drop."""
        if not self._is_dragging():
            return
        over_id = event.node.data
        self.hover(over_id, over_is_container=over_id is None)

    # ==============================================================================
    # ACTION HANDLERS - DRAG AND DROP
    # ==============================================================================

    def action_pick_up(self) -> None:
        """Pick up the highlighted task (M key)."""
        if not self._is_idle():
            return
        task_id = self._cursor_task_id()
        if task_id is None:
            logger.debug("No task highlighted to pick up")
            return
        self.begin_move(task_id)

    async def action_drop(self) -> None:
        """Drop next to the highlighted task (D key); on the root node, append at the top level."""
        if not self._is_dragging():
            return
        over_id = self._cursor_task_id()
        await self.finish_move(over_id, over_is_container=over_id is None)

    async def action_drop_inside(self) -> None:
        """Drop as the last child of the highlighted task (I key)."""
        if not self._is_dragging():
            return
        await self.finish_move(self._cursor_task_id(), over_is_container=True)

    async def action_drop_at_root(self) -> None:
        """Drop as the last top-level task (R key)."""
        if not self._is_dragging():
            return
        await self.finish_move(None, over_is_container=True)

    def action_cancel_drag(self) -> None:
        """Put the picked up task back (Escape key)."""
        if not self._is_dragging():
            return
        self._drop_target = None
        self.reconciler.cancel()
        self._set_status("")
        self._render_tree(self.reconciler.visible)

    # ==============================================================================
    # ACTION HANDLERS - TASK OPERATIONS
    # ==============================================================================

    async def action_toggle_completion(self) -> None:
        """Toggle completion of the highlighted task (T key)."""
        task_id = self._cursor_task_id()
        if task_id is None or not self._is_idle() or self._refuse_when_remote("toggle completion"):
            return

        try:
            async with self._with_task_service() as task_service:
                task = await task_service.toggle_completion(task_id)
            status = "completed" if task.is_completed else "reopened"
            self.notify(f"Task {status}", severity="information", timeout=NOTIFICATION_TIMEOUT_SHORT)
            await self.reload_tree()
        except Exception:
            logger.error("Error toggling task completion", exc_info=True)
            self._notify_task_error("toggle completion")

    async def action_delete_task(self) -> None:
        """Delete the highlighted task (X/Delete key)."""
        task_id = self._cursor_task_id()
        if task_id is None or not self._is_idle() or self._refuse_when_remote("delete tasks"):
            return

        title = self.reconciler.visible.get_node(task_id).title
        try:
            await self._applier.delete(
                task_id,
                policy=DeletePolicy(self._config.get_task_config()['delete_policy']),
                order_gap=self._config.get_move_config()['order_gap'],
            )
            self.notify(
                f"Task deleted: {title[:MAX_TITLE_LENGTH_IN_NOTIFICATION]}",
                severity="information",
                timeout=NOTIFICATION_TIMEOUT_SHORT,
            )
            await self.reload_tree()
        except Exception:
            logger.error("Error deleting task", exc_info=True)
            self._notify_task_error("delete task")

    async def action_refresh(self) -> None:
        """Reload the tree (Ctrl+R)."""
        if not self._is_idle():
            return
        try:
            await self.reload_tree()
        except TransportFailureError as e:
            self.notify(str(e), severity="error", timeout=NOTIFICATION_TIMEOUT_MEDIUM)

    def action_help(self) -> None:
        """Show help information."""
        self.notify(
            "M=Move, D=Drop here, I=Drop inside, R=Drop at root, Esc=Cancel, T=Complete, X=Delete",
            severity="information",
            timeout=NOTIFICATION_TIMEOUT_LONG,
        )

    # ==============================================================================
    # PRIVATE HELPERS
    # ==============================================================================

    async def _load_local(self) -> TreeStore:
        """Open the local database, pick the project and wire moves to an in-process handler."""
        if self._db_manager is None:
            self._db_manager = get_database_manager(self._config.get_database_config()['url'])
        if not self._db_manager.is_initialized:
            await self._db_manager.initialize()

        async with self._db_manager.get_session() as session:
            project_service = ProjectService(session)
            project = None
            if self._project_id is not None:
                project = await project_service.get_project_by_id(self._project_id)
                if project is None:
                    logger.warning(f"Project {self._project_id} not found, using the default project")
            if project is None:
                project = await project_service.ensure_default_project()
            store = await TaskService(session).get_tree(project.id)

        if self._transport is None:
            handler = MoveNodeHandler.from_config(self._db_manager, self._config)
            self._transport = InProcessTransport(handler)

        # Deletes must queue behind moves on the same project lock
        if isinstance(self._transport, InProcessTransport):
            self._applier = self._transport.handler.applier
        else:
            self._applier = MutationApplier.from_config(self._db_manager, self._config)

        self._use_project(project)
        return store

    async def _load_remote(self) -> TreeStore:
        """Pick the project on the server and fetch its tree."""
        try:
            projects = await self._transport.fetch_projects()
            project = self._choose_project(projects)
            if project is None:
                raise TransportFailureError("The server has no projects")
            store = await self._transport.fetch_tree(project.id)
        except TransportFailureError as e:
            logger.error(f"Could not load tasks from {self._transport.base_url}: {e}")
            self.notify(str(e), severity="error", timeout=NOTIFICATION_TIMEOUT_LONG)
            return TreeStore()

        self._use_project(project)
        return store

    def _choose_project(self, projects: List[Project]) -> Optional[Project]:
        if self._project_id is not None:
            for project in projects:
                if project.id == self._project_id:
                    return project
            logger.warning(f"Project {self._project_id} not found on the server, using the first project")
        return projects[0] if projects else None

    def _use_project(self, project: Project) -> None:
        self._project_id = project.id
        self._project_name = project.name

    def _refuse_when_remote(self, action: str) -> bool:
        if not self.is_remote:
            return False
        self.notify(
            f"Cannot {action} while connected to a server",
            severity="warning",
            timeout=NOTIFICATION_TIMEOUT_MEDIUM,
        )
        return True

    def _is_idle(self) -> bool:
        return self.reconciler is not None and self.reconciler.state == ReconcilerState.IDLE

    def _is_dragging(self) -> bool:
        return self.reconciler is not None and self.reconciler.state == ReconcilerState.DRAGGING

    def _cursor_task_id(self) -> Optional[UUID]:
        node = self.query_one(f"#{TREE_ID}", Tree).cursor_node
        return node.data if node is not None else None

    def _is_rejected_target(self, over_id: Optional[UUID], over_is_container: bool) -> bool:
        """True if the hovered node lies in the dragged task's own subtree."""
        active_id = self.reconciler.active_id
        if over_id is None or over_id == active_id:
            return False
        store = self.reconciler.visible
        parent_id = over_id if over_is_container else store.get_node(over_id).parent_id
        return not is_valid_move(store, active_id, parent_id)

    def _mark_drop_target(self, target_id: Optional[UUID], rejected: bool) -> None:
        """Move the drop marker to a node, relabelling only the nodes involved."""
        previous = self._drop_target
        self._drop_target = target_id
        self._drop_rejected = rejected
        for node_id in {previous, target_id} - {None}:
            entry = self._tree_nodes.get(node_id)
            if entry is None:
                continue
            tree_node, depth = entry
            tree_node.set_label(self._task_label(self.reconciler.visible.get_node(node_id), depth))

    @asynccontextmanager
    async def _with_task_service(self):
        """Context manager for TaskService with database session.

        Yields:
            TaskService configured with the delete policy and order gap
        """
        delete_policy = DeletePolicy(self._config.get_task_config()['delete_policy'])
        order_gap = self._config.get_move_config()['order_gap']
        async with self._db_manager.get_session() as session:
            yield TaskService(session, delete_policy=delete_policy, order_gap=order_gap)

    def _notify_from_reconciler(self, message: str, severity: str) -> None:
        self.notify(message, severity=severity, timeout=NOTIFICATION_TIMEOUT_MEDIUM)

    def _notify_task_error(self, action: str) -> None:
        self.notify(f"Failed to {action}", severity="error", timeout=NOTIFICATION_TIMEOUT_MEDIUM)

    def _set_status(self, message) -> None:
        self.query_one("#status-bar", Static).update(message)

    def _task_label(self, node: TaskNode, depth: int) -> Text:
        """Label of a task: completion marker and title colored by depth."""
        label = Text()
        if self.reconciler is not None and node.id == self.reconciler.active_id:
            label.append(DRAGGED_MARKER, style=f"bold {DRAG_COLOR}")

        if node.is_completed:
            label.append(f"{COMPLETED_MARKER} ", style=COMPLETE_COLOR)
            label.append(node.title, style=f"strike {COMPLETE_COLOR}")
        else:
            label.append(f"{OPEN_MARKER} ", style=COMMENT)
            label.append(node.title, style=get_level_color(depth))

        if node.id == self._drop_target:
            label.append(DROP_TARGET_MARKER, style=ERROR_COLOR if self._drop_rejected else f"bold {DROP_COLOR}")
        return label

    def _render_tree(self, store: TreeStore) -> None:
        """Rebuild the Tree widget from a store, keeping the cursor on the same task."""
        tree = self.query_one(f"#{TREE_ID}", Tree)
        cursor_id = self._cursor_task_id()

        tree.clear()
        tree.root.set_label(self._project_name)
        tree.root.expand()

        self._tree_nodes = {}
        for node, depth in store.walk():
            parent = self._tree_nodes[node.parent_id][0] if node.parent_id in self._tree_nodes else tree.root
            label = self._task_label(node, depth)
            if store.child_ids(node.id):
                tree_node = parent.add(label, data=node.id, expand=True)
            else:
                tree_node = parent.add_leaf(label, data=node.id)
            self._tree_nodes[node.id] = (tree_node, depth)

        if cursor_id in self._tree_nodes:
            self.call_after_refresh(tree.move_cursor, self._tree_nodes[cursor_id][0])
