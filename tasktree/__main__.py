"""Entry point for TaskTree.

This module allows running TaskTree as a module:
    python -m tasktree [command]

Or as an installed command:
    tasktree [command]

Commands:
    tui        Interactive task tree (default)
    serve      Run the HTTP API
    add        Add a task
    tree       Print a project's task tree
    normalize  Respace the order values of a project
    activity   Show the recent activity of a project
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional
from uuid import UUID

from rich.console import Console
from rich.markup import escape
from rich.text import Text
from rich.tree import Tree as RichTree

from tasktree.config import Config, DEFAULT_CONFIG_DIR
from tasktree.database import DatabaseManager
from tasktree.logging_config import get_logger, setup_logging
from tasktree.services.activity_service import ActivityService
from tasktree.services.mutation_applier import MutationApplier
from tasktree.services.project_service import ProjectService
from tasktree.services.task_service import (
    ProjectNotFoundError,
    TaskNotFoundError,
    TaskService,
    TaskServiceError,
)
from tasktree.services.tree_store import TreeStore
from tasktree.ui.theme import TASKTREE_THEME, get_level_color

# Initialize logger for this module
logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(prog="tasktree", description="Hierarchical task manager")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.ini")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command")

    tui = subparsers.add_parser("tui", help="Interactive task tree (default)")
    tui.add_argument("--project", type=UUID, default=None, help="Project ID")
    tui.add_argument("--server", default=None, metavar="URL", help="Work against a TaskTree API")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    add = subparsers.add_parser("add", help="Add a task")
    add.add_argument("title")
    add.add_argument("--project", type=UUID, default=None, help="Project ID")
    add.add_argument("--parent", type=UUID, default=None, help="Parent task ID")
    add.add_argument("--notes", default=None)

    tree = subparsers.add_parser("tree", help="Print a project's task tree")
    tree.add_argument("--project", type=UUID, default=None, help="Project ID")
    tree.add_argument("--ids", action="store_true", help="Show task IDs")

    normalize = subparsers.add_parser("normalize", help="Respace the order values of a project")
    normalize.add_argument("--project", type=UUID, default=None, help="Project ID")

    activity = subparsers.add_parser("activity", help="Show the recent activity of a project")
    activity.add_argument("--project", type=UUID, default=None, help="Project ID")
    activity.add_argument("--limit", type=int, default=20, help="Number of entries")

    return parser


def build_rich_tree(store: TreeStore, label: str, show_ids: bool = False) -> RichTree:
    """
    Render a task tree for the terminal.

    Args:
        store: Tree to render
        label: Label of the root node
        show_ids: Append each task's ID to its title

    Returns:
        rich Tree, parents before children in sibling order
    """
    root = RichTree(Text(label, style="bold"))
    branches = {}

    for node, depth in store.walk():
        parent = branches.get(node.parent_id, root)
        text = Text()
        if node.is_completed:
            text.append(f"[x] {node.title}", style="complete")
        else:
            text.append(f"[ ] {node.title}", style=get_level_color(depth))
        if show_ids:
            text.append(f"  {node.id}", style="dim")
        branches[node.id] = parent.add(text)

    return root


async def _resolve_project(session, project_id: Optional[UUID]):
    project_service = ProjectService(session)
    if project_id is None:
        return await project_service.ensure_default_project()
    project = await project_service.get_project_by_id(project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project with id {project_id} not found")
    return project


async def _add_task(db_manager: DatabaseManager, args: argparse.Namespace, config: Config) -> None:
    async with db_manager.get_session() as session:
        if args.parent is not None:
            parent = await TaskService(session).get_task_by_id(args.parent)
            if parent is None:
                raise TaskNotFoundError(f"Task with id {args.parent} not found")
            project_id = parent.project_id
        else:
            project_id = (await _resolve_project(session, args.project)).id

    applier = MutationApplier.from_config(db_manager, config)
    task = await applier.create(
        args.title,
        project_id,
        parent_id=args.parent,
        notes=args.notes,
        order_gap=config.get_move_config()['order_gap'],
    )
    Console().print(f"Created task {task.id}")


async def _print_tree(db_manager: DatabaseManager, args: argparse.Namespace) -> None:
    async with db_manager.get_session() as session:
        project = await _resolve_project(session, args.project)
        store = await TaskService(session).get_tree(project.id)
    Console(theme=TASKTREE_THEME).print(build_rich_tree(store, project.name, show_ids=args.ids))


async def _normalize(db_manager: DatabaseManager, args: argparse.Namespace, config: Config) -> None:
    async with db_manager.get_session() as session:
        project = await _resolve_project(session, args.project)
    applier = MutationApplier.from_config(db_manager, config)
    changed = await applier.normalize(project.id, order_gap=config.get_move_config()['order_gap'])
    Console().print(f"Normalized {changed} task(s) in '{project.name}'")


async def _print_activity(db_manager: DatabaseManager, args: argparse.Namespace) -> None:
    async with db_manager.get_session() as session:
        project = await _resolve_project(session, args.project)
        activities = await ActivityService(session).get_for_project(project.id, limit=args.limit)

    console = Console(theme=TASKTREE_THEME)
    if not activities:
        console.print(f"No activity in '{escape(project.name)}'", style="dim")
        return
    for activity in activities:
        when = activity.created_at.strftime("%Y-%m-%d %H:%M:%S")
        who = f" by {activity.actor_id}" if activity.actor_id else ""
        line = f"{activity.action.value:<9} {activity.description}{who}"
        console.print(f"[dim]{when}[/dim] {escape(line)}", highlight=False)


async def _run_command(args: argparse.Namespace, config: Config) -> None:
    db_manager = DatabaseManager(config.get_database_config()['url'])
    await db_manager.initialize()
    try:
        if args.command == "add":
            await _add_task(db_manager, args, config)
        elif args.command == "tree":
            await _print_tree(db_manager, args)
        elif args.command == "normalize":
            await _normalize(db_manager, args, config)
        elif args.command == "activity":
            await _print_activity(db_manager, args)
    finally:
        await db_manager.close()


def _serve(args: argparse.Namespace, config: Config) -> None:
    import uvicorn

    from tasktree.api.server import create_app

    api_config = config.get_api_config()
    host = args.host or api_config['host']
    port = args.port or api_config['port']
    logger.info(f"Starting TaskTree API on {host}:{port}")
    uvicorn.run(create_app(config=config), host=host, port=port)


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for TaskTree.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    parsed = build_parser().parse_args(args)
    command = parsed.command or "tui"

    DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    # Initialize logging before any other operations
    setup_logging(parsed.log_level.upper() if parsed.log_level else None)
    config = Config(parsed.config)

    try:
        if command == "tui":
            # Import here to keep the non-interactive commands light
            from tasktree.ui.app import TaskTreeApp

            TaskTreeApp(
                project_id=getattr(parsed, "project", None),
                config=config,
                base_url=getattr(parsed, "server", None),
            ).run()
            logger.info("TaskTree application exited normally")
        elif command == "serve":
            _serve(parsed, config)
        else:
            asyncio.run(_run_command(parsed, config))
        return 0
    except KeyboardInterrupt:
        logger.info("TaskTree closed by user (Ctrl+C)")
        return 0
    except TaskServiceError as e:
        logger.error(f"Command '{command}' failed: {e}")
        Console(stderr=True, theme=TASKTREE_THEME).print(f"[error]Error:[/error] {e}")
        return 1
    except Exception:
        logger.error(f"Error running TaskTree command '{command}'", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
