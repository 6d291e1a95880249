"""
Tests for the command line entry point.
"""

import asyncio
import logging
from uuid import UUID, uuid4

import pytest

from tasktree.__main__ import build_parser, build_rich_tree, main
from tasktree.database import DatabaseManager
from tasktree.services.mutation_applier import MutationApplier
from tasktree.services.tree_store import TreeStore


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Send the database, logs and config directory of the CLI to tmp_path."""
    monkeypatch.setenv("TASKTREE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("TASKTREE_LOG_LEVEL", raising=False)
    monkeypatch.setattr("tasktree.__main__.DEFAULT_CONFIG_DIR", tmp_path / "home")
    monkeypatch.setattr("tasktree.logging_config.LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr("tasktree.logging_config.LOG_FILE", tmp_path / "logs" / "tasktree.log")

    root_logger = logging.getLogger()
    saved_handlers, saved_level = list(root_logger.handlers), root_logger.level

    yield ["--config", str(tmp_path / "none.ini")]

    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(saved_level)


class TestBuildRichTree:
    """Tests for rendering a store with rich."""

    def test_nesting_and_order(self, make_node):
        """Test that the rich tree mirrors the hierarchy in sibling order."""
        a = make_node("A", order=2.0)
        b = make_node("B", order=1.0)
        a1 = make_node("A1", parent_id=a.id)
        store = TreeStore([a, b, a1])

        tree = build_rich_tree(store, "Work")

        assert tree.label.plain == "Work"
        assert [child.label.plain for child in tree.children] == ["[ ] B", "[ ] A"]
        assert [child.label.plain for child in tree.children[1].children] == ["[ ] A1"]

    def test_completed_and_ids(self, make_node):
        """Test the completed marker and optional ids."""
        done = make_node("Done")
        done.mark_completed()

        tree = build_rich_tree(TreeStore([done]), "Work", show_ids=True)

        label = tree.children[0].label.plain
        assert label.startswith("[x] Done")
        assert str(done.id) in label


class TestParser:
    """Tests for argument parsing."""

    def test_defaults_to_no_command(self):
        """Test that no subcommand leaves command unset, meaning the TUI."""
        assert build_parser().parse_args([]).command is None

    def test_add_arguments(self):
        """Test parsing of the add command."""
        parent = uuid4()

        args = build_parser().parse_args(["add", "Write tests", "--parent", str(parent)])

        assert args.command == "add"
        assert args.title == "Write tests"
        assert args.parent == parent

    def test_tui_server(self):
        """Test that the TUI can be pointed at an API."""
        args = build_parser().parse_args(["tui", "--server", "http://127.0.0.1:8000"])

        assert args.server == "http://127.0.0.1:8000"

    def test_activity_arguments(self):
        """Test parsing of the activity command."""
        args = build_parser().parse_args(["activity", "--limit", "5"])

        assert args.command == "activity"
        assert args.limit == 5
        assert args.project is None


class TestMain:
    """Tests for running commands end to end."""

    def test_add_then_tree(self, cli_env, capsys):
        """Test that an added task shows up in the printed tree."""
        assert main(cli_env + ["add", "Buy milk"]) == 0
        assert main(cli_env + ["add", "Buy bread"]) == 0
        capsys.readouterr()

        assert main(cli_env + ["tree"]) == 0

        output = capsys.readouterr().out
        assert "Inbox" in output
        assert output.index("Buy milk") < output.index("Buy bread")

    def test_normalize(self, cli_env, capsys):
        """Test the normalize command on the default project."""
        main(cli_env + ["add", "Only task"])

        assert main(cli_env + ["normalize"]) == 0

        assert "Normalized 0 task(s) in 'Inbox'" in capsys.readouterr().out

    def test_unknown_project_fails(self, cli_env, capsys):
        """Test that a missing project exits with an error."""
        assert main(cli_env + ["tree", "--project", str(uuid4())]) == 1

        assert "not found" in capsys.readouterr().err

    def test_add_subtask(self, cli_env, capsys):
        """Test that --parent nests the new task in the parent's project."""
        main(cli_env + ["add", "Groceries"])
        parent_id = capsys.readouterr().out.split()[-1]

        assert main(cli_env + ["add", "Buy eggs", "--parent", parent_id]) == 0
        capsys.readouterr()
        main(cli_env + ["tree"])

        output = capsys.readouterr().out
        assert output.index("Groceries") < output.index("Buy eggs")

    def test_add_under_unknown_parent_fails(self, cli_env, capsys):
        """Test that a missing parent exits with an error."""
        assert main(cli_env + ["add", "Orphan", "--parent", str(uuid4())]) == 1

        assert "not found" in capsys.readouterr().err

    def test_activity_empty(self, cli_env, capsys):
        """Test the activity command on a project without moves."""
        assert main(cli_env + ["activity"]) == 0

        assert "No activity in 'Inbox'" in capsys.readouterr().out

    def test_activity_lists_deletions(self, cli_env, capsys, tmp_path):
        """Test that a deletion shows up in the activity command."""
        main(cli_env + ["add", "Short lived"])
        task_id = UUID(capsys.readouterr().out.split()[-1])

        async def delete():
            db_manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
            await db_manager.initialize()
            try:
                await MutationApplier(db_manager).delete(task_id, actor_id="frank")
            finally:
                await db_manager.close()

        asyncio.run(delete())

        assert main(cli_env + ["activity"]) == 0

        output = capsys.readouterr().out
        assert 'Task "Short lived" was deleted by frank' in output
        assert "deleted" in output
