"""Keybindings for the TaskTree terminal UI.

Dragging is done from the keyboard:
- Pick up the highlighted task (M)
- Move the cursor over the drop target (Up/Down, Left/Right to fold)
- Drop next to the highlighted task (D), inside it (I) or at the root (R)
- Cancel the drag (Escape)

Enter and Space are left to the Tree widget for expanding and collapsing.
"""

from textual.binding import Binding


# Drag and drop keybindings
DRAG_BINDINGS = [
    Binding("m,M", "pick_up", "Move", show=True),
    Binding("d,D", "drop", "Drop Here", show=True),
    Binding("i,I", "drop_inside", "Drop Inside", show=True),
    Binding("r,R", "drop_at_root", "Drop at Root", show=True),
    Binding("escape", "cancel_drag", "Cancel Move", show=False),
]

# Task action keybindings
TASK_ACTION_BINDINGS = [
    Binding("t,T", "toggle_completion", "Toggle Complete", show=True),
    Binding("x,delete", "delete_task", "Delete Task", show=True),
    Binding("ctrl+r", "refresh", "Reload", show=False),
]

# Application control keybindings
APP_CONTROL_BINDINGS = [
    Binding("q,Q", "quit", "Quit", priority=True, show=True),
    Binding("question_mark", "help", "Help", show=True),
]

TREE_ID = "task-tree"


def get_all_bindings() -> list[Binding]:
    """Get all application keybindings.

    Returns:
        List of all Binding objects
    """
    return DRAG_BINDINGS + TASK_ACTION_BINDINGS + APP_CONTROL_BINDINGS
