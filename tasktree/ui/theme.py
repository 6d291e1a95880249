"""One Monokai colors for TaskTree.

The terminal UI and the CLI tree printer share these constants. Each
nesting level gets its own accent color so a task's depth stays readable
after it is moved somewhere else in the tree.

    from tasktree.ui.theme import BACKGROUND, get_level_color

    text.append(node.title, style=get_level_color(depth))
"""

import colorsys

from rich.theme import Theme


# ============================================================================
# BASE COLORS
# ============================================================================

BACKGROUND = "#272822"  # Main application background (dark charcoal)
FOREGROUND = "#F8F8F2"  # Primary text color (off-white)
SELECTION = "#49483E"   # Selected item background (medium gray)
COMMENT = "#75715E"     # Secondary/dimmed text (muted brown-gray)
BORDER = "#3E3D32"      # Borders and dividers (dark gray-green)


# ============================================================================
# HIERARCHY COLORS
# ============================================================================

LEVEL_COLORS = [
    "#66D9EF",  # Level 0: Cyan - top-level tasks
    "#A6E22E",  # Level 1: Green
    "#F92672",  # Level 2: Pink
    "#F3C300",  # Level 3: Vivid Yellow
    "#875692",  # Level 4: Strong Purple
    "#F38400",  # Level 5: Vivid Orange
    "#A1CAF1",  # Level 6: Very Light Blue
    "#C2B280",  # Level 7: Buff
]

LEVEL_0_COLOR = LEVEL_COLORS[0]


# ============================================================================
# STATUS AND DRAG COLORS
# ============================================================================

COMPLETE_COLOR = COMMENT  # Dimmed gray for completed tasks
DRAG_COLOR = "#FD971F"    # Task being moved (orange)
DROP_COLOR = "#E6DB74"    # Highlighted drop target (yellow)
ERROR_COLOR = "#F92672"   # Rejected moves


# Named styles for the CLI console
TASKTREE_THEME = Theme({
    "complete": f"strike {COMPLETE_COLOR}",
    "error": f"bold {ERROR_COLOR}",
    "dim": COMMENT,
})


def generate_hsl_color(level: int) -> str:
    """Generate a color for levels beyond LEVEL_COLORS.

    Steps through the hue circle by the golden ratio conjugate so deep
    levels stay distinct, with fixed lightness and saturation that read
    well on the dark background.
    """
    hue = (0.5 + level * 0.618033988749895) % 1.0
    r, g, b = colorsys.hls_to_rgb(hue, 0.6, 0.8)
    return f"#{int(r * 255):02x}{int(g * 255):02x}{int(b * 255):02x}"


def get_level_color(level: int) -> str:
    """Get the accent color for a nesting level.

    Args:
        level: Depth of the task, 0 for top-level tasks

    Returns:
        Hex color string; FOREGROUND for negative levels
    """
    if level < 0:
        return FOREGROUND
    if level < len(LEVEL_COLORS):
        return LEVEL_COLORS[level]
    return generate_hsl_color(level)
