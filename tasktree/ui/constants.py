"""UI constants for TaskTree application."""

# Notification settings
MAX_TITLE_LENGTH_IN_NOTIFICATION = 30
NOTIFICATION_TIMEOUT_SHORT = 2
NOTIFICATION_TIMEOUT_MEDIUM = 3
NOTIFICATION_TIMEOUT_LONG = 5

# Tree labels
COMPLETED_MARKER = "[x]"
OPEN_MARKER = "[ ]"
DRAGGED_MARKER = ">> "
DROP_TARGET_MARKER = " <<"
