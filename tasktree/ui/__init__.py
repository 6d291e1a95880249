"""TaskTree terminal UI - keyboard driven task tree with drag and drop."""
