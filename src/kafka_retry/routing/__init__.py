"""Topic to handler routing."""
