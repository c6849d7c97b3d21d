"""External media process management."""
