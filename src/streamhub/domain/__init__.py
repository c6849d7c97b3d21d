"""Domain model, state tables and errors."""
