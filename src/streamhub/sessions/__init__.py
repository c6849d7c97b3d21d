"""Publisher and subscriber sessions."""
