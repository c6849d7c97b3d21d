"""Infrastructure: media processes and backend drivers."""
