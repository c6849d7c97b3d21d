"""Reusable concurrency and resource primitives."""
