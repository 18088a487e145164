"""Persistent storage for the task queue."""
