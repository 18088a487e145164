"""Automates queued code-change tasks with an external CLI agent."""

__version__ = "0.1.0"
