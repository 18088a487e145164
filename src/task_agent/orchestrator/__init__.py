"""Task orchestration: queue store, git workflow, agent backend and poller.

One worker claims a pending task, prepares a ``task/<id>`` branch, runs the
coding agent CLI in the working copy, commits and pushes its changes, opens
a pull request and records the outcome. Multiple workers may share one
store; the conditional claim guarantees each task runs at most once.
"""
