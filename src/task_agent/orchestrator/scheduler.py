"""Polling loop that feeds the orchestrator one task at a time."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from enum import Enum

from task_agent.orchestrator.worker import TaskOrchestrator, WorkerRunSummary

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class PollingScheduler:
    """Single-threaded poller with an adaptive wait.

    After a processed task the next poll comes after ``busy_poll_delay_seconds``
    to drain a backlog quickly; after an idle poll (or an orchestrator error)
    it waits the full ``poll_interval_seconds``. ``stop()`` wakes a pending
    wait but never interrupts a task that is already in the pipeline.
    """

    def __init__(
        self,
        orchestrator: TaskOrchestrator,
        *,
        poll_interval_seconds: float = 10.0,
        busy_poll_delay_seconds: float = 1.0,
        stale_task_seconds: int = 0,
    ) -> None:
        self.orchestrator = orchestrator
        self.poll_interval_seconds = poll_interval_seconds
        self.busy_poll_delay_seconds = busy_poll_delay_seconds
        self.stale_task_seconds = stale_task_seconds
        self.state = SchedulerState.STOPPED
        self._wake = threading.Event()
        self._lock = threading.Lock()
        # True from start() until its loop has returned, including after stop().
        self._loop_active = False

    @property
    def summary(self) -> WorkerRunSummary:
        return self.orchestrator.summary

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def run_once(self) -> bool:
        """Poll once. Returns True if a task was processed."""

        self._recover_stale_tasks()
        try:
            return self.orchestrator.process_next_task()
        except Exception:  # noqa: BLE001
            logger.exception("Polling error")
            return False

    def start(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = None,
    ) -> bool:
        """Run the polling loop in the calling thread until stopped.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = poll forever).

        Returns False without polling if the scheduler is already running, or
        if a stopped loop is still finishing its in-flight task.
        """

        with self._lock:
            if self.state is SchedulerState.RUNNING:
                logger.info("Already running")
                return False
            if self._loop_active:
                logger.info("Previous polling loop is still finishing a task")
                return False
            self._loop_active = True
            self.state = SchedulerState.RUNNING
            self._wake.clear()

        logger.info("Starting polling service...")
        logger.info("Poll interval: %ss", self.poll_interval_seconds)
        logger.info("Working directory: %s", self.orchestrator.workflow.working_dir)

        processed = 0
        consecutive_idle = 0
        try:
            with self._signal_handlers():
                while self.is_running:
                    did_work = self.run_once()
                    if did_work:
                        processed += 1
                        consecutive_idle = 0
                        if max_tasks is not None and processed >= max_tasks:
                            break
                        delay = self.busy_poll_delay_seconds
                    else:
                        consecutive_idle += 1
                        if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                            break
                        delay = self.poll_interval_seconds
                    if not self.is_running:
                        break
                    self._wake.wait(timeout=delay)
        finally:
            with self._lock:
                self.state = SchedulerState.STOPPED
                self._loop_active = False
        logger.info("Stopped polling service")
        return True

    def stop(self) -> None:
        """Cancel the pending wait and prevent the next poll."""

        if self.state is not SchedulerState.RUNNING:
            logger.info("Not running")
            return
        self.state = SchedulerState.STOPPED
        self._wake.set()

    def _recover_stale_tasks(self) -> None:
        if self.stale_task_seconds <= 0:
            return
        try:
            self.orchestrator.repository.recover_stale_tasks(
                stale_after=timedelta(seconds=self.stale_task_seconds),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Stale task recovery failed")

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, shutting down...", name)
            self.stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
