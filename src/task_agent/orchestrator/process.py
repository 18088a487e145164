"""Run external commands with captured (and optionally streamed) output."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_POSIX = os.name == "posix"
_TERMINATE_GRACE_SECONDS = 2.0
_READER_JOIN_SECONDS = 5.0


@dataclass(slots=True)
class CommandResult:
    """Uniform outcome of one external command."""

    success: bool
    output: str
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False


def run_command(  # noqa: PLR0913
    args: Sequence[str],
    *,
    cwd: Path,
    timeout_seconds: float | None = None,
    env_overrides: Mapping[str, str] | None = None,
    input_text: str | None = None,
    stream: bool = False,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and map its exit status to a ``CommandResult``.

    Exit code 0 is success. A non-zero exit carries stderr (or a synthetic
    message) as ``error``; a spawn failure or timeout never raises. When
    ``stream`` is set, stdout/stderr are copied to this process's streams as
    they arrive while still being buffered for the result. ``input_text`` is
    written to the child's standard input, which is then closed.

    On POSIX the child runs in its own session, so a terminal interrupt aimed
    at the worker leaves it alone and a timeout kills its whole process group.
    """

    argv = list(args)
    if not argv:
        return CommandResult(success=False, output="", error="Empty command.")

    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    try:
        process = subprocess.Popen(  # noqa: S603
            argv,
            cwd=cwd,
            env=env,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            # Own process group: terminal Ctrl+C does not reach the child, and a
            # timeout can kill everything the child spawned.
            start_new_session=_POSIX,
        )
    except FileNotFoundError:
        return CommandResult(success=False, output="", error=f"Command not found: {argv[0]}")
    except OSError as error:
        return CommandResult(success=False, output="", error=f"Failed to start {argv[0]}: {error}")

    stdout_chunks: list[str] = []
    stderr_chunks: list[str] = []
    threads = [
        threading.Thread(
            target=_pump,
            args=(process.stdout, stdout_chunks, sys.stdout if stream else None),
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(process.stderr, stderr_chunks, sys.stderr if stream else None),
            daemon=True,
        ),
    ]
    if input_text is not None:
        threads.append(
            threading.Thread(target=_feed, args=(process.stdin, input_text), daemon=True),
        )
    for thread in threads:
        thread.start()

    timed_out = False
    try:
        returncode = process.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        timed_out = True
        _terminate_process(process)
        returncode = TIMEOUT_EXIT_CODE

    for thread in threads:
        thread.join(timeout=_READER_JOIN_SECONDS)
    if any(thread.is_alive() for thread in threads):
        logger.warning(
            "Output of %s still open %ss after exit; returning partial output",
            argv[0],
            _READER_JOIN_SECONDS,
        )

    stdout = "".join(stdout_chunks)
    stderr = "".join(stderr_chunks)
    if timed_out:
        return CommandResult(
            success=False,
            output=stdout,
            error=f"{argv[0]} timed out after {timeout_seconds}s",
            exit_code=returncode,
            timed_out=True,
        )
    if returncode == 0:
        return CommandResult(success=True, output=stdout, exit_code=0)
    return CommandResult(
        success=False,
        output=stdout,
        error=stderr.strip() or f"Process exited with code {returncode}",
        exit_code=returncode,
    )


def _pump(pipe: IO[str] | None, chunks: list[str], sink: IO[str] | None) -> None:
    if pipe is None:
        return
    with pipe:
        for line in iter(pipe.readline, ""):
            chunks.append(line)
            if sink is not None:
                sink.write(line)
                sink.flush()


def _feed(pipe: IO[str] | None, text: str) -> None:
    if pipe is None:
        return
    try:
        with pipe:
            pipe.write(text)
    except (OSError, ValueError):
        # Child exited or closed stdin without reading the whole input.
        return


def _terminate_process(process: subprocess.Popen[str]) -> None:
    """Stop the child and every process it spawned: SIGTERM, grace period, SIGKILL."""

    if not _POSIX:
        _terminate_single(process)
        return

    _signal_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        pass
    # Descendants may outlive a parent that exited on SIGTERM.
    _signal_group(process, signal.SIGKILL)
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s did not exit after SIGKILL", process.pid)


def _signal_group(process: subprocess.Popen[str], signum: signal.Signals) -> None:
    try:
        os.killpg(process.pid, signum)
    except ProcessLookupError:
        return
    except OSError as error:
        logger.warning("Failed to signal process group %s: %s", process.pid, error)
        if signum == signal.SIGKILL:
            process.kill()
        else:
            process.terminate()


def _terminate_single(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
