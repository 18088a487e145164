"""Local deterministic agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Read the prompt from stdin, optionally write a file, exit with a chosen code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--write-file", default=None, help="File to create in the working dir.")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr", default="", help="Message to print on stderr.")
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()
    last_line = prompt.strip().splitlines()[-1] if prompt.strip() else ""
    print(f"echo_agent received {len(prompt)} chars")
    print(f"echo_agent task={os.getenv('TASK_AGENT_TASK_ID', '-')} ci={os.getenv('CI', '-')}")

    if args.write_file:
        Path(args.write_file).write_text(f"{last_line}\n", "utf-8")
    if args.stderr:
        print(args.stderr, file=sys.stderr)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
