"""Interactive confirmation helpers for the CLI."""

from __future__ import annotations

import sys
from typing import Callable, Optional, Sequence

InputFunc = Callable[[str], str]


def confirm(message: str, default: bool = False, assume_yes: bool = False,
            input_func: Optional[InputFunc] = None) -> bool:
    """Ask a yes/no question on the terminal.

    Args:
        message: Question to show.
        default: Answer used for an empty reply or a closed stdin.
        assume_yes: Skip the prompt and answer yes.
        input_func: Replacement for ``input`` (tests).

    Returns:
        True when the user agreed.
    """
    if assume_yes:
        return True
    reader = input_func or input
    suffix = " [Y/n] " if default else " [y/N] "
    try:
        answer = reader(message + suffix)
    except EOFError:
        sys.stdout.write("\n")
        return default
    answer = answer.strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def choose(message: str, choices: Sequence[str], default: str,
           input_func: Optional[InputFunc] = None) -> str:
    """Ask the user to pick one of ``choices``; returns ``default`` on empty input."""
    reader = input_func or input
    options = "/".join(c.upper() if c == default else c for c in choices)
    while True:
        try:
            answer = reader(f"{message} [{options}] ").strip().lower()
        except EOFError:
            return default
        if not answer:
            return default
        for choice in choices:
            if choice.startswith(answer):
                return choice
        sys.stdout.write(f"Please answer one of: {', '.join(choices)}\n")
