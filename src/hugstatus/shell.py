from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
import os
import subprocess


LOGGER = logging.getLogger("hugstatus.shell")


class CommandError(RuntimeError):
    """A subprocess could not start, timed out, or exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = tuple(argv)
        self.returncode = returncode
        self.stderr = stderr


def preview(text: str, *, limit: int = 200) -> str:
    """Single-line, length-capped rendering of command output for log lines."""
    flattened = " | ".join(line.strip() for line in text.splitlines() if line.strip())
    if not flattened:
        return "<empty>"
    return flattened if len(flattened) <= limit else f"{flattened[:limit]}..."


def run(
    argv: list[str],
    *,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    timeout_seconds: float | None = None,
) -> str:
    """Run ``argv`` and return its stdout.

    ``env`` entries are layered on top of the current environment so secrets
    such as ``GH_TOKEN`` never appear on the command line.
    """

    program = argv[0]
    try:
        completed = subprocess.run(
            argv,
            env={**os.environ, **env} if env else None,
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout_seconds,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        LOGGER.error("event=command_failed command=%s error_type=%s", program, type(exc).__name__)
        raise CommandError(f"Command could not complete ({program}): {exc}", argv=argv) from exc

    if completed.returncode != 0 and check:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s",
            program,
            completed.returncode,
            preview(completed.stderr),
        )
        raise CommandError(
            f"Command failed ({program} exited {completed.returncode}): "
            f"{preview(completed.stderr)}",
            argv=argv,
            returncode=completed.returncode,
            stderr=completed.stderr,
        )
    return completed.stdout
