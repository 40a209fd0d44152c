from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import errno
import logging
import os
from pathlib import Path

from hugstatus.observability import log_event


LOGGER = logging.getLogger("hugstatus.pidfile")


class PidFileError(RuntimeError):
    """Raised when the pid file belongs to another live process."""


@contextmanager
def pid_file(path: Path) -> Iterator[None]:
    """Write this process id as decimal text to ``path`` for the duration of the block.

    A file left behind by a dead process is reclaimed. On exit the file is
    removed only if it still holds our pid.
    """

    pid = os.getpid()
    _claim(path, pid)
    log_event(LOGGER, "pidfile_written", path=str(path), pid=pid)
    try:
        yield
    finally:
        _release(path, pid)


def _claim(path: Path, pid: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    for _ in range(2):
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            owner = read_pid(path)
            if owner is not None and owner != pid and _pid_is_running(owner):
                raise PidFileError(
                    f"Another hug-status process appears active (pid={owner}). Pid file: {path}"
                ) from None
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            log_event(LOGGER, "pidfile_reclaimed", path=str(path), stale_pid=owner)
            continue

        try:
            os.write(fd, str(pid).encode("ascii"))
            os.fsync(fd)
        except Exception:
            try:
                os.close(fd)
            finally:
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    pass
            raise
        os.close(fd)
        return

    raise PidFileError(f"Could not claim pid file {path}")


def _release(path: Path, pid: int) -> None:
    if read_pid(path) != pid:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def read_pid(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    if not text.isdigit():
        return None
    return int(text)


def _pid_is_running(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as exc:
        return exc.errno != errno.ESRCH
    return True
