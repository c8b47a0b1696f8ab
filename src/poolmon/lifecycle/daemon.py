"""Process-level helpers: single-instance pidfile and detaching."""

import fcntl
import logging
import os
import sys
from typing import Optional

from poolmon.errors import PoolmonError

logger = logging.getLogger(__name__)


class PidFileError(PoolmonError):
    """Another instance holds the pidfile, or it cannot be opened."""


class PidFile:
    """Exclusive, lock-backed pidfile."""

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        """Open and lock the pidfile.

        Raises:
            PidFileError: If the file cannot be opened or is already locked
        """
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise PidFileError(f"Cannot open pidfile {self.path}: {e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise PidFileError(f"Pidfile {self.path} is locked, is poolmon already running?") from e
        self._fd = fd

    def write(self, pid: Optional[int] = None) -> None:
        """Record the pid of the running process in the locked file."""
        if self._fd is None:
            raise PidFileError("Pidfile not acquired")
        os.ftruncate(self._fd, 0)
        os.lseek(self._fd, 0, os.SEEK_SET)
        os.write(self._fd, f"{pid or os.getpid()}\n".encode())
        os.fsync(self._fd)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.unlink(self.path)
        except OSError as e:
            logger.warning(f"Cannot remove pidfile {self.path}: {e}")
        os.close(self._fd)
        self._fd = None

    def __enter__(self) -> "PidFile":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def daemonize() -> None:
    """Detach from the controlling terminal with the usual double fork."""
    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    os.chdir("/")
    os.umask(0o022)

    sys.stdout.flush()
    sys.stderr.flush()
    with open(os.devnull, "rb") as devnull_in, open(os.devnull, "ab") as devnull_out:
        os.dup2(devnull_in.fileno(), sys.stdin.fileno())
        os.dup2(devnull_out.fileno(), sys.stdout.fileno())
        os.dup2(devnull_out.fileno(), sys.stderr.fileno())
