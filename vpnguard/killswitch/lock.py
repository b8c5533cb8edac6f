"""Pid-file lock guaranteeing a single supervisor per host."""

import fcntl
import os
from pathlib import Path
from typing import Optional

from .exceptions import AlreadyRunningError, LockError
from ..logging_utility import logger


class InstanceLock:
    """Exclusive ``flock`` on the pid file, held for the whole run.

    The kernel drops the lock when its holder exits, so a file left behind by a
    dead supervisor is reclaimed by whoever locks it next. The file content is
    informational only.
    """

    def __init__(self, pid_file: Path):
        self.pid_file = Path(pid_file)
        self.pid = os.getpid()
        self._fd: Optional[int] = None

    def _read(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning(f"Ignoring malformed pid file {self.pid_file}")
            return None
        except OSError as e:
            raise LockError(f"Cannot read pid file {self.pid_file}: {e}")

    def _is_current(self, fd: int) -> bool:
        """Whether fd still refers to the file at pid_file."""
        try:
            st = os.stat(self.pid_file)
        except FileNotFoundError:
            return False
        fst = os.fstat(fd)
        return (st.st_dev, st.st_ino) == (fst.st_dev, fst.st_ino)

    @property
    def owned(self) -> bool:
        return self._fd is not None and self._is_current(self._fd)

    def _close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def holder(self) -> Optional[int]:
        """Pid of the live process holding the lock, if any."""
        if self.owned:
            return self.pid
        try:
            fd = os.open(self.pid_file, os.O_RDONLY)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LockError(f"Cannot open pid file {self.pid_file}: {e}")
        try:
            fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
        except BlockingIOError:
            return self._read()
        finally:
            os.close(fd)
        return None

    def acquire(self) -> None:
        if self.owned:
            return
        self._close()
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(3):
            try:
                fd = os.open(self.pid_file, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise LockError(f"Cannot create pid file {self.pid_file}: {e}")
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                raise AlreadyRunningError(self._read())
            except OSError as e:
                os.close(fd)
                raise LockError(f"Cannot lock pid file {self.pid_file}: {e}")

            # A releasing holder may have unlinked the file we just locked
            if not self._is_current(fd):
                os.close(fd)
                continue

            previous = self._read()
            if previous is not None and previous != self.pid:
                logger.warning(f"Reclaiming stale pid file {self.pid_file} (PID {previous})")
            os.ftruncate(fd, 0)
            os.write(fd, f"{self.pid}\n".encode())
            os.fsync(fd)
            self._fd = fd
            logger.info(f"Lock acquired: {self.pid_file} (PID {self.pid})")
            return
        raise LockError(f"Lost the race for {self.pid_file}")

    def verify(self) -> None:
        """Re-check ownership before destructive operations."""
        if self.owned:
            return
        pid = self.holder()
        if pid is not None:
            raise LockError(f"Lock {self.pid_file} is held by another process (PID {pid})")
        logger.warning(f"Pid file {self.pid_file} missing or replaced, reclaiming it")
        self.acquire()

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            if self._is_current(self._fd):
                # Unlink while still locked so no one can lock the old inode as current
                self.pid_file.unlink(missing_ok=True)
                logger.info(f"Lock released: {self.pid_file}")
        finally:
            self._close()
