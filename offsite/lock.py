"""
lock.py
Advisory per-dataset lock so two invocations never work on the same remote namespace.
Non-blocking flock(2) on <lock_dir>/<dataset>.lock; released on close or process exit.
"""

from __future__ import annotations
import fcntl, os
from pathlib import Path
from .errors import ConfigError, LockBusy
from .remote import dataset_path
from .util import ensure_dir


class DatasetLock:
    def __init__(self, lock_dir: Path, dataset: str):
        self.path = Path(lock_dir) / f"{dataset_path(dataset)}.lock"
        self._fd = None

    def acquire(self) -> "DatasetLock":
        try:
            ensure_dir(self.path.parent)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise ConfigError(f"cannot create lock file {self.path}: {e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockBusy(f"another offsite job holds {self.path}")
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        return self

    def release(self) -> None:
        if self._fd is not None:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        return self.acquire()

    def __exit__(self, *exc):
        self.release()
        return False
