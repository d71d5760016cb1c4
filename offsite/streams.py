"""
streams.py
Byte stream adapters around the external export/import primitives.

Sources are read front to back exactly once. Resuming re-opens the export from the start and
discards the prefix that is already stored remotely, which is only sound because
`zfs send` of the same snapshot (and same incremental base) yields identical bytes.

Sinks take the reconstructed stream and either commit it (import succeeded) or abort it
(nothing usable is left behind).
"""

from __future__ import annotations
import logging, os, shlex, subprocess, tempfile
from pathlib import Path
from typing import Optional
from .errors import SourceUnavailable, SinkFailure
from .util import run, tail

log = logging.getLogger(__name__)

PIECE = 1024 * 1024


class StreamSource:
    """Ordered, finite byte sequence. Subclasses provide _read_raw and _finish."""

    label = "source"

    def __init__(self):
        self.position = 0
        self._eof = False

    def _read_raw(self, n: int) -> bytes:
        raise NotImplementedError

    def _finish(self) -> None:
        """Called once at end of stream; raises SourceUnavailable if the producer failed."""

    def read(self, n: int) -> bytes:
        """Up to n bytes; fewer only at end of stream, b'' once exhausted."""
        if self._eof or n <= 0:
            return b""
        chunks = []
        want = n
        while want > 0:
            try:
                data = self._read_raw(min(want, PIECE))
            except OSError as e:
                raise SourceUnavailable(f"read from {self.label} failed: {e}") from e
            if not data:
                self._eof = True
                self._finish()
                break
            chunks.append(data)
            want -= len(data)
        out = b"".join(chunks)
        self.position += len(out)
        return out

    def skip(self, n: int) -> None:
        """Read and discard exactly n bytes."""
        remaining = n
        while remaining > 0:
            got = len(self.read(min(remaining, PIECE)))
            if got == 0:
                raise SourceUnavailable(
                    f"{self.label} ended after {self.position} bytes while skipping {n}; "
                    "the export is not the one already stored remotely"
                )
            remaining -= got

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FileSource(StreamSource):
    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self.label = str(self.path)
        try:
            self._fh = open(self.path, "rb")
        except OSError as e:
            raise SourceUnavailable(f"cannot open {self.path}: {e}") from e

    def _read_raw(self, n: int) -> bytes:
        return self._fh.read(n)

    def close(self) -> None:
        self._fh.close()


class ProcessSource(StreamSource):
    """stdout of a child process; a non-zero exit at end of stream is a failure."""

    def __init__(self, argv: list[str]):
        super().__init__()
        self.argv = list(argv)
        self.label = " ".join(shlex.quote(a) for a in self.argv)
        self._stderr = tempfile.TemporaryFile()
        log.debug("exec: %s", self.label)
        try:
            self._proc = subprocess.Popen(
                self.argv, stdout=subprocess.PIPE, stderr=self._stderr, stdin=subprocess.DEVNULL
            )
        except OSError as e:
            self._stderr.close()
            raise SourceUnavailable(f"cannot start {self.label}: {e}") from e

    def _read_raw(self, n: int) -> bytes:
        return self._proc.stdout.read(n)

    def _stderr_text(self) -> str:
        self._stderr.seek(0)
        return self._stderr.read().decode("utf-8", "replace")

    def _finish(self) -> None:
        rc = self._proc.wait()
        if rc != 0:
            raise SourceUnavailable(f"{self.label} exited {rc}: {tail(self._stderr_text())}")

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()
        self._proc.stdout.close()
        self._proc.wait()
        self._stderr.close()


def _full_snapshot(dataset: str, snap: str) -> str:
    return snap if "@" in snap and not snap.startswith("@") else f"{dataset}@{snap.lstrip('@')}"


def open_export(source_identifier: str, since_identifier: Optional[str] = None) -> ProcessSource:
    """`zfs send [-I since] dataset@snap` as a byte stream."""
    if "@" not in source_identifier:
        raise SourceUnavailable(f"not a snapshot name: {source_identifier!r} (expected dataset@snap)")
    dataset = source_identifier.split("@", 1)[0]
    argv = ["zfs", "send"]
    if since_identifier:
        argv += ["-I", _full_snapshot(dataset, since_identifier)]
    argv.append(source_identifier)
    return ProcessSource(argv)


class StreamSink:
    """Consumes the reconstructed stream; commit() makes it visible, abort() discards it."""

    label = "sink"

    def __init__(self):
        self.written = 0

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError

    def abort(self) -> None:
        raise NotImplementedError


class FileSink(StreamSink):
    """Writes next to the target and renames into place on commit."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self.label = str(self.path)
        self._tmp = self.path.with_name(f".{self.path.name}.partial")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._tmp, "wb")
        except OSError as e:
            raise SinkFailure(f"cannot create {self._tmp}: {e}") from e

    def write(self, data: bytes) -> None:
        try:
            self._fh.write(data)
        except OSError as e:
            raise SinkFailure(f"write to {self._tmp} failed: {e}") from e
        self.written += len(data)

    def commit(self) -> None:
        try:
            self._fh.flush()
            os.fsync(self._fh.fileno())
            self._fh.close()
            self._tmp.replace(self.path)
        except OSError as e:
            raise SinkFailure(f"cannot finalize {self.path}: {e}") from e

    def abort(self) -> None:
        if not self._fh.closed:
            self._fh.close()
        self._tmp.unlink(missing_ok=True)


class ProcessSink(StreamSink):
    """stdin of a child process; success means it consumed everything and exited 0."""

    def __init__(self, argv: list[str]):
        super().__init__()
        self.argv = list(argv)
        self.label = " ".join(shlex.quote(a) for a in self.argv)
        self._stderr = tempfile.TemporaryFile()
        log.debug("exec: %s", self.label)
        try:
            self._proc = subprocess.Popen(
                self.argv, stdin=subprocess.PIPE, stdout=self._stderr, stderr=self._stderr
            )
        except OSError as e:
            self._stderr.close()
            raise SinkFailure(f"cannot start {self.label}: {e}") from e

    def _stderr_text(self) -> str:
        self._stderr.seek(0)
        return self._stderr.read().decode("utf-8", "replace")

    def write(self, data: bytes) -> None:
        try:
            self._proc.stdin.write(data)
        except (BrokenPipeError, OSError) as e:
            self._proc.wait()
            raise SinkFailure(
                f"{self.label} stopped reading (rc={self._proc.returncode}): {tail(self._stderr_text())}"
            ) from e
        self.written += len(data)

    def commit(self) -> None:
        try:
            self._proc.stdin.close()
        except BrokenPipeError:
            pass
        rc = self._proc.wait()
        text = self._stderr_text()
        self._stderr.close()
        if rc != 0:
            raise SinkFailure(f"{self.label} exited {rc}: {tail(text)}")

    def abort(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()
        try:
            self._proc.stdin.close()
        except BrokenPipeError:
            pass
        self._proc.wait()
        if not self._stderr.closed:
            self._stderr.close()


def dataset_exists(name: str) -> bool:
    """True when `zfs list` knows the dataset."""
    rc, _ = run(["zfs", "list", "-H", "-o", "name", name], capture=True)
    return rc == 0


def open_import(destination_identifier: str) -> ProcessSink:
    """`zfs recv -F target`; ZFS discards a receive that does not complete."""
    return ProcessSink(["zfs", "recv", "-F", destination_identifier])
