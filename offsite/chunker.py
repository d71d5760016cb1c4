"""
chunker.py
The backup shard pipeline:
  list remote shards -> skip what is stored -> per shard: buffer -> compress+encrypt -> upload -> seal
Local disk holds at most one shard's plaintext and ciphertext at a time.

Each shard is read from the export into the spool (one byte is read ahead once a shard is
full, so a stream ending exactly on a shard boundary still seals its last shard as final),
encoded, uploaded under its self-describing name, verified by listing, then sealed with a
zero-byte object recording its plaintext size. Any failure discards the current shard and
propagates; the next run resumes from the remote state.
"""

from __future__ import annotations
import logging, tempfile, time
from pathlib import Path
from typing import Optional
from .types import BackupJob, Shard
from .errors import ShardTransformFailure, UploadFailure
from .archiver import ShardCodec
from .inventory import list_shards, resume_point
from .naming import shard_name, seal_name
from .remote import RemoteStore
from .streams import StreamSource, PIECE
from .util import human_bytes

log = logging.getLogger(__name__)

PLANNING = "planning"
RESUMING = "resuming"
STREAMING = "streaming"
BUFFERING = "buffering"
FINALIZING_SHARD = "finalizing_shard"
UPLOADING = "uploading"
DONE = "done"
ABORTED = "aborted"


class ShardPipeline:
    def __init__(self, store: RemoteStore, codec: ShardCodec, spool_dir: Optional[Path] = None):
        self.store = store
        self.codec = codec
        self.spool_dir = spool_dir
        self.state = PLANNING
        self.bytes_skipped = 0
        self.bytes_streamed = 0

    def run(self, job: BackupJob, source: StreamSource, shard_size: int) -> int:
        """Produce the missing shards of job; returns how many were uploaded in this run."""
        if shard_size <= 0:
            raise ValueError(f"shard size must be positive, got {shard_size}")
        try:
            return self._run(job, source, shard_size)
        except BaseException:
            self.state = ABORTED
            raise

    def _run(self, job: BackupJob, source: StreamSource, shard_size: int) -> int:
        log.info("backup %s%s -> %s/%s-s### (shard size %s)", job.source_identifier,
                 f" (incremental from {job.since_identifier})" if job.since_identifier else "",
                 job.destination_path, job.backup_prefix, human_bytes(shard_size))
        # fail on a missing key before touching the export
        _ = self.codec.recipient

        self.state = RESUMING
        point = resume_point(list_shards(self.store, job.backup_prefix))
        if point.complete:
            log.info("%s is already complete (%d shards), nothing to upload",
                     job.backup_prefix, point.existing)
            self.state = DONE
            return 0
        if point.existing:
            log.info("resuming %s at shard %d, skipping %s already stored",
                     job.backup_prefix, point.next_index, human_bytes(point.byte_offset))
        if point.byte_offset:
            source.skip(point.byte_offset)
            self.bytes_skipped = point.byte_offset

        self.state = STREAMING
        index = point.next_index
        offset = point.byte_offset
        carry = b""
        written = 0
        spool = str(self.spool_dir) if self.spool_dir else None
        if self.spool_dir:
            self.spool_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="offsite-", dir=spool) as work:
            while True:
                self.state = BUFFERING
                plain = Path(work) / f"shard-{index:03d}"
                bytes_read, carry = self._buffer(source, plain, shard_size, carry)
                if bytes_read == 0:
                    plain.unlink(missing_ok=True)
                    if index > 1:
                        log.warning("export ended at byte %d without a final shard on record", offset)
                    break

                self.state = FINALIZING_SHARD
                shard = Shard(index, offset, bytes_read, bytes_read < shard_size or not carry)
                self._process(job, shard, plain, Path(work))
                written += 1
                offset += bytes_read
                self.bytes_streamed += bytes_read
                index += 1
                if shard.is_final:
                    break

        self.state = DONE
        log.info("%s: %d shard(s) uploaded this run, %s streamed",
                 job.backup_prefix, written, human_bytes(self.bytes_streamed))
        return written

    def _buffer(self, source: StreamSource, path: Path, shard_size: int, carry: bytes):
        """Spool up to shard_size bytes; returns (bytes spooled, look-ahead byte or b'')."""
        total = 0
        try:
            with open(path, "wb") as fh:
                if carry:
                    fh.write(carry)
                    total += len(carry)
                while total < shard_size:
                    data = source.read(min(PIECE, shard_size - total))
                    if not data:
                        break
                    fh.write(data)
                    total += len(data)
        except OSError as e:
            path.unlink(missing_ok=True)
            raise ShardTransformFailure(f"cannot spool shard to {path}: {e}") from e
        ahead = source.read(1) if total == shard_size else b""
        return total, ahead

    def _process(self, job: BackupJob, shard: Shard, plain: Path, work: Path) -> None:
        name = shard_name(job.backup_prefix, shard.index, shard.byte_offset, self.codec.ext)
        cipher = work / name
        seal = work / "seal"
        try:
            started = time.time()
            cipher_size = self.codec.encode(plain, cipher)
            plain.unlink()

            self.state = UPLOADING
            log.info("shard %d: %s plaintext -> %s encrypted, uploading %s",
                     shard.index, human_bytes(shard.plaintext_size), human_bytes(cipher_size), name)
            self.store.put(name, cipher)
            stored = self.store.list(name).get(name)
            if stored != cipher_size:
                raise UploadFailure(
                    f"{name} not confirmed after upload (stored size {stored}, expected {cipher_size})"
                )
            seal.touch()
            self.store.put(
                seal_name(job.backup_prefix, shard.index, shard.byte_offset,
                          shard.plaintext_size, shard.is_final),
                seal,
            )
            log.info("shard %d uploaded%s in %.1fs", shard.index,
                     " (final)" if shard.is_final else "", time.time() - started)
        finally:
            plain.unlink(missing_ok=True)
            cipher.unlink(missing_ok=True)
            seal.unlink(missing_ok=True)
