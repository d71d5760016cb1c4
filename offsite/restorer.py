"""
restorer.py
Reconstruction pipeline: discover -> validate -> per shard: download, decrypt+decompress,
length check -> sink.

Shards are fed to the sink strictly in index order. A shard's decoded length is checked
against the next shard's byte offset (and its seal) before any of its bytes reach the sink.
Local disk holds one shard's ciphertext and plaintext at a time.
"""

from __future__ import annotations
import logging, tempfile
from pathlib import Path
from typing import List, Optional
from .types import ShardDescriptor
from .errors import CorruptShard, MissingShard, OffsiteError
from .archiver import ShardCodec
from .inventory import list_shards, first_gap, check_offsets
from .remote import RemoteStore
from .streams import StreamSink, PIECE
from .util import human_bytes

log = logging.getLogger(__name__)

DISCOVER = "discover"
VALIDATE = "validate"
STREAM_DECODE = "stream_decode"
SINK = "sink"
DONE = "done"
ABORTED = "aborted"


def expected_length(shards: List[ShardDescriptor], pos: int) -> Optional[int]:
    """Plaintext length shard[pos] must decode to, or None when nothing records it."""
    cur = shards[pos]
    if pos + 1 < len(shards):
        return shards[pos + 1].byte_offset - cur.byte_offset
    return cur.plaintext_size


class Reconstructor:
    def __init__(self, store: RemoteStore, codec: ShardCodec, spool_dir: Optional[Path] = None):
        self.store = store
        self.codec = codec
        self.spool_dir = spool_dir
        self.state = DISCOVER
        self.shards_restored = 0
        self.bytes_restored = 0

    def discover(self, backup_prefix: str) -> List[ShardDescriptor]:
        """Validated, ordered shard list; raises MissingShard naming the first gap."""
        self.state = DISCOVER
        shards = list_shards(self.store, backup_prefix)
        if not shards:
            raise MissingShard(1, backup_prefix)
        self.state = VALIDATE
        gap = first_gap(shards)
        if gap is not None:
            raise MissingShard(gap, backup_prefix)
        if shards[0].byte_offset != 0:
            raise CorruptShard(1, 0, shards[0].byte_offset)
        check_offsets(shards)
        last = shards[-1]
        if last.sealed and not last.is_final:
            # the seal records that more shards follow
            raise MissingShard(last.index + 1, backup_prefix)
        if not last.sealed:
            log.warning("%s: last shard %d has no seal; its length cannot be checked",
                        backup_prefix, last.index)
        return shards

    def run(self, backup_prefix: str, sink: StreamSink) -> int:
        """Stream the whole backup into sink and commit it; returns bytes written."""
        try:
            shards = self.discover(backup_prefix)
            self.state = STREAM_DECODE
            spool = str(self.spool_dir) if self.spool_dir else None
            with tempfile.TemporaryDirectory(prefix="offsite-restore-", dir=spool) as work:
                for pos, shard in enumerate(shards):
                    self._restore_one(shards, pos, Path(work), sink)
            self.state = SINK
            sink.commit()
        except BaseException:
            self.state = ABORTED
            sink.abort()
            raise
        self.state = DONE
        log.info("%s: restored %d shard(s), %s into %s", backup_prefix,
                 self.shards_restored, human_bytes(self.bytes_restored), sink.label)
        return self.bytes_restored

    def _restore_one(self, shards: List[ShardDescriptor], pos: int, work: Path, sink: StreamSink) -> None:
        shard = shards[pos]
        cipher = work / shard.object_name
        plain = work / f"shard-{shard.index:03d}"
        try:
            log.info("[%d/%d] downloading %s", pos + 1, len(shards), shard.object_name)
            self.store.get(shard.object_name, cipher)
            size = self.codec.decode(cipher, plain)
            cipher.unlink()

            expected = expected_length(shards, pos)
            if expected is not None and size != expected:
                raise CorruptShard(shard.index, expected, size)
            if shard.sealed and size != shard.plaintext_size:
                raise CorruptShard(shard.index, shard.plaintext_size, size)

            with open(plain, "rb") as fh:
                while True:
                    data = fh.read(PIECE)
                    if not data:
                        break
                    sink.write(data)
            self.shards_restored += 1
            self.bytes_restored += size
        except OSError as e:
            raise OffsiteError(f"local spool error on shard {shard.index}: {e}") from e
        finally:
            cipher.unlink(missing_ok=True)
            plain.unlink(missing_ok=True)
