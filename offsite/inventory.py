"""
inventory.py
Remote inventory and completion detection, derived from object names alone:
- Parse shard and seal names for one backup prefix, ignoring unrelated objects
- Report (never repair) duplicates, malformed names, gaps and offset mismatches
- Decide completion and the resume point for the shard pipeline
- Group a dataset directory into backups for --list
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional
from .types import ShardDescriptor
from .errors import InconsistentRemoteState
from .naming import parse_shard, parse_seal, claims_prefix, backup_prefixes
from .remote import RemoteStore
from .util import human_bytes

log = logging.getLogger(__name__)


def describe(objects: Dict[str, int], prefix: str) -> List[ShardDescriptor]:
    """ShardDescriptors for one prefix from a name -> size listing, sorted by index."""
    shards: Dict[int, tuple] = {}
    seals: Dict[int, tuple] = {}
    problems: List[str] = []
    for name, size in objects.items():
        parsed = parse_shard(name, prefix)
        if parsed:
            if parsed.index in shards:
                problems.append(f"duplicate shard index {parsed.index}: {shards[parsed.index][0]} and {name}")
                continue
            shards[parsed.index] = (name, parsed, size)
            continue
        sealed = parse_seal(name, prefix)
        if sealed:
            if sealed.index in seals:
                problems.append(f"duplicate seal for shard {sealed.index}: {seals[sealed.index][0]} and {name}")
                continue
            seals[sealed.index] = (name, sealed)
            continue
        if claims_prefix(name, prefix):
            problems.append(f"malformed object name {name}")

    for index, (seal_obj, sealed) in seals.items():
        if index not in shards:
            problems.append(f"seal {seal_obj} has no shard object")
        elif shards[index][1].byte_offset != sealed.byte_offset:
            problems.append(f"seal {seal_obj} disagrees with {shards[index][0]} on byte offset")

    if problems:
        raise InconsistentRemoteState(f"{prefix}: " + "; ".join(sorted(problems)))

    out = []
    for index in sorted(shards):
        name, parsed, size = shards[index]
        seal = seals.get(index)
        out.append(
            ShardDescriptor(
                index=index,
                byte_offset=parsed.byte_offset,
                object_name=name,
                stored_size=size,
                plaintext_size=seal[1].plaintext_size if seal else None,
                is_final=seal[1].is_final if seal else None,
                seal_name=seal[0] if seal else None,
            )
        )
    return out


def list_shards(store: RemoteStore, prefix: str) -> List[ShardDescriptor]:
    return describe(store.list(prefix), prefix)


def first_gap(shards: List[ShardDescriptor]) -> Optional[int]:
    """Lowest index missing from 1..max(index), or None for an unbroken run."""
    expected = 1
    for s in shards:
        if s.index != expected:
            return expected
        expected += 1
    return None


def check_offsets(shards: List[ShardDescriptor]) -> None:
    """Byte offsets must chain: offset(n+1) == offset(n) + plaintext_size(n), starting at 0."""
    if shards and shards[0].byte_offset != 0:
        raise InconsistentRemoteState(f"{shards[0].object_name} does not start at byte 0")
    for cur, nxt in zip(shards, shards[1:]):
        if not cur.sealed:
            raise InconsistentRemoteState(
                f"{cur.object_name} has no seal but is followed by shard {nxt.index}"
            )
        if cur.is_final:
            raise InconsistentRemoteState(
                f"{cur.object_name} is sealed final but is followed by shard {nxt.index}"
            )
        if cur.end_offset != nxt.byte_offset:
            raise InconsistentRemoteState(
                f"{nxt.object_name} starts at {nxt.byte_offset}, expected {cur.end_offset}"
            )


def is_complete(shards: List[ShardDescriptor], shard_size: Optional[int] = None) -> bool:
    """
    True only for an unbroken 1..N run whose last shard is confirmed final: sealed `.last`,
    or (given shard_size) sealed with a plaintext size strictly below it.
    """
    if not shards:
        return False
    if first_gap(shards) is not None:
        return False
    last = shards[-1]
    if last.is_final:
        return True
    if shard_size is not None and last.sealed:
        return last.plaintext_size < shard_size
    return False


class ResumePoint(NamedTuple):
    complete: bool
    next_index: int
    byte_offset: int
    existing: int


def resume_point(shards: List[ShardDescriptor]) -> ResumePoint:
    """
    Where the pipeline continues. Only an unbroken, offset-consistent run is trusted.
    An unsealed last shard is produced again under the same name.
    """
    gap = first_gap(shards)
    if gap is not None:
        raise InconsistentRemoteState(
            f"shard {gap} is missing but shard {shards[-1].index} exists; refusing to resume"
        )
    check_offsets(shards)
    if not shards:
        return ResumePoint(False, 1, 0, 0)
    last = shards[-1]
    if last.is_final:
        return ResumePoint(True, last.index + 1, last.end_offset, len(shards))
    if last.sealed:
        return ResumePoint(False, last.index + 1, last.end_offset, len(shards))
    return ResumePoint(False, last.index, last.byte_offset, len(shards) - 1)


@dataclass
class BackupSummary:
    prefix: str
    shards: int
    stored_bytes: int
    plaintext_bytes: int
    status: str


def summarize_backups(store: RemoteStore) -> List[BackupSummary]:
    """One entry per backup prefix found in the dataset directory."""
    objects = store.list()
    prefixes = backup_prefixes(objects)
    out = []
    for prefix in prefixes:
        mine = {
            n: s for n, s in objects.items()
            if parse_shard(n, prefix) or parse_seal(n, prefix) or claims_prefix(n, prefix)
        }
        try:
            shards = describe(mine, prefix)
            resume_point(shards)
            status = "complete" if is_complete(shards) else "incomplete"
        except InconsistentRemoteState as e:
            log.warning("%s", e)
            count = sum(1 for n in mine if parse_shard(n, prefix))
            out.append(BackupSummary(prefix, count, sum(mine.values()), 0, "inconsistent"))
            continue
        out.append(
            BackupSummary(
                prefix,
                len(shards),
                sum(s.stored_size or 0 for s in shards),
                sum(s.plaintext_size or 0 for s in shards),
                status,
            )
        )
    return out


def print_shards(shards: List[ShardDescriptor]) -> None:
    """Human-readable shard table for `status`."""
    print(f"{'SHARD':>5} {'OFFSET':>14} {'PLAIN':>9} {'STORED':>9} {'SEAL':<6} NAME")
    for s in shards:
        plain = human_bytes(s.plaintext_size) if s.sealed else "?"
        stored = human_bytes(s.stored_size) if s.stored_size is not None else "?"
        seal = "last" if s.is_final else ("size" if s.sealed else "-")
        print(f"{s.index:>5} {s.byte_offset:>14} {plain:>9} {stored:>9} {seal:<6} {s.object_name}")


def print_backups(backups: List[BackupSummary]) -> None:
    """Human-readable summary for `list`."""
    print(f"{'BACKUP':<40} {'SHARDS':>6} {'STORED':>9} {'PLAIN':>9} {'STATUS':<12}")
    for b in backups:
        print(
            f"{b.prefix:<40} {b.shards:>6} {human_bytes(b.stored_bytes):>9} "
            f"{human_bytes(b.plaintext_bytes):>9} {b.status:<12}"
        )
