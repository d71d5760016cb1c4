"""
planner.py
Shard size policy:
- An explicit shard size always wins.
- Otherwise aim for ~100 shards of the dataset's used bytes, clamped to [10 MiB, 50 GiB].
- If the dataset size cannot be read, fall back to 1 GiB.
The result is a target plaintext size; only the final shard may come out smaller.
"""

from __future__ import annotations
import logging
from typing import Optional
from .util import run, clamp

log = logging.getLogger(__name__)

MiB = 1024 * 1024
GiB = 1024 * MiB

MIN_SHARD_SIZE = 10 * MiB
MAX_SHARD_SIZE = 50 * GiB
DEFAULT_SHARD_SIZE = GiB
TARGET_SHARDS = 100


def plan(dataset_used_bytes: Optional[int], configured_shard_size: Optional[int] = None) -> int:
    if configured_shard_size:
        return configured_shard_size
    if dataset_used_bytes is None or dataset_used_bytes < 0:
        log.info("dataset size unknown, using default shard size of 1 GiB")
        return DEFAULT_SHARD_SIZE
    return clamp(MIN_SHARD_SIZE, dataset_used_bytes // TARGET_SHARDS, MAX_SHARD_SIZE)


def dataset_used_bytes(dataset: str) -> Optional[int]:
    """`zfs get used` in exact bytes, or None when the property cannot be read."""
    rc, out = run(["zfs", "get", "-H", "-p", "-o", "value", "used", dataset], capture=True)
    if rc != 0:
        log.warning("cannot read used size of %s (rc=%s)", dataset, rc)
        return None
    try:
        return int(out.strip().splitlines()[0])
    except (ValueError, IndexError):
        log.warning("unexpected 'zfs get used' output for %s: %r", dataset, out)
        return None
