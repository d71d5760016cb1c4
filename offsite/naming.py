"""
naming.py
Self-describing remote object names.

  shard: <prefix>-s<index:03d>-b<byte_offset:010d>.<ext>
  seal:  <prefix>-s<index:03d>-b<byte_offset:010d>-n<plaintext_size:010d>.<size|last>

Index and offset are zero-padded to a minimum width and grow wider past 999 / 10 digits;
parsing accepts any width at or above the minimum. <ext> is informational only.
A seal is a zero-byte object recording the plaintext size of a shard; `.last` marks the
final shard. Seal names never match the shard pattern.
"""

from __future__ import annotations
import re
from typing import NamedTuple, Optional

SEAL_FINAL = "last"
SEAL_PARTIAL = "size"

_SHARD_TAIL = r"-s(?P<index>\d{3,})-b(?P<offset>\d{10,})\.(?P<ext>.+)$"
_SEAL_TAIL = r"-s(?P<index>\d{3,})-b(?P<offset>\d{10,})-n(?P<size>\d{10,})\.(?P<kind>size|last)$"

_ANY_SHARD = re.compile(r"^(?P<prefix>.+)" + _SHARD_TAIL)
_ANY_SEAL = re.compile(r"^(?P<prefix>.+)" + _SEAL_TAIL)


class ParsedShard(NamedTuple):
    prefix: str
    index: int
    byte_offset: int
    ext: str


class ParsedSeal(NamedTuple):
    prefix: str
    index: int
    byte_offset: int
    plaintext_size: int
    is_final: bool


def shard_name(prefix: str, index: int, byte_offset: int, ext: str) -> str:
    if index < 1:
        raise ValueError(f"shard index must be >= 1, got {index}")
    if byte_offset < 0:
        raise ValueError(f"byte offset must be >= 0, got {byte_offset}")
    return f"{prefix}-s{index:03d}-b{byte_offset:010d}.{ext}"


def seal_name(prefix: str, index: int, byte_offset: int, plaintext_size: int, is_final: bool) -> str:
    kind = SEAL_FINAL if is_final else SEAL_PARTIAL
    return f"{prefix}-s{index:03d}-b{byte_offset:010d}-n{plaintext_size:010d}.{kind}"


def shard_ext(stream_ext: str, compressor: str) -> str:
    """e.g. 'zfs.gz.age'; describes the transform chain, never parsed back."""
    comp = {"gzip": "gz", "pigz": "gz", "zstd": "zst"}.get(compressor)
    parts = [stream_ext] + ([comp] if comp else []) + ["age"]
    return ".".join(p for p in parts if p)


def _prefixed(prefix: str, tail: str) -> re.Pattern:
    return re.compile("^" + re.escape(prefix) + tail)


def parse_shard(name: str, prefix: Optional[str] = None) -> Optional[ParsedShard]:
    m = (_prefixed(prefix, _SHARD_TAIL) if prefix is not None else _ANY_SHARD).match(name)
    if not m:
        return None
    return ParsedShard(
        prefix if prefix is not None else m.group("prefix"),
        int(m.group("index")),
        int(m.group("offset")),
        m.group("ext"),
    )


def parse_seal(name: str, prefix: Optional[str] = None) -> Optional[ParsedSeal]:
    m = (_prefixed(prefix, _SEAL_TAIL) if prefix is not None else _ANY_SEAL).match(name)
    if not m:
        return None
    return ParsedSeal(
        prefix if prefix is not None else m.group("prefix"),
        int(m.group("index")),
        int(m.group("offset")),
        int(m.group("size")),
        m.group("kind") == SEAL_FINAL,
    )


def claims_prefix(name: str, prefix: str) -> bool:
    """True for names that look like they belong to this backup's shard namespace."""
    return re.match(re.escape(prefix) + r"-s\d", name) is not None


def backup_prefixes(names) -> list[str]:
    """Distinct backup prefixes among shard object names."""
    found = set()
    for name in names:
        m = _ANY_SHARD.match(name)
        if m:
            found.add(m.group("prefix"))
    return sorted(found)
