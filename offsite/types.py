"""
types.py
Dataclasses used across modules: Config, BackupJob, Shard, ShardDescriptor, JobResult.

These are intentionally lightweight, serializable, and stable for logging.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Any

@dataclass
class Config:
    # remote
    default_provider: str
    providers: Dict[str, str]
    rclone_flags: List[str]
    # crypto
    age_public_key_file: Path
    age_private_key_file: Path
    # archive
    compressor: str
    compression_level: int
    shard_size_mb: int
    spool_dir: Optional[Path]
    stream_ext: str
    # naming
    full_label: str
    incr_label: str
    # runtime
    log_level: str
    lock_dir: Path
    run_summary_dir: Path

@dataclass(frozen=True)
class BackupJob:
    source_identifier: str
    backup_prefix: str
    destination_path: str
    since_identifier: Optional[str] = None

@dataclass
class Shard:
    """One shard while it is being processed; the remote object is its durable form."""
    index: int
    byte_offset: int
    plaintext_size: int
    is_final: bool

@dataclass(frozen=True)
class ShardDescriptor:
    index: int
    byte_offset: int
    object_name: str
    stored_size: Optional[int] = None
    # from the seal object; None while the shard is unsealed
    plaintext_size: Optional[int] = None
    is_final: Optional[bool] = None
    seal_name: Optional[str] = None

    @property
    def sealed(self) -> bool:
        return self.plaintext_size is not None

    @property
    def end_offset(self) -> Optional[int]:
        if self.plaintext_size is None:
            return None
        return self.byte_offset + self.plaintext_size

@dataclass
class JobResult:
    operation: str
    dataset: str
    backup_prefix: str
    destination: str
    status: str
    duration_sec: float
    shards_written: int = 0
    shards_total: int = 0
    bytes_total: int = 0
    complete: bool = False
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
