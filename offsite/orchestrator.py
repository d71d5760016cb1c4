"""
orchestrator.py
Coordinates one job end to end:
  - Resolve the provider to a remote store (once) and take the dataset lock
  - Backup: plan shard size -> open export -> shard pipeline -> completion check
  - Restore: discover -> reconstruct into zfs recv (or a file)
  - Status / list / cleanup over the remote inventory
  - Write a JSON run summary per backup/restore
Failures become a JobResult with a status string; nothing is retried here.
"""

from __future__ import annotations
import logging, os, time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from .types import Config, BackupJob, JobResult, ShardDescriptor
from .errors import (
    OffsiteError, ConfigError, LockBusy, SourceUnavailable, SinkFailure, InconsistentRemoteState,
    ShardTransformFailure, UploadFailure, DownloadFailure, CorruptShard, MissingShard, TargetExists,
)
from .archiver import ShardCodec, required_tools
from .chunker import ShardPipeline
from .inventory import list_shards, is_complete, resume_point, summarize_backups, BackupSummary
from .lock import DatasetLock
from .naming import parse_shard, parse_seal
from .planner import plan, dataset_used_bytes, MiB
from .remote import RemoteStore, resolve_store, store_for_job, uses_rclone
from .restorer import Reconstructor
from .streams import StreamSource, StreamSink, FileSink, open_export, open_import, dataset_exists
from .util import write_json, missing_tools, human_bytes

log = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (LockBusy, "lock_busy"),
    (ConfigError, "config_error"),
    (SourceUnavailable, "source_unavailable"),
    (InconsistentRemoteState, "inconsistent"),
    (MissingShard, "missing_shard"),
    (CorruptShard, "corrupt_shard"),
    (ShardTransformFailure, "transform_failed"),
    (UploadFailure, "upload_failed"),
    (DownloadFailure, "download_failed"),
    (SinkFailure, "sink_failed"),
    (TargetExists, "target_exists"),
]


def status_for(exc: BaseException) -> str:
    for cls, status in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return "exception"


def split_snapshot(identifier: str) -> Tuple[str, str]:
    """'rust/containers@auto-20250716' -> ('rust/containers', 'auto-20250716')"""
    if "@" not in identifier:
        raise ConfigError(f"expected dataset@snapshot, got {identifier!r}")
    dataset, snap = identifier.split("@", 1)
    if not dataset or not snap:
        raise ConfigError(f"expected dataset@snapshot, got {identifier!r}")
    return dataset, snap


def backup_prefix_for(cfg: Config, source_identifier: str, since: Optional[str]) -> str:
    """full-<snap> or incr-<snap>; the same arguments always name the same backup run."""
    _, snap = split_snapshot(source_identifier)
    label = cfg.incr_label if since else cfg.full_label
    return f"{label}-{snap}"


def _check_tools(cfg: Config, store: RemoteStore, need_zfs: bool) -> None:
    tools = required_tools(cfg)
    if need_zfs:
        tools.append("zfs")
    if uses_rclone(store):
        tools.append("rclone")
    missing = missing_tools(tools)
    if missing:
        raise ConfigError(f"missing required tools: {', '.join(missing)}")


def write_summary(cfg: Config, result: JobResult) -> Optional[Path]:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    path = cfg.run_summary_dir / f"run-{result.operation}-{ts}.json"
    summary = dict(result.__dict__)
    summary["finished_utc"] = datetime.now(timezone.utc).isoformat()
    summary["host"] = os.uname().nodename
    try:
        write_json(path, summary)
    except OSError as e:
        log.warning("cannot write run summary %s: %s", path, e)
        return None
    return path


def run_backup(
    cfg: Config,
    source_identifier: str,
    provider: Optional[str] = None,
    since: Optional[str] = None,
    shard_size_mb: Optional[int] = None,
    prefix: Optional[str] = None,
    dry: bool = False,
    open_source: Callable[[str, Optional[str]], StreamSource] = open_export,
    measure_size: Callable[[str], Optional[int]] = dataset_used_bytes,
) -> JobResult:
    started = time.time()
    dataset = source_identifier.split("@", 1)[0]
    result = JobResult("backup", dataset, prefix or "", "", "ok", 0.0)
    try:
        prefix = prefix or backup_prefix_for(cfg, source_identifier, since)
        result.backup_prefix = prefix
        store = resolve_store(cfg, provider, dataset)
        result.destination = store.location
        job = BackupJob(source_identifier, prefix, store.location, since)

        configured = shard_size_mb if shard_size_mb is not None else cfg.shard_size_mb
        shard_size = plan(measure_size(dataset), configured * MiB if configured else None)
        result.extra["shard_size"] = shard_size

        if dry:
            point = resume_point(list_shards(store, prefix))
            print(f"[dry-run] backup {source_identifier} -> {store.location}/{prefix}-s###-b##########")
            print(f"[dry-run] shard size {human_bytes(shard_size)}; "
                  + ("already complete" if point.complete else
                     f"next shard {point.next_index} at byte {point.byte_offset}"))
            result.status = "dry_run"
            result.complete = point.complete
            return result

        _check_tools(cfg, store, need_zfs=open_source is open_export)
        with DatasetLock(cfg.lock_dir, dataset):
            pipeline = ShardPipeline(store, ShardCodec(cfg), cfg.spool_dir)
            with open_source(source_identifier, since) as source:
                result.shards_written = pipeline.run(job, source, shard_size)
            shards = list_shards(store, prefix)
        result.shards_total = len(shards)
        result.bytes_total = sum(s.plaintext_size or 0 for s in shards)
        result.complete = is_complete(shards)
        if not result.complete:
            result.status = "incomplete"
    except OffsiteError as e:
        log.error("backup of %s failed: %s", source_identifier, e)
        result.status = status_for(e)
        result.error = str(e)
    finally:
        result.duration_sec = round(time.time() - started, 2)
    return result


def run_restore(
    cfg: Config,
    dataset: str,
    prefix: str,
    target: Optional[str] = None,
    provider: Optional[str] = None,
    to_file: Optional[Path] = None,
    dry: bool = False,
    confirm_overwrite: Callable[[str], bool] = lambda target: False,
    exists_check: Callable[[str], bool] = dataset_exists,
) -> JobResult:
    started = time.time()
    target = target or f"{dataset}-restored"
    result = JobResult("restore", dataset, prefix, "", "ok", 0.0)
    result.extra["target"] = str(to_file) if to_file else target
    try:
        store = store_for_job(cfg, provider, dataset, prefix)
        result.destination = store.location
        restorer = Reconstructor(store, ShardCodec(cfg), cfg.spool_dir)
        if dry:
            shards = restorer.discover(prefix)
            print(f"[dry-run] restore {store.location}/{prefix} ({len(shards)} shards) -> "
                  f"{to_file or 'zfs recv -F ' + target}")
            result.status = "dry_run"
            result.shards_total = len(shards)
            return result

        _check_tools(cfg, store, need_zfs=to_file is None)
        with DatasetLock(cfg.lock_dir, dataset):
            shards = restorer.discover(prefix)
            result.complete = is_complete(shards)
            if to_file is None and exists_check(target):
                if not confirm_overwrite(target):
                    raise TargetExists(f"dataset {target} already exists; not overwriting it")
                log.warning("overwriting existing dataset %s", target)
            sink: StreamSink = FileSink(to_file) if to_file else open_import(target)
            result.bytes_total = restorer.run(prefix, sink)
            result.shards_total = restorer.shards_restored
    except OffsiteError as e:
        log.error("restore of %s failed: %s", prefix, e)
        result.status = status_for(e)
        result.error = str(e)
    finally:
        result.duration_sec = round(time.time() - started, 2)
    return result


def backup_status(cfg: Config, dataset: str, prefix: str, provider: Optional[str] = None
                  ) -> Tuple[List[ShardDescriptor], bool]:
    store = store_for_job(cfg, provider, dataset, prefix)
    shards = list_shards(store, prefix)
    resume_point(shards)
    return shards, is_complete(shards)


def list_backups(cfg: Config, dataset: str, provider: Optional[str] = None) -> List[BackupSummary]:
    return summarize_backups(resolve_store(cfg, provider, dataset))


def cleanup_targets(store: RemoteStore, prefix: str) -> List[str]:
    """Every shard and seal object of one backup, seals first."""
    objects = store.list(prefix)
    seals = sorted(n for n in objects if parse_seal(n, prefix))
    shards = sorted(n for n in objects if parse_shard(n, prefix))
    return seals + shards


def cleanup_backup(
    cfg: Config,
    dataset: str,
    prefix: str,
    provider: Optional[str] = None,
    confirm: Callable[[List[str]], bool] = lambda names: True,
) -> int:
    store = resolve_store(cfg, provider, dataset)
    with DatasetLock(cfg.lock_dir, dataset):
        names = cleanup_targets(store, prefix)
        if not names:
            log.info("no objects found for %s in %s", prefix, store.location)
            return 0
        if not confirm(names):
            return 0
        for name in names:
            store.delete(name)
            log.info("deleted %s", name)
    return len(names)
