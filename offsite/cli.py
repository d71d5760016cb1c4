#!/usr/bin/env python3
"""
cli.py
Command-line interface for offsite.
Parses arguments, loads config, and invokes the orchestrator.
"""
from __future__ import annotations
import argparse, logging, sys
from pathlib import Path
from .bundle import DEFAULT_CONFIG_PATH, prepend_bin_to_path
from .config import find_config, load_config
from .errors import OffsiteError, ConfigError, LockBusy, InconsistentRemoteState, MissingShard, CorruptShard
from .inventory import print_shards, print_backups
from .orchestrator import (
    run_backup, run_restore, backup_status, list_backups, cleanup_backup, write_summary,
)
from .types import JobResult
from .util import setup_logging, human_bytes

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NEEDS_OPERATOR = 2
EXIT_LOCKED = 3
EXIT_INTERRUPTED = 130

EXIT_BY_STATUS = {
    "ok": EXIT_OK,
    "dry_run": EXIT_OK,
    "inconsistent": EXIT_NEEDS_OPERATOR,
    "missing_shard": EXIT_NEEDS_OPERATOR,
    "corrupt_shard": EXIT_NEEDS_OPERATOR,
    "lock_busy": EXIT_LOCKED,
}


def exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, (InconsistentRemoteState, MissingShard, CorruptShard)):
        return EXIT_NEEDS_OPERATOR
    if isinstance(exc, LockBusy):
        return EXIT_LOCKED
    return EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="offsite",
        description="offsite: encrypted, resumable, sharded ZFS snapshot backups to object storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="\nRe-running an interrupted backup with the same arguments resumes it.",
    )
    ap.add_argument(
        "--config",
        default=None,
        help=f"path to offsite.toml (default: {DEFAULT_CONFIG_PATH}, $OFFSITE_CONFIG, "
             "~/.config/offsite/offsite.toml, /etc/offsite.toml)",
    )
    ap.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR (overrides config)")
    sub = ap.add_subparsers(dest="command", required=True)

    b = sub.add_parser("backup", help="upload (or resume uploading) a snapshot")
    b.add_argument("snapshot", help="dataset@snapshot to send (e.g., rust/containers@auto-20250716-104500)")
    b.add_argument("--since", help="earlier snapshot for an incremental send (zfs send -I)")
    b.add_argument("--provider", help="provider name from [remote.providers]")
    b.add_argument("--shard-size-mb", type=int, default=None, help="fixed shard size (default: planned)")
    b.add_argument("--prefix", help="override the backup prefix (default: full-<snap> / incr-<snap>)")
    b.add_argument("--dry-run", action="store_true", help="show the plan and resume point only")

    r = sub.add_parser("restore", help="reconstruct a backup into zfs recv or a file")
    r.add_argument("dataset", help="original dataset name (e.g., rust/containers)")
    r.add_argument("prefix", help="backup prefix (e.g., full-auto-20250716-104500)")
    r.add_argument("target", nargs="?", help="dataset to receive into (default: <dataset>-restored)")
    r.add_argument("--provider", help="provider name from [remote.providers], or 'auto' to search all")
    r.add_argument("--to-file", type=Path, help="write the raw stream to a file instead of zfs recv")
    r.add_argument("--dry-run", action="store_true", help="validate shards without downloading")
    r.add_argument("--force", action="store_true", help="overwrite an existing target dataset without asking")

    s = sub.add_parser("status", help="show shards and completion of one backup")
    s.add_argument("dataset")
    s.add_argument("prefix")
    s.add_argument("--provider", help="provider name, or 'auto' to search all")

    ls = sub.add_parser("list", help="list backups stored for a dataset")
    ls.add_argument("dataset")
    ls.add_argument("--provider")

    c = sub.add_parser("cleanup", help="delete every shard of one backup")
    c.add_argument("dataset")
    c.add_argument("prefix")
    c.add_argument("--provider")
    c.add_argument("--yes", action="store_true", help="do not ask for confirmation")
    return ap


def validate_arguments(args) -> None:
    """Validate CLI arguments and provide helpful error messages."""
    if getattr(args, "shard_size_mb", None) is not None and args.shard_size_mb < 1:
        print(f"❌ Error: --shard-size-mb must be a positive integer, got {args.shard_size_mb}")
        print(f"💡 Hint: Omit it to let offsite plan ~100 shards for the dataset")
        sys.exit(1)
    if args.command == "backup" and "@" not in args.snapshot:
        print(f"❌ Error: backup needs a snapshot, got {args.snapshot!r}")
        print(f"💡 Hint: Try {args.snapshot}@<snapshot-name>")
        sys.exit(1)
    dataset = getattr(args, "dataset", None)
    if dataset and "@" in dataset:
        print(f"❌ Error: dataset should not include a snapshot: {dataset}")
        print(f"💡 Hint: Try {dataset.split('@', 1)[0]}")
        sys.exit(1)


def print_result(result: JobResult) -> None:
    if result.status == "dry_run":
        return
    if result.operation == "backup":
        state = "complete" if result.complete else "incomplete"
        print(
            f"[{'ok' if result.status == 'ok' else 'warn'}] {result.backup_prefix}: "
            f"{result.shards_written} new shard(s), {result.shards_total} total, "
            f"{human_bytes(result.bytes_total)} stored, {state} ({result.duration_sec}s)"
        )
    else:
        print(
            f"[{'ok' if result.status == 'ok' else 'warn'}] restored {result.backup_prefix} -> "
            f"{result.extra.get('target')}: {result.shards_total} shard(s), "
            f"{human_bytes(result.bytes_total)} ({result.duration_sec}s)"
        )
    if result.error:
        print(f"❌ Error ({result.status}): {result.error}", file=sys.stderr)


def _confirm(names) -> bool:
    print(f"Found {len(names)} objects to delete:")
    for n in names:
        print(f"  - {n}")
    answer = input(f"Delete these {len(names)} objects? (y/N): ")
    return answer.strip().lower() in ("y", "yes")


def _confirm_overwrite(target: str) -> bool:
    print(f"⚠️  Target dataset {target} already exists; zfs recv -F will roll it back and replace it.")
    answer = input(f"Overwrite {target}? (y/N): ")
    return answer.strip().lower() in ("y", "yes")


def main(argv=None) -> int:
    try:
        args = build_parser().parse_args(argv)
        validate_arguments(args)

        try:
            cfg_path = find_config(args.config)
            cfg = load_config(cfg_path)
        except FileNotFoundError as e:
            print(f"❌ Error: {e}")
            print(f"💡 Hint: Create {DEFAULT_CONFIG_PATH} with a [remote.providers] table")
            return EXIT_FAILED
        except Exception as e:
            print(f"❌ Error: Invalid configuration file {cfg_path}: {e}")
            print(f"💡 Hint: Check TOML syntax with 'python3 -c \"import tomllib; tomllib.load(open(\"{cfg_path}\", \"rb\"))\"'")
            return EXIT_FAILED

        setup_logging(args.log_level or cfg.log_level)
        prepend_bin_to_path()
        log.debug("config loaded from %s", cfg_path)

        if args.command == "backup":
            result = run_backup(
                cfg, args.snapshot, provider=args.provider, since=args.since,
                shard_size_mb=args.shard_size_mb, prefix=args.prefix, dry=args.dry_run,
            )
        elif args.command == "restore":
            result = run_restore(
                cfg, args.dataset, args.prefix, target=args.target, provider=args.provider,
                to_file=args.to_file, dry=args.dry_run,
                confirm_overwrite=(lambda target: True) if args.force else _confirm_overwrite,
            )
        elif args.command == "status":
            shards, complete = backup_status(cfg, args.dataset, args.prefix, args.provider)
            if not shards:
                print(f"No shards found for {args.prefix}")
                return EXIT_FAILED
            print_shards(shards)
            print(f"{args.prefix}: {'complete' if complete else 'incomplete'}")
            return EXIT_OK
        elif args.command == "list":
            backups = list_backups(cfg, args.dataset, args.provider)
            if not backups:
                print(f"No backups found for {args.dataset}")
                return EXIT_OK
            print_backups(backups)
            return EXIT_OK
        else:
            deleted = cleanup_backup(
                cfg, args.dataset, args.prefix, args.provider,
                confirm=(lambda names: True) if args.yes else _confirm,
            )
            print(f"[ok] deleted {deleted} object(s)")
            return EXIT_OK

        if result.status != "dry_run":
            write_summary(cfg, result)
        print_result(result)
        return EXIT_BY_STATUS.get(result.status, EXIT_FAILED)

    except KeyboardInterrupt:
        print(f"\n\n⚡ Interrupted. Re-run the same command to resume.")
        return EXIT_INTERRUPTED
    except ConfigError as e:
        print(f"❌ Error: {e}")
        return EXIT_FAILED
    except OffsiteError as e:
        print(f"❌ Error: {e}")
        return exit_code_for(e)
    except Exception as e:
        print(f"❌ Unexpected error: {e}")
        print(f"💡 Hint: Run with --dry-run or --log-level DEBUG first to check configuration")
        log.debug("unexpected error", exc_info=True)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
