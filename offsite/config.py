"""
config.py
Load and validate configuration from TOML (Python 3.11+ tomllib).
Search order:
  1) explicit --config path
  2) adjacent DEFAULT_CONFIG_PATH (bundle root / 'offsite.toml')
  3) $OFFSITE_CONFIG
  4) ~/.config/offsite/offsite.toml
  5) /etc/offsite.toml
"""

from __future__ import annotations
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Any, Dict
from .types import Config
from .bundle import DEFAULT_CONFIG_PATH
from .errors import ConfigError

COMPRESSORS = ("gzip", "pigz", "zstd", "none")


def _gv(d: Dict[str, Any], path: list[str], default=None):
    cur = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _load_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _expand(p) -> Path:
    return Path(os.path.expanduser(str(p)))


def find_config(path_arg: str | None) -> Path:
    """Pick the best config path based on CLI arg and availability."""
    if path_arg:
        p = Path(path_arg)
        if not p.exists():
            raise FileNotFoundError(f"Specified config file does not exist: {path_arg}")
        return p

    candidates = [Path(DEFAULT_CONFIG_PATH)]
    env = os.environ.get("OFFSITE_CONFIG")
    if env:
        candidates.append(_expand(env))
    candidates.append(_expand("~/.config/offsite/offsite.toml"))
    for p in candidates:
        if p.exists():
            return p
    return Path("/etc/offsite.toml")


def load_config(path: Path) -> Config:
    cfg = _load_toml(path)

    def gv(keys, default=None):
        return _gv(cfg, keys, default)

    providers = gv(["remote", "providers"], {}) or {}
    if not isinstance(providers, dict):
        raise ConfigError("[remote.providers] must be a table of name = \"remote:path\"")

    compressor = gv(["archive", "compressor"], "gzip")
    if compressor not in COMPRESSORS:
        raise ConfigError(
            f"Unsupported compressor {compressor!r}; choose one of {', '.join(COMPRESSORS)}"
        )

    shard_size_mb = int(gv(["archive", "shard_size_mb"], 0))
    if shard_size_mb < 0:
        raise ConfigError("archive.shard_size_mb must be 0 (automatic) or positive")

    spool = gv(["archive", "spool_dir"])
    lock_dir = gv(["runtime", "lock_dir"])
    if lock_dir is None:
        lock_dir = "/var/lock/offsite" if os.access("/var/lock", os.W_OK) else os.path.join(
            tempfile.gettempdir(), "offsite-locks"
        )

    return Config(
        default_provider=gv(["remote", "default_provider"], "backblaze"),
        providers={str(k): str(v) for k, v in providers.items()},
        rclone_flags=list(gv(["remote", "rclone_flags"], [])),
        age_public_key_file=_expand(gv(["crypto", "age_public_key_file"], "~/.config/age/zfs-backup.pub")),
        age_private_key_file=_expand(gv(["crypto", "age_private_key_file"], "~/.config/age/zfs-backup.txt")),
        compressor=compressor,
        compression_level=int(gv(["archive", "compression_level"], 6)),
        shard_size_mb=shard_size_mb,
        spool_dir=_expand(spool) if spool else None,
        stream_ext=gv(["archive", "stream_ext"], "zfs"),
        full_label=gv(["naming", "full_label"], "full"),
        incr_label=gv(["naming", "incr_label"], "incr"),
        log_level=gv(["runtime", "log_level"], "INFO"),
        lock_dir=_expand(lock_dir),
        run_summary_dir=_expand(gv(["runtime", "run_summary_dir"], "~/.local/state/offsite")),
    )
