"""
Pytest configuration and shared fixtures.
"""
import os
import random
import stat
import pytest
import tempfile
from pathlib import Path
from offsite.bundle import prepend_bin_to_path
from offsite.types import Config

KiB = 1024

# Stand-in for age: "encrypts" by prefixing a marker, "decrypts" by stripping it.
# Decryption fails when the identity file does not exist, like the real tool.
FAKE_AGE = """#!/bin/sh
mode=enc
identity=""
while [ $# -gt 0 ]; do
  case "$1" in
    -d) mode=dec ;;
    -r) shift ;;
    -i) shift; identity="$1" ;;
  esac
  shift
done
if [ "$mode" = enc ]; then
  printf 'AGEFAKE1'
  exec cat
fi
[ -f "$identity" ] || { echo "age: no identity file" >&2; exit 1; }
exec tail -c +9
"""


@pytest.fixture
def fake_age(tmp_path, monkeypatch):
    """Put a fake `age` first on PATH through the bundled ./bin mechanism."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    age = bin_dir / "age"
    age.write_text(FAKE_AGE)
    age.chmod(age.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", os.environ.get("PATH", ""))
    prepend_bin_to_path(bin_dir)
    return age


@pytest.fixture
def remote_dir(tmp_path):
    return tmp_path / "remote"


@pytest.fixture
def sample_config(tmp_path, remote_dir):
    """Create a sample configuration object for testing."""
    keys = tmp_path / "keys"
    keys.mkdir()
    pub = keys / "backup.pub"
    pub.write_text("age1testrecipientkey\n")
    priv = keys / "backup.txt"
    priv.write_text("AGE-SECRET-KEY-TEST\n")
    return Config(
        default_provider="local",
        providers={"local": str(remote_dir), "backblaze": "cloudremote:bucket/zfs-backups"},
        rclone_flags=[],
        age_public_key_file=pub,
        age_private_key_file=priv,
        compressor="gzip",
        compression_level=1,
        shard_size_mb=0,
        spool_dir=tmp_path / "spool",
        stream_ext="zfs",
        full_label="full",
        incr_label="incr",
        log_level="DEBUG",
        lock_dir=tmp_path / "locks",
        run_summary_dir=tmp_path / "runs",
    )


@pytest.fixture
def make_stream(tmp_path):
    """Write a deterministic pseudo-random file of the given size and return its path."""
    def _make(size: int, seed: int = 7, name: str = "stream.zfs") -> Path:
        path = tmp_path / name
        path.write_bytes(random.Random(seed).randbytes(size))
        return path
    return _make


@pytest.fixture
def temp_config_file():
    """Create a temporary configuration file for testing."""
    toml_content = """
version = 1

[remote]
default_provider = "backblaze"
rclone_flags = ["--fast-list"]

[remote.providers]
backblaze = "cloudremote:zfs-buckets/zfs-backups"
scaleway = "scaleway:zfs-buckets-eu/zfs-backups"

[crypto]
age_public_key_file = "/tmp/offsite-test/zfs-backup.pub"
age_private_key_file = "/tmp/offsite-test/zfs-backup.txt"

[archive]
compressor = "zstd"
compression_level = 3
shard_size_mb = 64
spool_dir = "/tmp/offsite-test-spool"

[runtime]
log_level = "DEBUG"
lock_dir = "/tmp/offsite-test-locks"
run_summary_dir = "/tmp/offsite-test-logs"
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.toml', delete=False) as f:
        f.write(toml_content)
        f.flush()
        yield Path(f.name)

    Path(f.name).unlink(missing_ok=True)
