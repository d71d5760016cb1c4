"""
archiver.py
Shard codec built from external tools:
  encode:  <compressor> < plain | age -r <recipient> > cipher
  decode:  age -d -i <identity> < cipher | <decompressor> > plain
Compression always runs before encryption; ciphertext does not compress.
Commands run through bash with pipefail, so a failure in any stage fails the shard.
"""

from __future__ import annotations
import logging, os, shlex
from pathlib import Path
from .types import Config
from .errors import ConfigError, ShardTransformFailure
from .naming import shard_ext
from .util import run, tail

log = logging.getLogger(__name__)


def compressor_cmd(cfg: Config, threads: int) -> str:
    lvl = str(cfg.compression_level)
    if cfg.compressor == "gzip":
        return f"gzip -c -{lvl}"
    if cfg.compressor == "pigz":
        return f"pigz -c -p {threads} -{lvl}"
    if cfg.compressor == "zstd":
        return f"zstd -q -c -T{threads} -{lvl}"
    if cfg.compressor == "none":
        return "cat"
    raise ValueError("Unsupported compressor")


def decompressor_cmd(cfg: Config) -> str:
    if cfg.compressor in ("gzip", "pigz"):
        return f"{cfg.compressor} -dc"
    if cfg.compressor == "zstd":
        return "zstd -q -dc"
    if cfg.compressor == "none":
        return "cat"
    raise ValueError("Unsupported compressor")


def required_tools(cfg: Config) -> list[str]:
    tools = ["age"]
    if cfg.compressor != "none":
        tools.append(cfg.compressor)
    return tools


def read_recipient(path: Path) -> str:
    """age public key with surrounding whitespace and newlines removed."""
    try:
        key = path.read_text().replace("\n", "").strip()
    except OSError as e:
        raise ConfigError(f"Age public key not found at {path}: {e}")
    if not key:
        raise ConfigError(f"Age public key file {path} is empty")
    return key


class ShardCodec:
    """Turns one plaintext shard file into one ciphertext file and back."""

    def __init__(self, cfg: Config, threads: int | None = None):
        self.cfg = cfg
        self.threads = threads or max(1, (os.cpu_count() or 2) - 1)
        self.ext = shard_ext(cfg.stream_ext, cfg.compressor)
        self._recipient = None

    @property
    def recipient(self) -> str:
        if self._recipient is None:
            self._recipient = read_recipient(self.cfg.age_public_key_file)
        return self._recipient

    def encode_cmd(self, plain: Path, cipher: Path) -> str:
        return (
            f"{compressor_cmd(self.cfg, self.threads)} < {shlex.quote(str(plain))} "
            f"| age -r {shlex.quote(self.recipient)} > {shlex.quote(str(cipher))}"
        )

    def decode_cmd(self, cipher: Path, plain: Path) -> str:
        identity = self.cfg.age_private_key_file
        return (
            f"age -d -i {shlex.quote(str(identity))} < {shlex.quote(str(cipher))} "
            f"| {decompressor_cmd(self.cfg)} > {shlex.quote(str(plain))}"
        )

    def encode(self, plain: Path, cipher: Path) -> int:
        """Compress then encrypt; returns the ciphertext size."""
        rc, err = run(self.encode_cmd(plain, cipher))
        if rc != 0 or not cipher.exists():
            cipher.unlink(missing_ok=True)
            raise ShardTransformFailure(f"compress/encrypt of {plain.name} failed (rc={rc}): {tail(err)}")
        return cipher.stat().st_size

    def decode(self, cipher: Path, plain: Path) -> int:
        """Decrypt then decompress; returns the plaintext size."""
        if not self.cfg.age_private_key_file.exists():
            raise ConfigError(f"Age private key not found at {self.cfg.age_private_key_file}")
        rc, err = run(self.decode_cmd(cipher, plain))
        if rc != 0 or not plain.exists():
            plain.unlink(missing_ok=True)
            raise ShardTransformFailure(f"decrypt/decompress of {cipher.name} failed (rc={rc}): {tail(err)}")
        return plain.stat().st_size
