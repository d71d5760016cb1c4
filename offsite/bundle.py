"""
bundle.py
Support for running offsite as a self-contained directory (source checkout or frozen binary).

- bundle_root(): the directory holding the launcher, the adjacent offsite.toml and ./bin
- ./bin may carry pinned copies of age, rclone or zstd; they win over system binaries
"""
from __future__ import annotations
import os, sys
from pathlib import Path

ROOT_MARKERS = ("main.py", "offsite.toml", "pyproject.toml")


def _looks_like_root(path: Path) -> bool:
    return any((path / marker).exists() for marker in ROOT_MARKERS)


def bundle_root() -> Path:
    """
    Directory that contains the program.
    A frozen build lives next to sys.executable; a source run is found by walking up from
    this package until a root marker shows up.
    """
    if getattr(sys, "frozen", False) or getattr(sys, "_MEIPASS", None):
        return Path(sys.executable).resolve().parent

    package_dir = Path(__file__).resolve().parent
    for candidate in package_dir.parents:
        if _looks_like_root(candidate):
            return candidate
    return package_dir.parent

BUNDLE_DIR: Path = bundle_root()
BIN_DIR: Path = BUNDLE_DIR / "bin"
DEFAULT_CONFIG_PATH: str = str(BUNDLE_DIR / "offsite.toml")


def prepend_bin_to_path(bin_dir: Path | None = None) -> None:
    """Put bin_dir (default ./bin next to the program) first on PATH, once."""
    bin_dir = Path(bin_dir or BIN_DIR)
    if not bin_dir.is_dir():
        return
    entries = os.environ.get("PATH", "").split(os.pathsep)
    entries = [e for e in entries if e and e != str(bin_dir)]
    os.environ["PATH"] = os.pathsep.join([str(bin_dir)] + entries)
