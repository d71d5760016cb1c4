"""
util.py
Cross-cutting utilities:
- Process execution (list-of-args or bash -c string)
- Logging setup with the bracketed [info]/[warning] tags
- Tool checks with install hints
- Small helpers: clamp, JSON writing, byte formatting
"""

from __future__ import annotations
import json, logging, shlex, shutil, subprocess, sys
from pathlib import Path

log = logging.getLogger(__name__)


def run(cmd, capture=False):
    """
    Execute a command.
    - If cmd is a string, run via /bin/bash -c with pipefail so a failing stage fails the pipe.
    - Returns (rc, output_str); with capture, output holds stdout+stderr.
    """
    if isinstance(cmd, str):
        cmd_list = ["/bin/bash", "-c", "set -o pipefail; " + cmd]
    else:
        cmd_list = list(cmd)
    shown = cmd if isinstance(cmd, str) else " ".join(shlex.quote(c) for c in cmd_list)
    log.debug("exec: %s", shown)
    try:
        if capture:
            out = subprocess.check_output(cmd_list, stderr=subprocess.STDOUT)
            return 0, out.decode("utf-8", "replace")
        else:
            proc = subprocess.run(cmd_list, stderr=subprocess.PIPE)
            return proc.returncode, proc.stderr.decode("utf-8", "replace")
    except subprocess.CalledProcessError as e:
        return e.returncode, e.output.decode("utf-8", "replace") if e.output else ""
    except FileNotFoundError as e:
        return 127, str(e)


def tail(text: str, lines: int = 5) -> str:
    """Last few non-empty lines of a command's output, for error messages."""
    kept = [ln for ln in text.strip().splitlines() if ln.strip()]
    return " | ".join(kept[-lines:])


class _TagFormatter(logging.Formatter):
    def format(self, record):
        record.tag = record.levelname.lower()
        return super().format(record)


def setup_logging(level: str = "INFO") -> None:
    """Install one stderr handler rendering '<time> [info] message'."""
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_offsite", False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler._offsite = True
    handler.setFormatter(
        _TagFormatter("%(asctime)s [%(tag)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def which_quiet(name: str) -> bool:
    """Check if command exists silently."""
    return bool(shutil.which(name))


TOOL_HINTS = {
    "zfs": ("ZFS send/receive", "sudo apt install zfsutils-linux"),
    "age": ("shard encryption", "sudo apt install age"),
    "rclone": ("cloud object storage", "sudo apt install rclone"),
    "gzip": ("gzip compression", "sudo apt install gzip"),
    "pigz": ("parallel gzip compression", "sudo apt install pigz"),
    "zstd": ("zstd compression", "sudo apt install zstd"),
}


def missing_tools(names) -> list[str]:
    """Return the subset of names not on PATH and print an install hint for each."""
    missing = [n for n in names if not which_quiet(n)]
    if missing:
        print("[info] Required tools missing:")
        for tool in missing:
            desc, hint = TOOL_HINTS.get(tool, ("", ""))
            if hint:
                print(f"  • {tool} ({desc}): {hint}")
            else:
                print(f"  • {tool}: manual installation required")
    return missing


def clamp(lo, x, hi):
    return max(lo, min(x, hi))


def ensure_dir(p: Path):
    """Create directory with better error reporting."""
    try:
        p.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        raise PermissionError(f"Cannot create directory {p} - insufficient permissions")
    except OSError as e:
        raise OSError(f"Cannot create directory {p}: {e}")


def write_json(path: Path, obj):
    ensure_dir(path.parent)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, sort_keys=True))
    tmp.replace(path)


def human_bytes(n: int) -> str:
    """1536 -> '1.5K', IEC units like numfmt --to=iec."""
    size = float(n)
    for unit in ("", "K", "M", "G", "T"):
        if abs(size) < 1024 or unit == "T":
            return f"{int(size)}{unit}" if unit == "" else f"{size:.1f}{unit}"
        size /= 1024
    return str(n)
