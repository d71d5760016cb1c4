"""
remote.py
Remote object storage behind a small capability: put / list / get / delete.

- RcloneRemote: any rclone remote (Backblaze B2, Scaleway, S3...). `rclone copyto` to an
  object store only makes the object visible once the upload completed.
- LocalRemote: a directory; uploads land in a hidden partial file and are renamed into place.

Provider names from the config are resolved to a store once per job (resolve_store);
provider "auto" picks the first provider that holds the backup (restore and status only).
"""

from __future__ import annotations
import logging, os, shutil
from pathlib import Path
from typing import Dict
from .types import Config
from .errors import ConfigError, UploadFailure, DownloadFailure, MissingShard
from .naming import parse_shard
from .util import run, tail

log = logging.getLogger(__name__)

AUTO_PROVIDER = "auto"


class RemoteStore:
    location = ""

    def put(self, name: str, local_path: Path) -> None:
        raise NotImplementedError

    def list(self, prefix: str = "") -> Dict[str, int]:
        """Object name -> stored size, for completely stored objects only."""
        raise NotImplementedError

    def get(self, name: str, local_path: Path) -> None:
        raise NotImplementedError

    def delete(self, name: str) -> None:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.location!r})"


class RcloneRemote(RemoteStore):
    # rclone lsf exit status for "directory not found"
    RC_DIR_NOT_FOUND = 3

    def __init__(self, location: str, flags: list[str] | None = None):
        self.location = location.rstrip("/")
        self.flags = list(flags or [])

    def _path(self, name: str) -> str:
        return f"{self.location}/{name}"

    def put(self, name: str, local_path: Path) -> None:
        rc, err = run(["rclone", "copyto", *self.flags, str(local_path), self._path(name)])
        if rc != 0:
            raise UploadFailure(f"rclone copyto {name} failed (rc={rc}): {tail(err)}")

    def list(self, prefix: str = "") -> Dict[str, int]:
        cmd = ["rclone", "lsf", *self.flags, "--files-only", "--format", "sp", "--separator", "\t"]
        rc, out = run(cmd + [self.location + "/"], capture=True)
        if rc == self.RC_DIR_NOT_FOUND:
            return {}
        if rc != 0:
            raise DownloadFailure(f"rclone lsf {self.location} failed (rc={rc}): {tail(out)}")
        found: Dict[str, int] = {}
        for line in out.splitlines():
            if "\t" not in line:
                continue
            size, name = line.split("\t", 1)
            if name.startswith(prefix):
                try:
                    found[name] = int(size)
                except ValueError:
                    found[name] = -1
        return found

    def get(self, name: str, local_path: Path) -> None:
        rc, err = run(["rclone", "copyto", *self.flags, self._path(name), str(local_path)])
        if rc != 0:
            raise DownloadFailure(f"rclone copyto {name} failed (rc={rc}): {tail(err)}")

    def delete(self, name: str) -> None:
        rc, err = run(["rclone", "deletefile", *self.flags, self._path(name)])
        if rc != 0:
            raise UploadFailure(f"rclone deletefile {name} failed (rc={rc}): {tail(err)}")


class LocalRemote(RemoteStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.location = str(self.root)

    def put(self, name: str, local_path: Path) -> None:
        tmp = self.root / f".{name}.partial"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, tmp)
            os.replace(tmp, self.root / name)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise UploadFailure(f"store {name} in {self.root} failed: {e}") from e

    def list(self, prefix: str = "") -> Dict[str, int]:
        if not self.root.is_dir():
            return {}
        found: Dict[str, int] = {}
        try:
            with os.scandir(self.root) as it:
                for entry in it:
                    if entry.name.startswith(".") or not entry.is_file():
                        continue
                    if entry.name.startswith(prefix):
                        found[entry.name] = entry.stat().st_size
        except OSError as e:
            raise DownloadFailure(f"listing {self.root} failed: {e}") from e
        return found

    def get(self, name: str, local_path: Path) -> None:
        try:
            shutil.copyfile(self.root / name, local_path)
        except OSError as e:
            raise DownloadFailure(f"fetch {name} from {self.root} failed: {e}") from e

    def delete(self, name: str) -> None:
        try:
            (self.root / name).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise UploadFailure(f"delete {name} from {self.root} failed: {e}") from e


def dataset_path(dataset: str) -> str:
    """rust/containers -> rust_containers (one remote directory per dataset)."""
    return dataset.split("@", 1)[0].replace("/", "_")


def store_for_location(location: str, flags: list[str] | None = None) -> RemoteStore:
    if location.startswith("file://"):
        return LocalRemote(Path(location[len("file://"):]))
    if location.startswith("/"):
        return LocalRemote(Path(location))
    return RcloneRemote(location, flags)


def provider_location(cfg: Config, provider: str | None) -> tuple[str, str]:
    name = provider or cfg.default_provider
    if name not in cfg.providers:
        valid = ", ".join(sorted(cfg.providers)) or "(none configured)"
        raise ConfigError(f"Unknown provider {name!r}. Valid providers: {valid}")
    return name, cfg.providers[name]


def resolve_store(cfg: Config, provider: str | None, dataset: str) -> RemoteStore:
    """Store rooted at <provider root>/<dataset path>."""
    name, root = provider_location(cfg, provider)
    location = f"{root.rstrip('/')}/{dataset_path(dataset)}"
    store = store_for_location(location, cfg.rclone_flags)
    log.debug("provider %s -> %r", name, store)
    return store


def uses_rclone(store: RemoteStore) -> bool:
    return isinstance(store, RcloneRemote)


def locate_store(cfg: Config, dataset: str, prefix: str) -> RemoteStore:
    """
    First provider (default first, then table order) whose listing holds shard 1 of prefix.
    Providers that cannot be listed are skipped with a warning.
    """
    names = [n for n in [cfg.default_provider] + list(cfg.providers) if n in cfg.providers]
    for name in dict.fromkeys(names):
        store = resolve_store(cfg, name, dataset)
        try:
            listing = store.list(prefix)
        except DownloadFailure as e:
            log.warning("provider %s skipped: %s", name, e)
            continue
        parsed = [parse_shard(n, prefix) for n in listing]
        if any(p and p.index == 1 for p in parsed):
            log.info("found %s in provider %s", prefix, name)
            return store
        log.debug("provider %s has no %s", name, prefix)
    raise MissingShard(1, prefix)


def store_for_job(cfg: Config, provider: str | None, dataset: str, prefix: str) -> RemoteStore:
    """resolve_store, with provider 'auto' searching every configured provider."""
    if provider == AUTO_PROVIDER:
        return locate_store(cfg, dataset, prefix)
    return resolve_store(cfg, provider, dataset)
