"""
Tests for job orchestration: backup, restore, status, list and cleanup.
"""
import json
import pytest
from offsite import orchestrator
from offsite.errors import (
    CorruptShard, InconsistentRemoteState, LockBusy, MissingShard, UploadFailure,
)
from offsite.lock import DatasetLock
from offsite.orchestrator import (
    run_backup, run_restore, backup_status, list_backups, cleanup_backup, cleanup_targets,
    backup_prefix_for, split_snapshot, status_for, write_summary,
)
from offsite.planner import MiB
from offsite.remote import LocalRemote
from offsite.streams import FileSource, ProcessSink

DATASET = "tank/data"


@pytest.fixture
def stream(make_stream):
    return make_stream(5 * MiB // 2)


def backup(cfg, path, snapshot="tank/data@snap1", **kw):
    kw.setdefault("shard_size_mb", 1)
    return run_backup(
        cfg, snapshot,
        open_source=lambda ident, since: FileSource(path),
        measure_size=lambda dataset: None,
        **kw,
    )


def test_split_snapshot_and_prefix(sample_config):
    assert split_snapshot("rust/containers@auto-1") == ("rust/containers", "auto-1")
    assert backup_prefix_for(sample_config, "tank/data@snap2", None) == "full-snap2"
    assert backup_prefix_for(sample_config, "tank/data@snap2", "snap1") == "incr-snap2"


def test_status_for():
    assert status_for(LockBusy("x")) == "lock_busy"
    assert status_for(MissingShard(3)) == "missing_shard"
    assert status_for(CorruptShard(1, 10, 9)) == "corrupt_shard"
    assert status_for(ValueError("x")) == "exception"


def test_backup_then_restore(sample_config, fake_age, remote_dir, stream, tmp_path):
    result = backup(sample_config, stream)
    assert result.status == "ok", result.error
    assert result.backup_prefix == "full-snap1"
    assert result.destination == str(remote_dir / "tank_data")
    assert result.shards_written == 3
    assert result.shards_total == 3
    assert result.bytes_total == 5 * MiB // 2
    assert result.complete

    out = tmp_path / "restored.zfs"
    restored = run_restore(sample_config, DATASET, "full-snap1", to_file=out)
    assert restored.status == "ok", restored.error
    assert restored.bytes_total == 5 * MiB // 2
    assert restored.shards_total == 3
    assert out.read_bytes() == stream.read_bytes()


def test_backup_resumes_after_upload_failure(sample_config, fake_age, stream, monkeypatch):
    real_put = LocalRemote.put

    def failing_put(self, name, local_path):
        if "-s002-" in name:
            raise UploadFailure("simulated outage")
        return real_put(self, name, local_path)

    monkeypatch.setattr(LocalRemote, "put", failing_put)
    first = backup(sample_config, stream)
    assert first.status == "upload_failed"
    assert "simulated outage" in first.error

    monkeypatch.setattr(LocalRemote, "put", real_put)
    second = backup(sample_config, stream)
    assert second.status == "ok"
    assert second.shards_written == 2
    assert second.complete

    third = backup(sample_config, stream)
    assert third.shards_written == 0
    assert third.complete


def test_incremental_backup_prefix(sample_config, fake_age, stream):
    result = backup(sample_config, stream, snapshot="tank/data@snap2", since="snap1")
    assert result.backup_prefix == "incr-snap2"
    assert [b.prefix for b in list_backups(sample_config, DATASET)] == ["incr-snap2"]


def test_dry_run_uploads_nothing(sample_config, fake_age, remote_dir, stream, capsys):
    result = backup(sample_config, stream, dry=True)
    assert result.status == "dry_run"
    assert not remote_dir.exists()
    assert "next shard 1 at byte 0" in capsys.readouterr().out


def test_lock_busy(sample_config, fake_age, stream):
    with DatasetLock(sample_config.lock_dir, DATASET):
        result = backup(sample_config, stream)
    assert result.status == "lock_busy"


def test_unknown_provider(sample_config, stream):
    result = backup(sample_config, stream, provider="wasabi")
    assert result.status == "config_error"
    assert "wasabi" in result.error


def test_restore_missing_shard(sample_config, fake_age, remote_dir, stream, tmp_path):
    backup(sample_config, stream)
    store = LocalRemote(remote_dir / "tank_data")
    for name in list(store.list("full-snap1")):
        if "-s002-" in name:
            store.delete(name)
    out = tmp_path / "out.zfs"
    result = run_restore(sample_config, DATASET, "full-snap1", to_file=out)
    assert result.status == "missing_shard"
    assert "2" in result.error
    assert not out.exists()


def test_restore_dry_run(sample_config, fake_age, stream, capsys):
    backup(sample_config, stream)
    result = run_restore(sample_config, DATASET, "full-snap1", dry=True)
    assert result.status == "dry_run"
    assert result.shards_total == 3
    assert "zfs recv -F tank/data-restored" in capsys.readouterr().out


def test_status_and_list(sample_config, fake_age, stream):
    backup(sample_config, stream)
    shards, complete = backup_status(sample_config, DATASET, "full-snap1")
    assert [s.index for s in shards] == [1, 2, 3]
    assert complete
    [summary] = list_backups(sample_config, DATASET)
    assert summary.prefix == "full-snap1"
    assert summary.shards == 3
    assert summary.plaintext_bytes == 5 * MiB // 2
    assert summary.status == "complete"


def test_status_reports_gap(sample_config, fake_age, remote_dir, stream):
    backup(sample_config, stream)
    store = LocalRemote(remote_dir / "tank_data")
    for name in list(store.list("full-snap1")):
        if "-s002-" in name:
            store.delete(name)
    with pytest.raises(InconsistentRemoteState):
        backup_status(sample_config, DATASET, "full-snap1")
    assert list_backups(sample_config, DATASET)[0].status == "inconsistent"


def test_cleanup(sample_config, fake_age, remote_dir, stream):
    backup(sample_config, stream)
    backup(sample_config, stream, snapshot="tank/data@snap2")
    store = LocalRemote(remote_dir / "tank_data")

    targets = cleanup_targets(store, "full-snap1")
    assert len(targets) == 6
    assert targets[0].endswith(".size")

    assert cleanup_backup(sample_config, DATASET, "full-snap1", confirm=lambda names: False) == 0
    assert len(store.list("full-snap1")) == 6

    assert cleanup_backup(sample_config, DATASET, "full-snap1") == 6
    assert store.list("full-snap1") == {}
    assert len(store.list("full-snap2")) == 6


def test_write_summary(sample_config, fake_age, stream):
    result = backup(sample_config, stream)
    path = write_summary(sample_config, result)
    data = json.loads(path.read_text())
    assert path.name.startswith("run-backup-")
    assert data["status"] == "ok"
    assert data["shards_total"] == 3
    assert data["extra"]["shard_size"] == MiB
    assert "finished_utc" in data


def test_missing_tools_is_config_error(sample_config, stream, monkeypatch):
    monkeypatch.setattr(orchestrator, "missing_tools", lambda names: list(names))
    result = backup(sample_config, stream)
    assert result.status == "config_error"
    assert "age" in result.error


def test_restore_of_interrupted_backup_fails(sample_config, fake_age, stream, monkeypatch, tmp_path):
    real_put = LocalRemote.put

    def failing_put(self, name, local_path):
        if "-s003-" in name:
            raise UploadFailure("simulated outage")
        return real_put(self, name, local_path)

    monkeypatch.setattr(LocalRemote, "put", failing_put)
    assert backup(sample_config, stream).status == "upload_failed"
    monkeypatch.setattr(LocalRemote, "put", real_put)

    out = tmp_path / "out.zfs"
    result = run_restore(sample_config, DATASET, "full-snap1", to_file=out)
    assert result.status == "missing_shard"
    assert "shard 3" in result.error
    assert not out.exists()


def test_restore_refuses_existing_target(sample_config, fake_age, stream, monkeypatch):
    backup(sample_config, stream)
    monkeypatch.setattr(orchestrator, "missing_tools", lambda names: [])
    asked = []
    result = run_restore(
        sample_config, DATASET, "full-snap1", target="tank/live",
        confirm_overwrite=lambda target: asked.append(target) or False,
        exists_check=lambda target: True,
    )
    assert result.status == "target_exists"
    assert asked == ["tank/live"]


def test_restore_overwrites_confirmed_target(sample_config, fake_age, stream, monkeypatch, tmp_path):
    backup(sample_config, stream)
    received = tmp_path / "received.zfs"
    monkeypatch.setattr(orchestrator, "missing_tools", lambda names: [])
    monkeypatch.setattr(
        orchestrator, "open_import", lambda target: ProcessSink(["sh", "-c", f"cat > '{received}'"])
    )
    result = run_restore(
        sample_config, DATASET, "full-snap1", target="tank/live",
        confirm_overwrite=lambda target: True,
        exists_check=lambda target: True,
    )
    assert result.status == "ok", result.error
    assert received.read_bytes() == stream.read_bytes()


def test_restore_to_file_skips_target_check(sample_config, fake_age, stream, tmp_path):
    backup(sample_config, stream)

    def lookup(target):
        raise AssertionError("no dataset lookup for a file restore")

    result = run_restore(sample_config, DATASET, "full-snap1", to_file=tmp_path / "o.zfs", exists_check=lookup)
    assert result.status == "ok", result.error


def test_auto_provider_finds_backup(sample_config, fake_age, stream, tmp_path):
    sample_config.providers = {"local": str(tmp_path / "empty"), "second": str(tmp_path / "second")}
    assert backup(sample_config, stream, provider="second").status == "ok"

    out = tmp_path / "auto.zfs"
    result = run_restore(sample_config, DATASET, "full-snap1", provider="auto", to_file=out)
    assert result.status == "ok", result.error
    assert result.destination == str(tmp_path / "second" / "tank_data")
    assert out.read_bytes() == stream.read_bytes()

    shards, complete = backup_status(sample_config, DATASET, "full-snap1", "auto")
    assert len(shards) == 3
    assert complete


def test_auto_provider_without_backup(sample_config, fake_age, stream):
    sample_config.providers = {"local": sample_config.providers["local"]}
    result = run_restore(sample_config, DATASET, "full-missing", provider="auto", dry=True)
    assert result.status == "missing_shard"
