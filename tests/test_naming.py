"""
Tests for shard and seal object names.
"""
import pytest
from offsite.naming import (
    shard_name, seal_name, shard_ext, parse_shard, parse_seal, claims_prefix, backup_prefixes,
)


def test_shard_name_format():
    assert shard_name("full-auto-20250716", 1, 0, "zfs.gz.age") == "full-auto-20250716-s001-b0000000000.zfs.gz.age"
    assert shard_name("p", 42, 10485760, "zfs.gz.age") == "p-s042-b0010485760.zfs.gz.age"


def test_shard_name_grows_past_minimum_width():
    name = shard_name("p", 1234, 123456789012, "x")
    assert name == "p-s1234-b123456789012.x"
    parsed = parse_shard(name, "p")
    assert parsed.index == 1234
    assert parsed.byte_offset == 123456789012


def test_shard_name_rejects_bad_values():
    with pytest.raises(ValueError):
        shard_name("p", 0, 0, "x")
    with pytest.raises(ValueError):
        shard_name("p", 1, -1, "x")


def test_parse_shard_with_prefix():
    parsed = parse_shard("full-snap-s003-b0020971520.zfs.gz.age", "full-snap")
    assert parsed.index == 3
    assert parsed.byte_offset == 20971520
    assert parsed.ext == "zfs.gz.age"


def test_parse_shard_ignores_other_prefixes_and_legacy_names():
    assert parse_shard("full-other-s001-b0000000000.zfs.gz.age", "full-snap") is None
    assert parse_shard("full-snap-s001.zfs.gz.age", "full-snap") is None
    assert parse_shard("full-snap-001.zfs.gz.age", "full-snap") is None


def test_parse_shard_without_prefix_recovers_it():
    parsed = parse_shard("incr-auto-20250717-104500-s002-b0000001000.zfs.zst.age")
    assert parsed.prefix == "incr-auto-20250717-104500"
    assert parsed.index == 2


def test_seal_name_round_trip():
    name = seal_name("p", 3, 2048, 512, True)
    assert name == "p-s003-b0000002048-n0000000512.last"
    sealed = parse_seal(name, "p")
    assert (sealed.index, sealed.byte_offset, sealed.plaintext_size, sealed.is_final) == (3, 2048, 512, True)
    assert parse_seal(seal_name("p", 1, 0, 1024, False), "p").is_final is False


def test_seal_never_parses_as_shard():
    assert parse_shard(seal_name("p", 1, 0, 1024, False), "p") is None
    assert parse_shard(seal_name("p", 1, 0, 1024, True)) is None


def test_shard_ext():
    assert shard_ext("zfs", "gzip") == "zfs.gz.age"
    assert shard_ext("zfs", "pigz") == "zfs.gz.age"
    assert shard_ext("zfs", "zstd") == "zfs.zst.age"
    assert shard_ext("zfs", "none") == "zfs.age"


def test_claims_prefix():
    assert claims_prefix("full-snap-s01-b0.zfs", "full-snap")
    assert claims_prefix("full-snap-s001-bXYZ.zfs", "full-snap")
    assert not claims_prefix("full-snapshot-s001-b0000000000.zfs", "full-snap")
    assert not claims_prefix("full-snap-summary.txt", "full-snap")


def test_backup_prefixes():
    names = [
        "full-a-s001-b0000000000.zfs.gz.age",
        "full-a-s002-b0000001000.zfs.gz.age",
        "full-a-s001-b0000000000-n0000001000.size",
        "incr-b-s001-b0000000000.zfs.gz.age",
        "README",
    ]
    assert backup_prefixes(names) == ["full-a", "incr-b"]
