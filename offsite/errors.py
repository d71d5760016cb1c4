"""
errors.py
Failure taxonomy for the backup and restore pipelines.

Every error leaves remote state so that re-running the same command makes correct progress;
nothing here is retried internally.
"""

from __future__ import annotations


class OffsiteError(Exception):
    """Base class for all pipeline failures."""


class ConfigError(OffsiteError):
    pass


class LockBusy(OffsiteError):
    pass


class SourceUnavailable(OffsiteError):
    """The export stream could not be opened or read."""


class SinkFailure(OffsiteError):
    """The import primitive rejected or failed to consume the stream."""


class InconsistentRemoteState(OffsiteError):
    """Gap, duplicate or malformed shard names; needs an operator to look at the remote."""


class ShardTransformFailure(OffsiteError):
    pass


class UploadFailure(OffsiteError):
    pass


class DownloadFailure(OffsiteError):
    pass


class CorruptShard(OffsiteError):
    def __init__(self, index: int, expected: int, actual: int):
        super().__init__(
            f"shard {index} decoded to {actual} bytes, expected {expected}"
        )
        self.index = index
        self.expected = expected
        self.actual = actual


class MissingShard(OffsiteError):
    def __init__(self, index: int, prefix: str = ""):
        where = f" of {prefix}" if prefix else ""
        super().__init__(f"shard {index}{where} is missing")
        self.index = index


class TargetExists(OffsiteError):
    """The restore target already exists and overwriting it was not confirmed."""
