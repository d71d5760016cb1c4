"""
offsite package
- Encrypted, sharded, resumable transfer of ZFS snapshot streams to object storage, and restore.
"""
__all__ = ["cli", "config", "orchestrator", "planner", "naming", "streams", "archiver", "remote",
           "inventory", "chunker", "restorer", "lock", "errors", "util", "types", "bundle"]
__version__ = "0.3.0"
