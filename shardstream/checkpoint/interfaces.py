from abc import ABC, abstractmethod
from typing import Dict

from shardstream.models import Shard


class CheckpointStore(ABC):
    """
    Abstract interface for durable shard cursors.

    Entries are keyed by (stream_name, shard_id). Writes overwrite, so the
    last write for a shard wins. Backing I/O failures are raised as
    CheckpointStoreError; stores never retry on their own.
    """

    @abstractmethod
    async def restore(self, stream_name: str) -> Dict[str, Shard]:
        """Return the persisted shards of a stream, or an empty mapping if none exist."""
        pass

    @abstractmethod
    async def modify(self, shard: Shard) -> None:
        """Persist the shard's current cursor."""
        pass

    async def close(self) -> None:
        pass
