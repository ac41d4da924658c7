from typing import Dict

from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.models import Shard


class InMemoryCheckpointStore(CheckpointStore):
    """Memory-only checkpoint store (for testing/development)."""

    def __init__(self) -> None:
        # Format: stream_name -> shard_id -> sequence_number
        self._store: Dict[str, Dict[str, str]] = {}

    async def restore(self, stream_name: str) -> Dict[str, Shard]:
        return {
            shard_id: Shard(stream_name=stream_name, shard_id=shard_id, sequence_number=seq)
            for shard_id, seq in self._store.get(stream_name, {}).items()
        }

    async def modify(self, shard: Shard) -> None:
        self._store.setdefault(shard.stream_name, {})[shard.shard_id] = shard.sequence_number
