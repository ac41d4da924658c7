from typing import Dict, Optional

import valkey.asyncio as valkey
from valkey.exceptions import ValkeyError

from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.errors import CheckpointStoreError
from shardstream.models import Shard


class ValkeyCheckpointStore(CheckpointStore):
    """
    Durable checkpoint store backed by Valkey.
    Structure: HASH {prefix}:{stream_name} -> {shard_id} -> {sequence_number}
    """
    def __init__(self,
                 host: str = "localhost",
                 port: int = 6379,
                 password: Optional[str] = None,
                 prefix: str = "shardstream:checkpoints",
                 client: Optional[valkey.Valkey] = None):
        self.valkey = client or valkey.Valkey(host=host, port=port, password=password, decode_responses=True)
        self.prefix = prefix

    def _key(self, stream_name: str) -> str:
        return f"{self.prefix}:{stream_name}"

    async def restore(self, stream_name: str) -> Dict[str, Shard]:
        try:
            entries = await self.valkey.hgetall(self._key(stream_name))
        except ValkeyError as e:
            raise CheckpointStoreError(f"Failed to restore {stream_name}: {e}") from e

        return {
            shard_id: Shard(stream_name=stream_name, shard_id=shard_id, sequence_number=seq)
            for shard_id, seq in (entries or {}).items()
        }

    async def modify(self, shard: Shard) -> None:
        try:
            await self.valkey.hset(self._key(shard.stream_name), shard.shard_id, shard.sequence_number)
        except ValkeyError as e:
            raise CheckpointStoreError(f"Failed to checkpoint {shard.stream_name}/{shard.shard_id}: {e}") from e

    async def close(self) -> None:
        await self.valkey.aclose()
