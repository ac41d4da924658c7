import asyncio
import json
import os
from typing import Dict

import aiofiles

from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.errors import CheckpointStoreError
from shardstream.models import Shard
from shardstream.utils.logging import get_logger

logger = get_logger("FileCheckpointStore")


class FileCheckpointStore(CheckpointStore):
    """
    Durable file-based checkpoint store.

    One JSON document per stream:
    {"stream_name": "...", "shards": {"<shard_id>": "<sequence_number>", ...}}
    Every write rewrites the document to a temp file and renames it over the old one.
    """

    def __init__(self, directory: str = ".shardstream_checkpoints"):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)
        # modify() is read-modify-write on the stream document
        self._lock = asyncio.Lock()

    def _get_path(self, stream_name: str) -> str:
        return os.path.join(self.directory, f"{stream_name}.json")

    async def _load(self, stream_name: str) -> Dict[str, str]:
        path = self._get_path(stream_name)
        if not os.path.exists(path):
            return {}

        try:
            async with aiofiles.open(path, mode="r") as f:
                document = json.loads(await f.read())
        except (OSError, ValueError) as e:
            raise CheckpointStoreError(f"Failed to read checkpoint {path}: {e}") from e

        shards = document.get("shards")
        if not isinstance(shards, dict):
            raise CheckpointStoreError(f"Malformed checkpoint {path}: missing 'shards' mapping")
        return shards

    async def restore(self, stream_name: str) -> Dict[str, Shard]:
        async with self._lock:
            shards = await self._load(stream_name)
        logger.debug(f"Restored {len(shards)} shard cursors for {stream_name}")
        return {
            shard_id: Shard(stream_name=stream_name, shard_id=shard_id, sequence_number=seq)
            for shard_id, seq in shards.items()
        }

    async def modify(self, shard: Shard) -> None:
        path = self._get_path(shard.stream_name)
        temp_path = f"{path}.tmp"

        async with self._lock:
            shards = await self._load(shard.stream_name)
            shards[shard.shard_id] = shard.sequence_number
            document = {"stream_name": shard.stream_name, "shards": shards}

            try:
                async with aiofiles.open(temp_path, mode="w") as f:
                    await f.write(json.dumps(document, indent=2, sort_keys=True))
                    await f.flush()
                    # Data must hit the disk before the rename makes it visible
                    await asyncio.get_running_loop().run_in_executor(None, os.fsync, f.fileno())
                # Atomic rename
                os.replace(temp_path, path)
            except OSError as e:
                raise CheckpointStoreError(f"Failed to write checkpoint {path}: {e}") from e
