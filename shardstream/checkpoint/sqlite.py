import os
from typing import Dict, Optional

import aiosqlite

from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.errors import CheckpointStoreError
from shardstream.models import Shard
from shardstream.utils.logging import get_logger

logger = get_logger("SQLiteCheckpointStore")


class SQLiteCheckpointStore(CheckpointStore):
    """
    Persistent checkpoint store using SQLite.
    One row per (stream_name, shard_id).
    """
    def __init__(self, path: str, table_name: str = "shard_checkpoints"):
        self.path = path
        self.table_name = table_name
        self._db: Optional[aiosqlite.Connection] = None

    async def start(self) -> None:
        dirname = os.path.dirname(self.path)
        if dirname and not os.path.exists(dirname):
            os.makedirs(dirname)

        try:
            self._db = await aiosqlite.connect(self.path)
            await self._db.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table_name} ("
                "stream_name TEXT NOT NULL, "
                "shard_id TEXT NOT NULL, "
                "sequence_number TEXT NOT NULL, "
                "updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP, "
                "PRIMARY KEY (stream_name, shard_id))"
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise CheckpointStoreError(f"Failed to open {self.path}: {e}") from e
        logger.info(f"Opened SQLite checkpoint store at {self.path}")

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise CheckpointStoreError("Store not started")
        return self._db

    async def restore(self, stream_name: str) -> Dict[str, Shard]:
        db = self._conn()
        try:
            async with db.execute(
                f"SELECT shard_id, sequence_number FROM {self.table_name} WHERE stream_name = ?",
                (stream_name,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise CheckpointStoreError(f"Failed to restore {stream_name}: {e}") from e

        return {
            shard_id: Shard(stream_name=stream_name, shard_id=shard_id, sequence_number=seq)
            for shard_id, seq in rows
        }

    async def modify(self, shard: Shard) -> None:
        db = self._conn()
        try:
            await db.execute(
                f"INSERT INTO {self.table_name} (stream_name, shard_id, sequence_number) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT (stream_name, shard_id) DO UPDATE SET "
                "sequence_number = excluded.sequence_number, updated_at = CURRENT_TIMESTAMP",
                (shard.stream_name, shard.shard_id, shard.sequence_number),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise CheckpointStoreError(f"Failed to checkpoint {shard.stream_name}/{shard.shard_id}: {e}") from e
