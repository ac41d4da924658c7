import asyncio
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from valkey.exceptions import ConnectionError as ValkeyConnectionError

from shardstream.checkpoint.file import FileCheckpointStore
from shardstream.checkpoint.memory import InMemoryCheckpointStore
from shardstream.checkpoint.sqlite import SQLiteCheckpointStore
from shardstream.checkpoint.valkey import ValkeyCheckpointStore
from shardstream.errors import CheckpointStoreError
from shardstream.models import Shard

STREAM = "orders"


def shard(shard_id: str, seq: str, stream: str = STREAM) -> Shard:
    return Shard(stream_name=stream, shard_id=shard_id, sequence_number=seq)


class TestInMemoryCheckpointStore(unittest.IsolatedAsyncioTestCase):
    async def test_restore_unknown_stream(self):
        self.assertEqual(await InMemoryCheckpointStore().restore(STREAM), {})

    async def test_restore_returns_copies(self):
        store = InMemoryCheckpointStore()
        await store.modify(shard("0", "10"))

        restored = await store.restore(STREAM)
        restored["0"].advance("99")

        self.assertEqual((await store.restore(STREAM))["0"].sequence_number, "10")


class TestFileCheckpointStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="shardstream_ckpt_")
        self.store = FileCheckpointStore(self.test_dir)

    async def asyncTearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    async def test_restore_unknown_stream(self):
        self.assertEqual(await self.store.restore(STREAM), {})

    async def test_modify_restore(self):
        await self.store.modify(shard("0", "49"))
        await self.store.modify(shard("1", "12"))

        restored = await self.store.restore(STREAM)
        self.assertEqual(set(restored), {"0", "1"})
        self.assertEqual(restored["0"].sequence_number, "49")
        self.assertEqual(restored["0"].stream_name, STREAM)
        self.assertIsNone(restored["0"].starting_sequence_number)

    async def test_last_write_wins(self):
        await self.store.modify(shard("0", "1"))
        await self.store.modify(shard("0", "2"))
        self.assertEqual((await self.store.restore(STREAM))["0"].sequence_number, "2")

    async def test_concurrent_modify_of_different_shards(self):
        await asyncio.gather(*(self.store.modify(shard(str(n), str(n * 10))) for n in range(10)))

        restored = await self.store.restore(STREAM)
        self.assertEqual({k: v.sequence_number for k, v in restored.items()},
                         {str(n): str(n * 10) for n in range(10)})

    async def test_streams_are_kept_apart(self):
        await self.store.modify(shard("0", "1", stream="a"))
        await self.store.modify(shard("0", "2", stream="b"))
        self.assertEqual((await self.store.restore("a"))["0"].sequence_number, "1")
        self.assertEqual((await self.store.restore("b"))["0"].sequence_number, "2")

    async def test_document_layout(self):
        await self.store.modify(shard("0", "49"))
        with open(os.path.join(self.test_dir, f"{STREAM}.json")) as f:
            document = json.load(f)
        self.assertEqual(document, {"stream_name": STREAM, "shards": {"0": "49"}})
        self.assertFalse(os.path.exists(os.path.join(self.test_dir, f"{STREAM}.json.tmp")))

    async def test_document_is_synced_before_rename(self):
        calls = []
        real_fsync, real_replace = os.fsync, os.replace

        def fsync(fd):
            calls.append("fsync")
            real_fsync(fd)

        def replace(src, dst):
            calls.append("replace")
            real_replace(src, dst)

        with patch("shardstream.checkpoint.file.os.fsync", side_effect=fsync), \
                patch("shardstream.checkpoint.file.os.replace", side_effect=replace):
            await self.store.modify(shard("0", "49"))

        self.assertEqual(calls, ["fsync", "replace"])

    async def test_corrupt_document(self):
        with open(os.path.join(self.test_dir, f"{STREAM}.json"), "w") as f:
            f.write("{not json")
        with self.assertRaises(CheckpointStoreError):
            await self.store.restore(STREAM)


class TestSQLiteCheckpointStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="shardstream_sqlite_")
        self.store = SQLiteCheckpointStore(path=os.path.join(self.test_dir, "checkpoints.db"))
        await self.store.start()

    async def asyncTearDown(self):
        await self.store.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    async def test_restore_unknown_stream(self):
        self.assertEqual(await self.store.restore(STREAM), {})

    async def test_modify_restore_overwrite(self):
        await self.store.modify(shard("0", "1"))
        await self.store.modify(shard("1", "5"))
        await self.store.modify(shard("0", "2"))

        restored = await self.store.restore(STREAM)
        self.assertEqual({k: v.sequence_number for k, v in restored.items()}, {"0": "2", "1": "5"})

    async def test_survives_reopen(self):
        await self.store.modify(shard("0", "7"))
        await self.store.close()

        reopened = SQLiteCheckpointStore(path=self.store.path)
        await reopened.start()
        try:
            self.assertEqual((await reopened.restore(STREAM))["0"].sequence_number, "7")
        finally:
            await reopened.close()

    async def test_requires_start(self):
        store = SQLiteCheckpointStore(path=os.path.join(self.test_dir, "other.db"))
        with self.assertRaises(CheckpointStoreError):
            await store.restore(STREAM)


class TestValkeyCheckpointStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = AsyncMock()
        self.store = ValkeyCheckpointStore(client=self.client)

    async def test_restore(self):
        self.client.hgetall.return_value = {"0": "49", "1": "12"}

        restored = await self.store.restore(STREAM)

        self.client.hgetall.assert_awaited_once_with("shardstream:checkpoints:orders")
        self.assertEqual(restored["0"].sequence_number, "49")
        self.assertEqual(restored["1"].shard_id, "1")

    async def test_restore_unknown_stream(self):
        self.client.hgetall.return_value = {}
        self.assertEqual(await self.store.restore(STREAM), {})

    async def test_modify(self):
        await self.store.modify(shard("0", "49"))
        self.client.hset.assert_awaited_once_with("shardstream:checkpoints:orders", "0", "49")

    async def test_errors_are_wrapped(self):
        self.client.hset.side_effect = ValkeyConnectionError("down")
        with self.assertRaises(CheckpointStoreError):
            await self.store.modify(shard("0", "49"))


if __name__ == "__main__":
    unittest.main()
