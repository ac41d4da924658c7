import asyncio
import contextlib
from typing import Dict, List, Optional, Set, Tuple

from shardstream.catalog import ShardCatalog
from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.errors import ConcurrencyUnsupportedError, NotInitializedError
from shardstream.models import DataRecord, Shard
from shardstream.reader import ShardReader
from shardstream.settings import settings
from shardstream.transport.interfaces import StreamTransport
from shardstream.utils.logging import get_logger, shard_context
from shardstream.utils.metrics import MetricsManager

logger = get_logger("StreamConsumer")


class StreamConsumer:
    """
    Polls every shard of one stream and tracks per-shard progress.

    Lifecycle: construct, ``await initialize()``, then any number of
    ``poll()`` / ``checkpoint()`` calls.

    Delivery is at-least-once. ``poll()`` moves the in-memory cursor to the
    last record it returns, but nothing is persisted until the caller
    checkpoints. A crash between the two redelivers those records on restart.
    Checkpointing only after downstream processing has committed gives
    effectively-once processing.

    Attributes:
        stream_name (str): The stream this consumer reads.
        catalog (ShardCatalog): Tracked shards and their cursors.
        reader (ShardReader): Per-shard page loop.
        max_concurrency (int): Upper bound of concurrent shard reads in parallel mode.
    """

    def __init__(self,
                 stream_name: str,
                 transport: StreamTransport,
                 checkpoint_store: CheckpointStore,
                 max_concurrency: Optional[int] = None,
                 max_discovery_pages: Optional[int] = None,
                 reader: Optional[ShardReader] = None):
        self.stream_name = stream_name
        self.transport = transport
        self.checkpoint_store = checkpoint_store
        self.catalog = ShardCatalog(stream_name, transport, checkpoint_store, max_discovery_pages)
        self.reader = reader or ShardReader(transport)
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENCY
        self.metrics = MetricsManager()

        self._initialized = False
        # Format: shard_id -> lock held for the whole read of that shard
        self._locks: Dict[str, asyncio.Lock] = {}
        # One event per in-flight poll; stop() sets them all
        self._stop_events: Set[asyncio.Event] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def shards(self) -> Dict[str, Shard]:
        """Snapshot of the tracked shard mapping."""
        self._require_initialized()
        return dict(self.catalog.shards)

    def get_shard(self, shard_id: str) -> Optional[Shard]:
        self._require_initialized()
        return self.catalog.shards.get(shard_id)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"Consumer for {self.stream_name} is not initialized; call initialize() first")

    def _lock_for(self, shard_id: str) -> asyncio.Lock:
        if shard_id not in self._locks:
            self._locks[shard_id] = asyncio.Lock()
        return self._locks[shard_id]

    async def initialize(self) -> None:
        """Restore checkpoints, discover shards and start tracking them."""
        shards = await self.catalog.load()
        self._initialized = True
        self.metrics.set_tracked_shards(self.stream_name, len(shards))
        logger.info(f"Consumer for {self.stream_name} initialized with {len(shards)} shard(s)")

    async def refresh(self) -> Dict[str, Shard]:
        """Pick up shards created since initialize() (e.g. after a reshard)."""
        self._require_initialized()
        added = await self.catalog.refresh()
        self.metrics.set_tracked_shards(self.stream_name, len(self.catalog.shards))
        return added

    def stop(self) -> None:
        """Ask every in-flight poll to return at the next page boundary.

        Polls started after this call are not affected.
        """
        for event in self._stop_events:
            event.set()

    async def poll(self,
                   target_shard_id: Optional[str] = None,
                   limit: Optional[int] = None,
                   max_pages: Optional[int] = None,
                   parallel: bool = False) -> List[DataRecord]:
        """
        Read a batch from every tracked shard, or only `target_shard_id`.

        Records keep their order within a shard; there is no order across
        shards. Each shard that returned records has its cursor moved to its
        last returned record.

        Args:
            target_shard_id (str): Restrict the poll to this shard. Unknown ids yield no records.
            limit (int): Max records per shard. Default SHARDSTREAM_POLL_LIMIT.
            max_pages (int): Max get_records calls per shard. Default SHARDSTREAM_POLL_MAX_PAGES.
            parallel (bool): Read shards concurrently, at most `max_concurrency` at a time.

        Raises:
            NotInitializedError: initialize() has not completed.
            ConcurrencyUnsupportedError: parallel was requested but the transport
                cannot serve concurrent calls.
            TransportError: any transport failure, unmodified.
            ValueError: limit or max_pages is not positive.
        """
        self._require_initialized()
        if parallel and not self.transport.supports_concurrency:
            raise ConcurrencyUnsupportedError(
                f"{type(self.transport).__name__} does not support concurrent shard reads"
            )

        limit = settings.POLL_LIMIT if limit is None else limit
        max_pages = settings.POLL_MAX_PAGES if max_pages is None else max_pages
        if limit < 1 or max_pages < 1:
            raise ValueError("limit and max_pages must be positive")

        selected = [
            shard for shard_id, shard in self.catalog.shards.items()
            if target_shard_id is None or shard_id == target_shard_id
        ]
        if not selected:
            logger.debug(f"No tracked shard matches {target_shard_id!r} on {self.stream_name}")
            return []

        stop_event = asyncio.Event()
        self._stop_events.add(stop_event)
        try:
            async with contextlib.AsyncExitStack() as stack:
                # Sorted acquisition so overlapping polls cannot deadlock
                for shard in sorted(selected, key=lambda s: s.shard_id):
                    await stack.enter_async_context(self._lock_for(shard.shard_id))

                if parallel:
                    batches = await self._read_parallel(selected, limit, max_pages, stop_event)
                else:
                    batches = []
                    for shard in selected:
                        batches.append((shard, await self.reader.read(shard, limit, max_pages, stop_event)))

                # Nothing below suspends, so cancellation cannot land between advancing and returning
                result: List[DataRecord] = []
                for shard, records in batches:
                    if records:
                        shard.advance(records[-1].sequence_number)
                        self.metrics.record_poll(self.stream_name, shard.shard_id, len(records))
                    result.extend(records)
        finally:
            self._stop_events.discard(stop_event)

        logger.debug(f"Polled {len(result)} record(s) from {len(selected)} shard(s)",
                     extra=shard_context(self.stream_name))
        return result

    async def _read_parallel(self,
                             shards: List[Shard],
                             limit: int,
                             max_pages: int,
                             stop_event: asyncio.Event) -> List[Tuple[Shard, List[DataRecord]]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def read_one(shard: Shard) -> Tuple[Shard, List[DataRecord]]:
            async with semaphore:
                return shard, await self.reader.read(shard, limit, max_pages, stop_event)

        tasks = [asyncio.create_task(read_one(shard)) for shard in shards]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # One shard failed or the poll was cancelled: abandon the rest
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def checkpoint(self, shard: Shard) -> None:
        """Persist one shard's current cursor."""
        self._require_initialized()
        await self.checkpoint_store.modify(shard.model_copy())
        self.metrics.record_checkpoint(self.stream_name)
        logger.debug(f"Checkpointed at {shard.sequence_number}",
                     extra=shard_context(shard.stream_name, shard.shard_id))

    async def checkpoint_all(self) -> None:
        """Persist the cursor of every tracked shard."""
        self._require_initialized()
        await asyncio.gather(*(self.checkpoint(shard) for shard in list(self.catalog.shards.values())))
        logger.info(f"Checkpointed {len(self.catalog.shards)} shard(s) of {self.stream_name}")
