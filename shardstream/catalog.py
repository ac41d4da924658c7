from typing import AbstractSet, Dict, Optional

from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.errors import DiscoveryLimitExceededError
from shardstream.models import Shard
from shardstream.settings import settings
from shardstream.transport.interfaces import StreamTransport
from shardstream.utils.logging import get_logger
from shardstream.utils.tracing import get_tracer

logger = get_logger("ShardCatalog")


class ShardCatalog:
    """
    Authoritative set of shards for one stream.

    Reconciles what the stream service reports with what the checkpoint
    store remembers. A checkpointed cursor always wins over the starting
    position of a freshly discovered shard.
    """

    def __init__(self,
                 stream_name: str,
                 transport: StreamTransport,
                 checkpoint_store: CheckpointStore,
                 max_discovery_pages: Optional[int] = None):
        self.stream_name = stream_name
        self.transport = transport
        self.checkpoint_store = checkpoint_store
        self.max_discovery_pages = max_discovery_pages or settings.MAX_DISCOVERY_PAGES
        self.shards: Dict[str, Shard] = {}
        self.tracer = get_tracer("catalog")

    async def discover(self, ignore_shard_ids: AbstractSet[str] = frozenset()) -> Dict[str, Shard]:
        """
        Describe the stream page by page and return every shard not in
        `ignore_shard_ids`, seeded with its starting sequence number.

        Raises DiscoveryLimitExceededError if the service still reports more
        shards after `max_discovery_pages` pages.
        """
        result: Dict[str, Shard] = {}
        last_shard_id: Optional[str] = None

        with self.tracer.start_as_current_span("describe_stream") as span:
            span.set_attribute("stream.name", self.stream_name)

            for page in range(1, self.max_discovery_pages + 1):
                description = await self.transport.describe_stream(
                    self.stream_name, exclusive_start_shard_id=last_shard_id
                )

                for shard in description.shards:
                    last_shard_id = shard.shard_id
                    if shard.shard_id in ignore_shard_ids:
                        continue
                    result[shard.shard_id] = Shard(
                        stream_name=self.stream_name,
                        shard_id=shard.shard_id,
                        sequence_number=shard.starting_sequence_number,
                        starting_sequence_number=shard.starting_sequence_number,
                    )

                if not description.has_more_shards:
                    span.set_attribute("discovery.pages", page)
                    logger.debug(f"Discovered {len(result)} new shards for {self.stream_name} in {page} page(s)")
                    return result

        raise DiscoveryLimitExceededError(
            f"Stream {self.stream_name} still reports more shards after {self.max_discovery_pages} describe pages"
        )

    async def reconcile(self) -> Dict[str, Shard]:
        """
        Restore checkpointed shards and add newly discovered ones.
        Restored entries are never replaced by discovered ones.
        """
        restored = await self.checkpoint_store.restore(self.stream_name)
        fresh = await self.discover(set(restored))

        merged = dict(restored)
        for shard_id, shard in fresh.items():
            merged.setdefault(shard_id, shard)

        logger.info(
            f"Reconciled {self.stream_name}: {len(restored)} restored, "
            f"{len(merged) - len(restored)} discovered"
        )
        return merged

    async def load(self) -> Dict[str, Shard]:
        """Replace the tracked set with a fresh reconcile."""
        self.shards = await self.reconcile()
        return self.shards

    async def refresh(self) -> Dict[str, Shard]:
        """
        Resync with the service and the checkpoint store. Shards already
        tracked keep their in-memory cursor; only unknown shard ids are added.
        Returns the newly added shards.
        """
        reconciled = await self.reconcile()
        added = {
            shard_id: shard
            for shard_id, shard in reconciled.items()
            if shard_id not in self.shards
        }
        self.shards.update(added)
        if added:
            logger.info(f"Picked up {len(added)} new shard(s) on {self.stream_name}: {sorted(added)}")
        return added
