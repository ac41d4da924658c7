import asyncio
from typing import List, NamedTuple, Optional

from shardstream.models import DataRecord, Shard
from shardstream.settings import settings
from shardstream.transport.interfaces import IteratorType, StreamTransport
from shardstream.utils.logging import get_logger, shard_context
from shardstream.utils.metrics import MetricsManager
from shardstream.utils.tracing import get_tracer

logger = get_logger("ShardReader")

_UNSET = object()


class IteratorRequest(NamedTuple):
    iterator_type: IteratorType
    starting_sequence_number: Optional[str] = None


class ShardReader:
    """
    Pulls one bounded batch of records from a shard.

    The reader never moves the shard's cursor. The caller advances it once
    the records have actually been handed out.
    """

    def __init__(self, transport: StreamTransport, seed_shard_id=_UNSET):
        self.transport = transport
        self.seed_shard_id: Optional[str] = settings.SEED_SHARD_ID if seed_shard_id is _UNSET else seed_shard_id
        self.metrics = MetricsManager()
        self.tracer = get_tracer("reader")

    def iterator_request(self, shard: Shard) -> IteratorRequest:
        """
        TRIM_HORIZON for a shard with no recorded position, and for the seed
        shard until it has been read once. AFTER_SEQUENCE_NUMBER otherwise.
        """
        if not shard.has_position:
            return IteratorRequest(IteratorType.TRIM_HORIZON)
        if self.seed_shard_id is not None and shard.shard_id == self.seed_shard_id and shard.is_unread:
            return IteratorRequest(IteratorType.TRIM_HORIZON)
        return IteratorRequest(IteratorType.AFTER_SEQUENCE_NUMBER, shard.sequence_number)

    async def read(self,
                   shard: Shard,
                   limit: int,
                   max_pages: int,
                   stop_event: Optional[asyncio.Event] = None) -> List[DataRecord]:
        """
        Read up to `limit` records in at most `max_pages` get_records calls.

        Returning fewer than `limit` records is not an error: the shard is
        exhausted or max_pages was reached. When `stop_event` is set the
        loop ends at the next page boundary with what it has so far, and a
        read that has not started yet returns an empty list without asking
        for an iterator.
        """
        if limit < 1 or max_pages < 1:
            raise ValueError("limit and max_pages must be positive")
        if stop_event is not None and stop_event.is_set():
            logger.debug("Stop requested, skipping shard", extra=shard_context(shard.stream_name, shard.shard_id))
            return []

        request = self.iterator_request(shard)
        result: List[DataRecord] = []

        with self.tracer.start_as_current_span("read_shard") as span:
            span.set_attribute("stream.name", shard.stream_name)
            span.set_attribute("shard.id", shard.shard_id)
            span.set_attribute("shard.iterator_type", request.iterator_type.value)

            iterator: Optional[str] = await self.transport.get_shard_iterator(
                shard.stream_name,
                shard.shard_id,
                request.iterator_type,
                request.starting_sequence_number,
            )

            pages = 0
            while iterator is not None and pages < max_pages:
                if stop_event is not None and stop_event.is_set():
                    logger.debug(f"Stop requested after {pages} page(s)",
                                 extra=shard_context(shard.stream_name, shard.shard_id))
                    break

                remaining = limit - len(result)
                page = await self.transport.get_records(iterator, remaining)
                pages += 1

                for record in page.records[:remaining]:
                    result.append(DataRecord(
                        stream_name=shard.stream_name,
                        shard_id=shard.shard_id,
                        sequence_number=record.sequence_number,
                        partition_key=record.partition_key,
                        data=record.data,
                        approximate_arrival_timestamp=record.approximate_arrival_timestamp,
                    ))

                if page.millis_behind_latest is not None:
                    self.metrics.set_lag(shard.stream_name, shard.shard_id, page.millis_behind_latest)

                if len(result) >= limit:
                    break

                # Caught up with the tip of the shard
                if page.millis_behind_latest == 0:
                    break
                if not page.records and page.millis_behind_latest is None:
                    break

                iterator = page.next_iterator

            span.set_attribute("read.pages", pages)
            span.set_attribute("read.records", len(result))

        logger.debug(f"Read {len(result)} record(s) in {pages} page(s)",
                     extra=shard_context(shard.stream_name, shard.shard_id))
        return result
