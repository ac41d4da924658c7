import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from shardstream.errors import TransportError
from shardstream.transport.interfaces import (
    IteratorType,
    RecordsPage,
    ShardDescription,
    StreamDescription,
    StreamTransport,
    TransportRecord,
)
from shardstream.utils.logging import get_logger

logger = get_logger("MemoryTransport")

# Sequence numbers are zero-padded so string order matches numeric order.
_SEQ_WIDTH = 21
_SHARD_SPAN = 10 ** 12


class _MemoryShard:
    def __init__(self, shard_id: str, base: int):
        self.shard_id = shard_id
        self.starting_sequence_number = f"{base:0{_SEQ_WIDTH}d}"
        self.records: List[TransportRecord] = []
        self.closed = False
        self._next = base + 1

    def next_sequence_number(self) -> str:
        seq = f"{self._next:0{_SEQ_WIDTH}d}"
        self._next += 1
        return seq


class MemoryTransport(StreamTransport):
    """
    In-memory stream service for testing/local verification.
    Not persistent across restarts.

    Every iterator request is recorded in `iterator_requests` as
    ``(stream_name, shard_id, iterator_type, starting_sequence_number)``.
    """

    def __init__(self,
                 describe_page_size: Optional[int] = None,
                 records_per_call: Optional[int] = None,
                 supports_concurrency: bool = True):
        self.describe_page_size = describe_page_size
        # Service-side cap on records returned by one get_records call
        self.records_per_call = records_per_call
        self.supports_concurrency = supports_concurrency

        # Format: stream_name -> shard_id -> shard (insertion ordered)
        self._streams: Dict[str, Dict[str, _MemoryShard]] = {}

        # Format: token -> (stream_name, shard_id, index of next record)
        self._iterators: Dict[str, Tuple[str, str, int]] = {}

        self.iterator_requests: List[Tuple[str, str, IteratorType, Optional[str]]] = []
        self.describe_calls = 0
        self.get_records_calls = 0
        self._failures: Dict[str, Exception] = {}

    def create_stream(self, stream_name: str, shard_ids: List[str]) -> None:
        self._streams[stream_name] = {}
        for shard_id in shard_ids:
            self.add_shard(stream_name, shard_id)
        logger.debug(f"Created stream {stream_name} with shards {shard_ids}")

    def add_shard(self, stream_name: str, shard_id: str) -> ShardDescription:
        shards = self._streams.setdefault(stream_name, {})
        shard = _MemoryShard(shard_id, base=(len(shards) + 1) * _SHARD_SPAN)
        shards[shard_id] = shard
        return ShardDescription(shard_id=shard_id, starting_sequence_number=shard.starting_sequence_number)

    def close_shard(self, stream_name: str, shard_id: str) -> None:
        self._shard(stream_name, shard_id).closed = True

    def put_record(self, stream_name: str, shard_id: str, data: bytes, partition_key: str = "pk") -> str:
        shard = self._shard(stream_name, shard_id)
        if shard.closed:
            raise TransportError(f"Shard {shard_id} is closed")
        seq = shard.next_sequence_number()
        shard.records.append(TransportRecord(
            sequence_number=seq,
            partition_key=partition_key,
            data=data,
            approximate_arrival_timestamp=datetime.now(timezone.utc),
        ))
        return seq

    def starting_sequence_number(self, stream_name: str, shard_id: str) -> str:
        return self._shard(stream_name, shard_id).starting_sequence_number

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of `operation` (describe_stream, get_shard_iterator, get_records) raise."""
        self._failures[operation] = error

    def _check_failure(self, operation: str) -> None:
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    def _shard(self, stream_name: str, shard_id: str) -> _MemoryShard:
        try:
            return self._streams[stream_name][shard_id]
        except KeyError:
            raise TransportError(f"Unknown shard {stream_name}/{shard_id}") from None

    async def describe_stream(
        self, stream_name: str, exclusive_start_shard_id: Optional[str] = None
    ) -> StreamDescription:
        self.describe_calls += 1
        self._check_failure("describe_stream")
        if stream_name not in self._streams:
            raise TransportError(f"Stream {stream_name} not found")

        shards = list(self._streams[stream_name].values())
        if exclusive_start_shard_id is not None:
            ids = [s.shard_id for s in shards]
            start = ids.index(exclusive_start_shard_id) + 1 if exclusive_start_shard_id in ids else 0
            shards = shards[start:]

        page_size = self.describe_page_size or len(shards)
        page, rest = shards[:page_size], shards[page_size:]

        return StreamDescription(
            stream_name=stream_name,
            shards=[
                ShardDescription(shard_id=s.shard_id, starting_sequence_number=s.starting_sequence_number)
                for s in page
            ],
            has_more_shards=bool(rest),
        )

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: IteratorType,
        starting_sequence_number: Optional[str] = None,
    ) -> str:
        self._check_failure("get_shard_iterator")
        self.iterator_requests.append((stream_name, shard_id, iterator_type, starting_sequence_number))
        shard = self._shard(stream_name, shard_id)

        if iterator_type is IteratorType.TRIM_HORIZON:
            index = 0
        else:
            if not starting_sequence_number:
                raise TransportError("AFTER_SEQUENCE_NUMBER requires a starting sequence number")
            index = sum(1 for r in shard.records if r.sequence_number <= starting_sequence_number)

        return self._issue(stream_name, shard_id, index)

    async def get_records(self, iterator: str, limit: int) -> RecordsPage:
        self.get_records_calls += 1
        self._check_failure("get_records")
        try:
            stream_name, shard_id, index = self._iterators.pop(iterator)
        except KeyError:
            raise TransportError(f"Invalid or expired shard iterator {iterator}") from None

        if self.records_per_call is not None:
            limit = min(limit, self.records_per_call)

        shard = self._shard(stream_name, shard_id)
        batch = shard.records[index:index + limit]
        position = index + len(batch)
        remaining = len(shard.records) - position

        next_iterator = None
        if not (shard.closed and remaining == 0):
            next_iterator = self._issue(stream_name, shard_id, position)

        return RecordsPage(records=batch, next_iterator=next_iterator, millis_behind_latest=remaining * 1000)

    def _issue(self, stream_name: str, shard_id: str, index: int) -> str:
        token = uuid.uuid4().hex
        self._iterators[token] = (stream_name, shard_id, index)
        return token
