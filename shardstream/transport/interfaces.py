from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class IteratorType(str, Enum):
    TRIM_HORIZON = "TRIM_HORIZON"
    AFTER_SEQUENCE_NUMBER = "AFTER_SEQUENCE_NUMBER"


class ShardDescription(BaseModel):
    shard_id: str
    starting_sequence_number: str
    ending_sequence_number: Optional[str] = None


class StreamDescription(BaseModel):
    stream_name: str
    shards: List[ShardDescription] = Field(default_factory=list)
    has_more_shards: bool = False


class TransportRecord(BaseModel):
    """A record as the service returns it, before shard provenance is attached."""
    sequence_number: str
    partition_key: str
    data: bytes
    approximate_arrival_timestamp: Optional[datetime] = None


class RecordsPage(BaseModel):
    records: List[TransportRecord] = Field(default_factory=list)
    # None once a closed shard has been read to its end
    next_iterator: Optional[str] = None
    millis_behind_latest: Optional[int] = None


class StreamTransport(ABC):
    """
    Abstract interface for the remote side of a partitioned stream.

    Implementations own connection handling, request signing and any
    retry/backoff. Failures are raised as TransportError.
    """

    # Whether one instance may serve calls from several tasks at once.
    supports_concurrency: bool = True

    @abstractmethod
    async def describe_stream(
        self, stream_name: str, exclusive_start_shard_id: Optional[str] = None
    ) -> StreamDescription:
        """Return one page of shard descriptions, starting after the given shard id."""
        pass

    @abstractmethod
    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: IteratorType,
        starting_sequence_number: Optional[str] = None,
    ) -> str:
        """Return an iterator token positioned according to iterator_type."""
        pass

    @abstractmethod
    async def get_records(self, iterator: str, limit: int) -> RecordsPage:
        """Fetch up to `limit` records from the iterator's position."""
        pass

    async def close(self) -> None:
        pass
