from shardstream.transport.interfaces import (
    IteratorType,
    RecordsPage,
    ShardDescription,
    StreamDescription,
    StreamTransport,
    TransportRecord,
)
from shardstream.transport.memory import MemoryTransport

__all__ = [
    "IteratorType",
    "RecordsPage",
    "ShardDescription",
    "StreamDescription",
    "StreamTransport",
    "TransportRecord",
    "MemoryTransport",
]
