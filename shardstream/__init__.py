from shardstream.models import Shard, DataRecord
from shardstream.errors import (
    ShardStreamError,
    NotInitializedError,
    TransportError,
    DiscoveryLimitExceededError,
    ConcurrencyUnsupportedError,
    CheckpointStoreError,
)
from shardstream.settings import settings
from shardstream.catalog import ShardCatalog
from shardstream.reader import ShardReader
from shardstream.consumer import StreamConsumer
from shardstream.registry import ConsumerRegistry

__version__ = "0.1.0"

__all__ = [
    "Shard",
    "DataRecord",
    "ShardStreamError",
    "NotInitializedError",
    "TransportError",
    "DiscoveryLimitExceededError",
    "ConcurrencyUnsupportedError",
    "CheckpointStoreError",
    "settings",
    "ShardCatalog",
    "ShardReader",
    "StreamConsumer",
    "ConsumerRegistry",
]
