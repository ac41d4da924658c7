class ShardStreamError(Exception):
    """Base class for all errors raised by shardstream."""


class NotInitializedError(ShardStreamError):
    """A polling or checkpoint operation was invoked before initialize()."""


class TransportError(ShardStreamError):
    """A describe/iterator/records call against the stream service failed."""


class DiscoveryLimitExceededError(TransportError):
    """Shard discovery kept reporting more shards past the configured page bound."""


class ConcurrencyUnsupportedError(ShardStreamError):
    """Parallel polling was requested but the transport cannot be shared between tasks."""


class CheckpointStoreError(ShardStreamError):
    """restore() or modify() failed in the checkpoint store."""
