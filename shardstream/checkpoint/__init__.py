from shardstream.checkpoint.interfaces import CheckpointStore
from shardstream.checkpoint.memory import InMemoryCheckpointStore
from shardstream.checkpoint.file import FileCheckpointStore

__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "FileCheckpointStore",
]
