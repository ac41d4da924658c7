import json
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class Shard(BaseModel):
    """
    Identity and read cursor of one partition of a stream.

    `sequence_number` is the last successfully delivered position. An empty
    value means no position has been recorded for this shard yet.
    """
    stream_name: str
    shard_id: str
    sequence_number: str = Field(default="")
    # Set by discovery only; restored shards never carry it.
    starting_sequence_number: Optional[str] = None

    @property
    def has_position(self) -> bool:
        return bool(self.sequence_number)

    @property
    def is_unread(self) -> bool:
        """True while the cursor still sits on the position discovery seeded it with."""
        return (
            self.starting_sequence_number is not None
            and self.sequence_number == self.starting_sequence_number
        )

    def advance(self, sequence_number: str) -> None:
        """Move the cursor to the last delivered record."""
        self.sequence_number = sequence_number

    def reset(self, sequence_number: str = "") -> None:
        """Explicit resync. Clears any discovery seed as well."""
        self.sequence_number = sequence_number
        self.starting_sequence_number = None


class DataRecord(BaseModel):
    """
    One message pulled from a shard. Immutable once constructed.
    """
    model_config = ConfigDict(frozen=True)

    stream_name: str
    shard_id: str
    sequence_number: str
    partition_key: str
    data: bytes
    approximate_arrival_timestamp: Optional[datetime] = None

    def decode_json(self) -> Any:
        return json.loads(self.data.decode("utf-8"))
