import asyncio
import functools
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

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

logger = get_logger("KinesisTransport")


class KinesisTransport(StreamTransport):
    """
    Amazon Kinesis Data Streams implementation of StreamTransport.

    boto3 clients are synchronous and thread-safe, so every call runs in the
    loop's default executor and the transport may be shared between tasks.
    """

    supports_concurrency = True

    def __init__(self,
                 region_name: str = "us-east-1",
                 endpoint_url: Optional[str] = None,
                 client: Any = None):
        if client is None:
            session = boto3.Session()
            client = session.client("kinesis", region_name=region_name, endpoint_url=endpoint_url)
        self.client = client
        logger.info(f"KinesisTransport ready (region={region_name}, endpoint={endpoint_url or 'default'})")

    async def _call(self, operation: str, fn: Callable[..., Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"{operation} failed with {code}: {e}")
            raise TransportError(f"{operation} failed: {code}") from e
        except BotoCoreError as e:
            logger.error(f"{operation} failed: {e}")
            raise TransportError(f"{operation} failed: {e}") from e

    async def describe_stream(
        self, stream_name: str, exclusive_start_shard_id: Optional[str] = None
    ) -> StreamDescription:
        kwargs: Dict[str, Any] = {"StreamName": stream_name}
        if exclusive_start_shard_id:
            kwargs["ExclusiveStartShardId"] = exclusive_start_shard_id

        response = await self._call("DescribeStream", self.client.describe_stream, **kwargs)
        description = response["StreamDescription"]

        shards = []
        for shard in description.get("Shards", []):
            sequence_range = shard["SequenceNumberRange"]
            shards.append(ShardDescription(
                shard_id=shard["ShardId"],
                starting_sequence_number=sequence_range["StartingSequenceNumber"],
                ending_sequence_number=sequence_range.get("EndingSequenceNumber"),
            ))

        return StreamDescription(
            stream_name=stream_name,
            shards=shards,
            has_more_shards=bool(description.get("HasMoreShards", False)),
        )

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: IteratorType,
        starting_sequence_number: Optional[str] = None,
    ) -> str:
        kwargs: Dict[str, Any] = {
            "StreamName": stream_name,
            "ShardId": shard_id,
            "ShardIteratorType": iterator_type.value,
        }
        if iterator_type is IteratorType.AFTER_SEQUENCE_NUMBER:
            kwargs["StartingSequenceNumber"] = starting_sequence_number

        response = await self._call("GetShardIterator", self.client.get_shard_iterator, **kwargs)
        return response["ShardIterator"]

    async def get_records(self, iterator: str, limit: int) -> RecordsPage:
        response = await self._call("GetRecords", self.client.get_records, ShardIterator=iterator, Limit=limit)

        records = [
            TransportRecord(
                sequence_number=record["SequenceNumber"],
                partition_key=record["PartitionKey"],
                data=record["Data"],
                approximate_arrival_timestamp=record.get("ApproximateArrivalTimestamp"),
            )
            for record in response.get("Records", [])
        ]

        return RecordsPage(
            records=records,
            next_iterator=response.get("NextShardIterator"),
            millis_behind_latest=response.get("MillisBehindLatest"),
        )
