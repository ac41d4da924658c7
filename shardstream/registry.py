import asyncio
import inspect
from typing import Awaitable, Callable, Dict, Optional, Union

from shardstream.consumer import StreamConsumer
from shardstream.utils.logging import get_logger

logger = get_logger("ConsumerRegistry")

ConsumerFactory = Callable[[str], Union[StreamConsumer, Awaitable[StreamConsumer]]]


class ConsumerRegistry:
    """
    Caller-owned cache of one initialized consumer per stream.

    Nothing in shardstream keeps consumers globally; an application that
    wants to reuse a consumer for a stream holds one of these.
    """

    def __init__(self) -> None:
        self._consumers: Dict[str, StreamConsumer] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, stream_name: str) -> bool:
        return stream_name in self._consumers

    def __len__(self) -> int:
        return len(self._consumers)

    def get(self, stream_name: str) -> Optional[StreamConsumer]:
        return self._consumers.get(stream_name)

    async def get_or_create(self, stream_name: str, factory: ConsumerFactory) -> StreamConsumer:
        """
        Return the cached consumer for `stream_name`, or build one with
        `factory(stream_name)`, initialize it and cache it.
        """
        async with self._lock:
            consumer = self._consumers.get(stream_name)
            if consumer is None:
                built = factory(stream_name)
                consumer = await built if inspect.isawaitable(built) else built
                if not consumer.initialized:
                    await consumer.initialize()
                self._consumers[stream_name] = consumer
                logger.info(f"Registered consumer for {stream_name}")
            return consumer

    def discard(self, stream_name: str) -> Optional[StreamConsumer]:
        return self._consumers.pop(stream_name, None)
