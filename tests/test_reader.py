import asyncio
from typing import List, Optional

import pytest

from shardstream.models import Shard
from shardstream.reader import IteratorRequest, ShardReader
from shardstream.transport.interfaces import (
    IteratorType,
    RecordsPage,
    StreamDescription,
    StreamTransport,
    TransportRecord,
)
from shardstream.transport.memory import MemoryTransport

STREAM = "orders"


def make_records(start: int, count: int) -> List[TransportRecord]:
    return [
        TransportRecord(sequence_number=f"{n:05d}", partition_key="pk", data=f"r{n}".encode())
        for n in range(start, start + count)
    ]


class ScriptedTransport(StreamTransport):
    """Serves a fixed list of pages, then empty pages."""

    def __init__(self, pages: List[RecordsPage]):
        self.pages = list(pages)
        self.iterator_calls = []
        self.get_records_calls = []

    async def describe_stream(self, stream_name: str, exclusive_start_shard_id: Optional[str] = None):
        return StreamDescription(stream_name=stream_name)

    async def get_shard_iterator(self, stream_name, shard_id, iterator_type, starting_sequence_number=None):
        self.iterator_calls.append((shard_id, iterator_type, starting_sequence_number))
        return "it-0"

    async def get_records(self, iterator: str, limit: int) -> RecordsPage:
        self.get_records_calls.append((iterator, limit))
        if self.pages:
            return self.pages.pop(0)
        return RecordsPage(records=[], next_iterator=iterator)


def shard(shard_id: str = "1", seq: str = "00000", start: Optional[str] = None) -> Shard:
    return Shard(stream_name=STREAM, shard_id=shard_id, sequence_number=seq, starting_sequence_number=start)


# --- Iterator selection ---

def test_unread_seed_shard_starts_at_trim_horizon():
    reader = ShardReader(ScriptedTransport([]), seed_shard_id="0")
    request = reader.iterator_request(shard("0", seq="100", start="100"))
    assert request == IteratorRequest(IteratorType.TRIM_HORIZON)


def test_checkpointed_seed_shard_resumes_after_sequence_number():
    reader = ShardReader(ScriptedTransport([]), seed_shard_id="0")
    request = reader.iterator_request(shard("0", seq="49"))
    assert request == IteratorRequest(IteratorType.AFTER_SEQUENCE_NUMBER, "49")


def test_discovered_shard_resumes_after_its_starting_sequence_number():
    reader = ShardReader(ScriptedTransport([]), seed_shard_id="0")
    request = reader.iterator_request(shard("1", seq="200", start="200"))
    assert request == IteratorRequest(IteratorType.AFTER_SEQUENCE_NUMBER, "200")


def test_shard_without_position_starts_at_trim_horizon():
    reader = ShardReader(ScriptedTransport([]), seed_shard_id="0")
    assert reader.iterator_request(shard("7", seq="")).iterator_type is IteratorType.TRIM_HORIZON


def test_seed_special_case_can_be_disabled():
    reader = ShardReader(ScriptedTransport([]), seed_shard_id=None)
    request = reader.iterator_request(shard("0", seq="100", start="100"))
    assert request == IteratorRequest(IteratorType.AFTER_SEQUENCE_NUMBER, "100")


# --- Page loop ---

@pytest.mark.asyncio
async def test_stops_after_empty_page():
    transport = ScriptedTransport([
        RecordsPage(records=make_records(1, 3), next_iterator="it-1"),
        RecordsPage(records=[], next_iterator="it-2"),
    ])
    reader = ShardReader(transport)

    records = await reader.read(shard(), limit=1000, max_pages=5)

    assert [r.sequence_number for r in records] == ["00001", "00002", "00003"]
    assert len(transport.get_records_calls) == 2
    assert transport.get_records_calls[1][0] == "it-1"


@pytest.mark.asyncio
async def test_stops_when_caught_up_with_shard_tip():
    transport = ScriptedTransport([
        RecordsPage(records=make_records(1, 2), next_iterator="it-1", millis_behind_latest=0),
    ])
    records = await ShardReader(transport).read(shard(), limit=1000, max_pages=5)
    assert len(records) == 2
    assert len(transport.get_records_calls) == 1


@pytest.mark.asyncio
async def test_empty_pages_while_behind_keep_paging_up_to_max_pages():
    transport = ScriptedTransport([
        RecordsPage(records=[], next_iterator=f"it-{n}", millis_behind_latest=5000) for n in range(10)
    ])
    records = await ShardReader(transport).read(shard(), limit=10, max_pages=3)
    assert records == []
    assert len(transport.get_records_calls) == 3


@pytest.mark.asyncio
async def test_max_pages_bounds_the_loop():
    transport = ScriptedTransport([
        RecordsPage(records=make_records(n, 1), next_iterator=f"it-{n}", millis_behind_latest=1000)
        for n in range(1, 11)
    ])
    records = await ShardReader(transport).read(shard(), limit=100, max_pages=3)
    assert len(records) == 3
    assert len(transport.get_records_calls) == 3


@pytest.mark.asyncio
async def test_never_returns_more_than_limit():
    # Transport ignores the requested limit
    transport = ScriptedTransport([RecordsPage(records=make_records(1, 5), next_iterator="it-1")])
    records = await ShardReader(transport).read(shard(), limit=3, max_pages=5)
    assert [r.sequence_number for r in records] == ["00001", "00002", "00003"]


@pytest.mark.asyncio
async def test_requests_only_the_remaining_records():
    transport = ScriptedTransport([
        RecordsPage(records=make_records(1, 2), next_iterator="it-1", millis_behind_latest=1000),
        RecordsPage(records=make_records(3, 2), next_iterator="it-2", millis_behind_latest=1000),
    ])
    records = await ShardReader(transport).read(shard(), limit=4, max_pages=5)
    assert len(records) == 4
    assert [limit for _, limit in transport.get_records_calls] == [4, 2]


@pytest.mark.asyncio
async def test_closed_shard_ends_the_loop():
    transport = ScriptedTransport([
        RecordsPage(records=make_records(1, 2), next_iterator=None, millis_behind_latest=1000),
    ])
    records = await ShardReader(transport).read(shard(), limit=100, max_pages=5)
    assert len(records) == 2
    assert len(transport.get_records_calls) == 1


@pytest.mark.asyncio
async def test_records_carry_shard_provenance():
    transport = ScriptedTransport([RecordsPage(records=make_records(1, 1))])
    (record,) = await ShardReader(transport).read(shard("1"), limit=10, max_pages=1)
    assert record.stream_name == STREAM
    assert record.shard_id == "1"
    assert record.data == b"r1"


@pytest.mark.asyncio
async def test_read_does_not_move_the_cursor():
    transport = ScriptedTransport([RecordsPage(records=make_records(1, 3))])
    target = shard("1", seq="00000")
    await ShardReader(transport).read(target, limit=10, max_pages=1)
    assert target.sequence_number == "00000"


@pytest.mark.asyncio
async def test_invalid_bounds_are_rejected():
    with pytest.raises(ValueError):
        await ShardReader(ScriptedTransport([])).read(shard(), limit=0, max_pages=1)


# --- Stop between pages ---

@pytest.mark.asyncio
async def test_stop_event_ends_read_at_page_boundary():
    stop = asyncio.Event()

    class StoppingTransport(ScriptedTransport):
        async def get_records(self, iterator, limit):
            page = await super().get_records(iterator, limit)
            stop.set()
            return page

    transport = StoppingTransport([
        RecordsPage(records=make_records(n * 2, 2), next_iterator=f"it-{n}", millis_behind_latest=1000)
        for n in range(5)
    ])
    records = await ShardReader(transport).read(shard(), limit=100, max_pages=5, stop_event=stop)

    assert len(records) == 2
    assert len(transport.get_records_calls) == 1


@pytest.mark.asyncio
async def test_stopped_read_does_not_request_an_iterator():
    stop = asyncio.Event()
    stop.set()
    transport = ScriptedTransport([RecordsPage(records=make_records(1, 3))])

    records = await ShardReader(transport).read(shard(), limit=10, max_pages=5, stop_event=stop)

    assert records == []
    assert transport.iterator_calls == []


# --- Against the in-memory service ---

@pytest.mark.asyncio
async def test_empty_shard_returns_empty_list():
    transport = MemoryTransport()
    transport.create_stream(STREAM, ["0", "1"])
    start = transport.starting_sequence_number(STREAM, "1")

    records = await ShardReader(transport).read(shard("1", seq=start, start=start), limit=1000, max_pages=5)

    assert records == []


@pytest.mark.asyncio
async def test_pages_through_service_cap():
    transport = MemoryTransport(records_per_call=2)
    transport.create_stream(STREAM, ["1"])
    for n in range(5):
        transport.put_record(STREAM, "1", f"m{n}".encode())
    start = transport.starting_sequence_number(STREAM, "1")

    records = await ShardReader(transport).read(shard("1", seq=start, start=start), limit=1000, max_pages=5)

    assert [r.data for r in records] == [b"m0", b"m1", b"m2", b"m3", b"m4"]
    assert transport.get_records_calls == 3
