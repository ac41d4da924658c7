import asyncio
import json
import os
from typing import Optional

import typer

from shardstream.checkpoint.file import FileCheckpointStore
from shardstream.consumer import StreamConsumer
from shardstream.errors import ShardStreamError
from shardstream.settings import settings
from shardstream.transport.kinesis import KinesisTransport
from shardstream.utils.logging import setup_logging
from shardstream.utils.tracing import init_tracer

app = typer.Typer(help="Shard-tracking stream consumer")


def _build_consumer(stream: str, checkpoint_dir: str) -> StreamConsumer:
    transport = KinesisTransport(region_name=settings.AWS_REGION, endpoint_url=settings.KINESIS_ENDPOINT_URL)
    store = FileCheckpointStore(checkpoint_dir)
    return StreamConsumer(stream, transport, store)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ShardStreamError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level")):
    setup_logging(level=log_level)
    init_tracer("shardstream-cli")


@app.command()
def shards(
    stream: str = typer.Argument(..., help="Stream name"),
    checkpoint_dir: str = typer.Option(settings.CHECKPOINT_DIR, help="Checkpoint directory"),
):
    """
    Lists the shards a consumer would track and their cursors.
    """
    async def _shards():
        consumer = _build_consumer(stream, checkpoint_dir)
        await consumer.initialize()
        for shard_id, shard in sorted(consumer.shards.items()):
            origin = "discovered" if shard.starting_sequence_number is not None else "checkpoint"
            typer.echo(f"{shard_id}\t{shard.sequence_number or '-'}\t{origin}")

    _run(_shards())


@app.command()
def poll(
    stream: str = typer.Argument(..., help="Stream name"),
    shard: Optional[str] = typer.Option(None, help="Only poll this shard"),
    limit: int = typer.Option(settings.POLL_LIMIT, help="Max records per shard"),
    max_pages: int = typer.Option(settings.POLL_MAX_PAGES, help="Max get_records calls per shard"),
    parallel: bool = typer.Option(False, help="Read shards concurrently"),
    checkpoint: bool = typer.Option(False, help="Checkpoint all shards after printing"),
    checkpoint_dir: str = typer.Option(settings.CHECKPOINT_DIR, help="Checkpoint directory"),
):
    """
    Polls the stream once and prints one JSON line per record.
    """
    async def _poll():
        consumer = _build_consumer(stream, checkpoint_dir)
        await consumer.initialize()
        records = await consumer.poll(target_shard_id=shard, limit=limit, max_pages=max_pages, parallel=parallel)
        for record in records:
            typer.echo(json.dumps({
                "shard_id": record.shard_id,
                "sequence_number": record.sequence_number,
                "partition_key": record.partition_key,
                "data": record.data.decode("utf-8", errors="replace"),
            }))
        if checkpoint:
            await consumer.checkpoint_all()
            typer.echo(f"Checkpointed {len(consumer.shards)} shard(s)", err=True)

    _run(_poll())


@app.command()
def checkpoints(
    stream: str = typer.Argument(..., help="Stream name"),
    checkpoint_dir: str = typer.Option(settings.CHECKPOINT_DIR, help="Checkpoint directory"),
):
    """
    Prints the checkpointed cursors of a stream.
    """
    if not os.path.isdir(checkpoint_dir):
        typer.echo(f"Error: Directory {checkpoint_dir} does not exist.", err=True)
        raise typer.Exit(code=1)

    async def _checkpoints():
        restored = await FileCheckpointStore(checkpoint_dir).restore(stream)
        if not restored:
            typer.echo(f"No checkpoints for {stream}")
        for shard_id, shard in sorted(restored.items()):
            typer.echo(f"{shard_id}\t{shard.sequence_number}")

    _run(_checkpoints())


if __name__ == "__main__":
    app()
