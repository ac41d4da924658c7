from typing import Any, Dict

from prometheus_client import CollectorRegistry, Counter, Gauge


class MetricsManager:
    """Process-wide registry for consumer metrics."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(MetricsManager, cls).__new__(cls)
            instance.registry = CollectorRegistry()
            instance.records_polled = Counter(
                "shardstream_records_polled",
                "Records returned to callers by poll()",
                ["stream", "shard"],
                registry=instance.registry,
            )
            instance.checkpoints = Counter(
                "shardstream_checkpoints",
                "Shard cursors written to the checkpoint store",
                ["stream"],
                registry=instance.registry,
            )
            instance.tracked_shards = Gauge(
                "shardstream_tracked_shards",
                "Shards tracked by the catalog",
                ["stream"],
                registry=instance.registry,
            )
            instance.millis_behind_latest = Gauge(
                "shardstream_millis_behind_latest",
                "Distance of the last page read from the tip of the shard",
                ["stream", "shard"],
                registry=instance.registry,
            )
            cls._instance = instance
        return cls._instance

    def record_poll(self, stream: str, shard: str, count: int) -> None:
        if count:
            self.records_polled.labels(stream=stream, shard=shard).inc(count)

    def record_checkpoint(self, stream: str) -> None:
        self.checkpoints.labels(stream=stream).inc()

    def set_tracked_shards(self, stream: str, count: int) -> None:
        self.tracked_shards.labels(stream=stream).set(count)

    def set_lag(self, stream: str, shard: str, millis: int) -> None:
        self.millis_behind_latest.labels(stream=stream, shard=shard).set(float(millis))

    def get_all(self) -> Dict[str, Any]:
        """Flattened sample values keyed by ``name{label=value,...}``."""
        res: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                res[f"{sample.name}{{{labels}}}"] = sample.value
        return res
