from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from shardstream.settings import settings
from shardstream.utils.logging import get_logger

logger = get_logger("tracing")


def init_tracer(service_name: str = "shardstream") -> None:
    """Installs an SDK tracer provider exporting to the console when OTEL is enabled."""
    if not settings.OTEL_ENABLED:
        return

    provider = TracerProvider()
    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    logger.info(f"Initialized tracer for {service_name}")


def get_tracer(name: str) -> trace.Tracer:
    # Returns a no-op tracer until a provider is installed
    return trace.get_tracer(f"shardstream.{name}")
