from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from x402_oracle.logging_config import get_logger

logger = get_logger("telemetry")


def init_telemetry(
    service_name: str, otlp_endpoint: str = "http://jaeger:4317"
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing with OTLP exporter.

    Args:
        service_name: Name of the service for resource attribution
        otlp_endpoint: OTLP endpoint for exporting traces

    Returns:
        Configured tracer instance

    Raises:
        ValueError: If service_name is not provided
    """
    service_name = service_name.lower().strip()
    if not service_name:
        raise ValueError(
            "service_name must be provided for OpenTelemetry initialization"
        )

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    except Exception as e:
        logger.warning(
            "otlp_exporter_unavailable",
            endpoint=otlp_endpoint,
            error=str(e),
            fallback="console",
        )
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)

    return trace.get_tracer(service_name)
