"""
Order Processor — テレメトリ (OpenTelemetry)

メトリクスとトレースの計器(instrument)をまとめた PollerTelemetry を
プロセス起動時に一度だけ作り、ポーラーへ渡す。
テストでは SDK のインメモリ Reader/Exporter を持つ Provider を渡せばよい。

計測値は外部収集用。ポーラーの制御フローには一切影響しない。
"""

import logging

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

SERVICE_NAME = "eShop.OrderProcessor"
SERVICE_VERSION = "1.0.0"
INSTRUMENTATION_NAME = "eShop.OrderProcessor.Services.GracePeriodManagerService"


class PollerTelemetry:
    """ポーラー用の計器一式"""

    def __init__(self, meter_provider=None, tracer_provider=None):
        meter = metrics.get_meter(
            INSTRUMENTATION_NAME, SERVICE_VERSION, meter_provider=meter_provider
        )
        self.tracer = trace.get_tracer(
            INSTRUMENTATION_NAME, SERVICE_VERSION, tracer_provider=tracer_provider
        )
        self.check_orders_counter = meter.create_counter(
            "check_orders_requests",
            description="Number of grace period checks started",
        )
        self.cycle_counter = meter.create_counter(
            "grace_period_cycles",
            description="Number of grace period checks by outcome",
        )
        self.request_duration = meter.create_histogram(
            "request_duration",
            unit="ms",
            description="Duration of requests in milliseconds",
        )

    def record_duration(self, method: str, elapsed_ms: float) -> None:
        self.request_duration.record(elapsed_ms, {"method": method})

    def record_cycle(self, outcome: str) -> None:
        self.cycle_counter.add(1, {"outcome": outcome})


def setup_telemetry(otlp_endpoint: str | None = None) -> tuple[MeterProvider, TracerProvider]:
    """
    SDK の Provider を組み立ててグローバルに登録する。

    otlp_endpoint が指定されていれば OTLP(gRPC) でエクスポートする。
    指定が無ければ計測はするがどこにも送らない。
    """
    resource = Resource.create(
        {"service.name": SERVICE_NAME, "service.version": SERVICE_VERSION}
    )

    readers = []
    tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        readers.append(
            PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True))
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info("Exporting telemetry to %s", otlp_endpoint)

    meter_provider = MeterProvider(resource=resource, metric_readers=readers)

    metrics.set_meter_provider(meter_provider)
    trace.set_tracer_provider(tracer_provider)
    return meter_provider, tracer_provider
