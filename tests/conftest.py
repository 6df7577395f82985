from datetime import datetime, timedelta, timezone

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

from services.order_processor.app.config import BackgroundTaskSettings
from services.order_processor.app.event_bus import EventBus
from services.order_processor.app.models import ORDERING_SCHEMA, metadata, orders
from services.order_processor.app.telemetry import PollerTelemetry


class RecordingEventBus(EventBus):
    """発行されたイベントを記録する。fail_on の注文 ID で例外を投げる。"""

    def __init__(self, fail_on=()):
        self.published = []
        self.fail_on = set(fail_on)

    async def publish(self, event):
        if event.order_id in self.fail_on:
            raise ConnectionError(f"event bus unavailable for order {event.order_id}")
        self.published.append(event)


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def settings():
    return BackgroundTaskSettings(check_update_time=5, grace_period_time=30)


@pytest.fixture
async def engine(tmp_path):
    # SQLite にはスキーマが無いので ordering スキーマを外して使う
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ordering.db'}",
        execution_options={"schema_translate_map": {ORDERING_SCHEMA: None}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def add_orders(engine):
    async def _add(*rows):
        async with engine.begin() as conn:
            await conn.execute(
                insert(orders),
                [
                    {"Id": order_id, "OrderDate": order_date, "OrderStatus": status}
                    for order_id, order_date, status in rows
                ],
            )

    return _add


@pytest.fixture
async def scenario_orders(add_orders, now):
    """
    1: 40 分前 Submitted → 対象
    2: 10 分前 Submitted → 猶予期間内
    3: 50 分前 Shipped   → 状態が違う
    """
    await add_orders(
        (1, now - timedelta(minutes=40), "Submitted"),
        (2, now - timedelta(minutes=10), "Submitted"),
        (3, now - timedelta(minutes=50), "Shipped"),
    )


@pytest.fixture
def metric_reader():
    return InMemoryMetricReader()


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def telemetry(metric_reader, span_exporter):
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return PollerTelemetry(
        meter_provider=MeterProvider(metric_readers=[metric_reader]),
        tracer_provider=tracer_provider,
    )


@pytest.fixture
def event_bus():
    return RecordingEventBus()


def metric_points(reader, name):
    """InMemoryMetricReader から指定メトリクスのデータポイントを取り出す"""
    data = reader.get_metrics_data()
    if data is None:
        return []
    points = []
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points
