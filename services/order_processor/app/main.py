"""
Order Processor — FastAPI エントリーポイント

HTTP API はヘルスチェックのみ。本体はバックグラウンドで動く
GracePeriodManager（猶予期間切れ注文のポーラー）。

┌─────────────────┐  poll   ┌─────────────┐
│ Order Processor │ ──────▶ │ ordering DB │
│ (GracePeriod    │         └─────────────┘
│  Manager)       │  GracePeriodConfirmed
│                 │ ──── Redis Pub/Sub ────▶ Ordering / 他サービス
└─────────────────┘

起動時に設定・DB エンジン・Redis・テレメトリを一度だけ組み立てて
ポーラーに渡す。停止時は shutdown_event をセットして終了を待つ。
ポーラーが発行失敗で止まった場合は /health が 503 を返すので、
プロセス監視側で再起動させる。
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine

from .config import load_settings
from .event_bus import RedisEventBus
from .grace_period import GracePeriodManager, PollerState
from .models import ORDERING_SCHEMA
from .queries import OrderStore
from .telemetry import PollerTelemetry, setup_telemetry

logger = logging.getLogger(__name__)


def _on_poller_done(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.critical(
            "Grace period poller terminated: %s", task.exception()
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """起動時にポーラーをバックグラウンドタスクとして開始する。"""
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)

    meter_provider, tracer_provider = setup_telemetry(settings.otlp_endpoint)
    telemetry = PollerTelemetry(meter_provider, tracer_provider)

    engine = create_async_engine(
        settings.database_url,
        echo=False,
        execution_options={"schema_translate_map": {ORDERING_SCHEMA: settings.orders_schema}},
    )
    redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)

    manager = GracePeriodManager(
        settings.background,
        OrderStore(engine),
        RedisEventBus(redis_pool, settings.event_bus_channel),
        telemetry,
    )
    app.state.manager = manager

    shutdown_event = asyncio.Event()
    poller_task = asyncio.create_task(manager.run(shutdown_event))
    poller_task.add_done_callback(_on_poller_done)

    yield

    shutdown_event.set()
    try:
        await poller_task
    except Exception:
        logger.warning("Grace period poller had already stopped with an error")
    await redis_pool.aclose()
    await engine.dispose()
    meter_provider.shutdown()
    tracer_provider.shutdown()


app = FastAPI(title="Order Processor", lifespan=lifespan)


@app.get("/health")
async def health():
    manager: GracePeriodManager | None = getattr(app.state, "manager", None)
    if manager is None:
        return JSONResponse(
            {"status": "starting", "service": "order-processor"}, status_code=503
        )

    body = {
        "status": "ok",
        "service": "order-processor",
        "poller": manager.state.value,
        "cycles": manager.cycles,
    }
    if manager.failure is not None and manager.state is PollerState.STOPPED:
        body["status"] = "failed"
        body["error"] = str(manager.failure)
        return JSONResponse(body, status_code=503)
    return body
