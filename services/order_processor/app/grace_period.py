"""
Order Processor — 猶予期間マネージャ (GracePeriodManager)

一定間隔で注文テーブルをポーリングし、猶予期間を過ぎても Submitted のままの
注文ごとに GracePeriodConfirmedIntegrationEvent を 1 件発行する。

  ┌──────────┐  query   ┌──────────────┐
  │  Poller  │ ───────▶ │ ordering DB  │
  │          │          └──────────────┘
  │          │  publish ┌──────────────┐
  │          │ ───────▶ │  Event Bus   │
  └──────────┘          └──────────────┘

状態遷移:
    STOPPED → RUNNING ⇄ SLEEPING → STOPPED

サイクル間で状態を持たない（既読 ID も重複排除も無い）。
Submitted のままの注文は、状態が変わるまで毎サイクル新しいイベントとして再発行される。

エラー方針（非対称）:
  - クエリ失敗: OrderQueryResult が空で返る → ログのみ、次のサイクルへ
  - 発行失敗:   PublishError を送出 → サイクルもループも停止し、呼び出し元へ伝播
"""

import asyncio
import logging
import time
from datetime import timedelta
from enum import Enum

from opentelemetry.trace import SpanKind, Status, StatusCode

from .config import BackgroundTaskSettings
from .errors import PublishError
from .event_bus import EventBus
from .events import GracePeriodConfirmedIntegrationEvent
from .queries import OrderQueryResult, OrderStore
from .telemetry import PollerTelemetry

logger = logging.getLogger(__name__)

CHECK_METHOD = "CheckConfirmedGracePeriodOrders"
QUERY_METHOD = "GetConfirmedGracePeriodOrders"


class PollerState(str, Enum):
    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class CycleOutcome(str, Enum):
    SUCCESS = "success"
    QUERY_FAILED = "query_failed"
    PUBLISH_FAILED = "publish_failed"
    ERROR = "error"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class GracePeriodManager:
    """猶予期間切れ注文のポーラー"""

    def __init__(
        self,
        settings: BackgroundTaskSettings,
        order_store: OrderStore,
        event_bus: EventBus,
        telemetry: PollerTelemetry,
    ):
        self.settings = settings
        self.order_store = order_store
        self.event_bus = event_bus
        self.telemetry = telemetry
        self.state = PollerState.STOPPED
        self.cycles = 0
        self.failure: BaseException | None = None

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        shutdown_event がセットされるまでポーリングを繰り返す。

        1 サイクル実行 → check_update_time 秒待機、の繰り返し。
        待機中も shutdown_event を監視するので、長い間隔でも停止は遅れない。
        実行中のサイクルは途中で打ち切らず、終わってから停止する。
        """
        delay = self.settings.check_update_time
        logger.debug("GracePeriodManager is starting.")

        try:
            while not shutdown_event.is_set():
                self.state = PollerState.RUNNING
                logger.debug("GracePeriodManager background task is doing background work.")

                await self.check_confirmed_grace_period_orders()

                self.state = PollerState.SLEEPING
                await self._sleep(shutdown_event, delay)
        except Exception as e:
            self.failure = e
            logger.exception("GracePeriodManager background task stopped by an unrecoverable error")
            raise
        finally:
            self.state = PollerState.STOPPED
            logger.debug("GracePeriodManager background task is stopping.")

    @staticmethod
    async def _sleep(shutdown_event: asyncio.Event, delay: float) -> None:
        """shutdown_event で中断できる待機"""
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def check_confirmed_grace_period_orders(self) -> list[int]:
        """
        1 サイクル分の処理。発行できた注文 ID を返す。

        発行は 1 件ずつ順番に await する（並列にしない）。
        途中で発行に失敗すると、残りの注文はこのサイクルでは発行されない。
        """
        telemetry = self.telemetry
        telemetry.check_orders_counter.add(1)
        self.cycles += 1

        with telemetry.tracer.start_as_current_span(CHECK_METHOD, kind=SpanKind.INTERNAL) as span:
            span.set_attribute("method", CHECK_METHOD)
            started = time.perf_counter()
            logger.debug("Checking confirmed grace period orders")

            try:
                result = await self._get_confirmed_grace_period_orders()

                published: list[int] = []
                for order_id in result.order_ids:
                    event = GracePeriodConfirmedIntegrationEvent(order_id=order_id)
                    logger.info("Publishing integration event: %s - (%r)", event.id, event)
                    try:
                        await self.event_bus.publish(event)
                    except Exception as e:
                        telemetry.record_cycle(CycleOutcome.PUBLISH_FAILED.value)
                        raise PublishError(order_id, event) from e
                    published.append(order_id)
            except PublishError:
                raise
            except Exception:
                telemetry.record_cycle(CycleOutcome.ERROR.value)
                raise
            finally:
                telemetry.record_duration(CHECK_METHOD, _elapsed_ms(started))

            outcome = CycleOutcome.SUCCESS if result.ok else CycleOutcome.QUERY_FAILED
            telemetry.record_cycle(outcome.value)
            span.set_attribute("orders.published", len(published))
            span.set_status(Status(StatusCode.OK))
            return published

    async def _get_confirmed_grace_period_orders(self) -> OrderQueryResult:
        telemetry = self.telemetry

        with telemetry.tracer.start_as_current_span(QUERY_METHOD, kind=SpanKind.INTERNAL) as span:
            span.set_attribute("method", QUERY_METHOD)
            started = time.perf_counter()

            result = await self.order_store.find_grace_period_orders(
                timedelta(minutes=self.settings.grace_period_time)
            )

            telemetry.record_duration(QUERY_METHOD, _elapsed_ms(started))
            if result.ok:
                span.set_attribute("orders.found", len(result.order_ids))
                span.set_status(Status(StatusCode.OK))
            else:
                span.set_status(
                    Status(
                        StatusCode.ERROR,
                        f"Failed to retrieve confirmed grace period orders: {result.error}",
                    )
                )
            return result
