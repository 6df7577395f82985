"""
Order Processor — 猶予期間切れ注文のクエリ

注文テーブル(ordering.orders)から、猶予期間を過ぎても Submitted のままの
注文 ID を取り出す。

エラー方針:
  ストレージ側の失敗（接続・クエリ実行）は呼び出し元へ伝播させない。
  ログに残して「このサイクルは該当注文なし」として空の結果を返す。
  （イベント発行の失敗は逆に伝播する — grace_period.py 参照）
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .models import OrderStatus, orders

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderQueryResult:
    """クエリ結果。失敗時は order_ids が空で error に原因が入る。"""

    order_ids: list[int] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: BaseException) -> "OrderQueryResult":
        return cls(order_ids=[], error=error)


class OrderStore:
    """注文テーブルの読み取り専用アクセス"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def find_grace_period_orders(
        self,
        grace_period: timedelta,
        now: datetime | None = None,
    ) -> OrderQueryResult:
        """
        now - OrderDate >= grace_period かつ OrderStatus = 'Submitted' の注文 ID を
        昇順で返す。

        接続はこの呼び出しの間だけ取得し、どの経路でも必ず返却する。
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - grace_period

        stmt = (
            select(orders.c.Id)
            .where(orders.c.OrderDate <= cutoff)
            .where(orders.c.OrderStatus == OrderStatus.SUBMITTED.value)
            .order_by(orders.c.Id.asc())
        )

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                order_ids = [row.Id for row in result.fetchall()]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            # 接続タイムアウト(asyncio.TimeoutError)は 3.10 では OSError ではない
            logger.exception("Fatal error establishing database connection")
            return OrderQueryResult.failed(e)

        return OrderQueryResult(order_ids=order_ids)
