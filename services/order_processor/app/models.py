"""
Order Processor — 注文テーブル定義

注文テーブルは Ordering サービスの持ち物。
ここでは読み取りに必要な列だけを SQLAlchemy Core で記述する。
"""

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table

ORDERING_SCHEMA = "ordering"

metadata = MetaData(schema=ORDERING_SCHEMA)


class OrderStatus(str, Enum):
    """
    注文の状態（Ordering サービスの状態名と同じ文字列）

    Submitted → AwaitingValidation → StockConfirmed → Paid → Shipped
    どの段階からも Cancelled に遷移し得る。
    """
    SUBMITTED = "Submitted"
    AWAITING_VALIDATION = "AwaitingValidation"
    STOCK_CONFIRMED = "StockConfirmed"
    PAID = "Paid"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


# 列名は Ordering 側のテーブルに合わせて PascalCase（引用符付き）
orders = Table(
    "orders",
    metadata,
    Column("Id", Integer, primary_key=True),
    Column("OrderDate", DateTime(timezone=True), nullable=False),
    Column("OrderStatus", String(30), nullable=False),
)
