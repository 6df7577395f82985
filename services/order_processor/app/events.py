"""
Order Processor — 統合イベント定義

統合イベント(Integration Event)はサービス間でやり取りするメッセージ。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationEvent(BaseModel):
    """すべての統合イベントの共通部分（ID と生成時刻）"""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    creation_date: datetime = Field(default_factory=_utcnow)

    @property
    def event_type(self) -> str:
        return type(self).__name__


class GracePeriodConfirmedIntegrationEvent(IntegrationEvent):
    """注文の猶予期間が過ぎた（キャンセルされずに Submitted のまま）"""
    order_id: int
