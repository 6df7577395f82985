"""
Order Processor — イベントバス

統合イベントを他サービスへ届ける出口。
配送保証（at-least-once など）はバス側の責任で、発行側は関知しない。

本番では Redis Pub/Sub に発行する。エンベロープは他サービスと同じ形:
    {"event_type": "...", "data": {...}}
"""

import json
import logging

import redis.asyncio as aioredis

from .events import IntegrationEvent

logger = logging.getLogger(__name__)


class EventBus:
    """発行インターフェース"""

    async def publish(self, event: IntegrationEvent) -> None:
        raise NotImplementedError


class RedisEventBus(EventBus):
    """Redis Pub/Sub へ発行するイベントバス"""

    def __init__(self, redis: aioredis.Redis, channel: str = "order_events"):
        self.redis = redis
        self.channel = channel

    async def publish(self, event: IntegrationEvent) -> None:
        # 失敗(redis.exceptions.RedisError 等)はそのまま呼び出し元へ伝播させる
        receivers = await self.redis.publish(
            self.channel,
            json.dumps(
                {
                    "event_type": event.event_type,
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
        logger.debug(
            "Published %s to %s (%s receivers)", event.event_type, self.channel, receivers
        )
