"""
Order Processor — 設定

他のサービスと同じく環境変数から設定を読む。
起動時に一度だけ読み込み、プロセスの生存期間中は変更しない。
"""

import os

from typing import Literal

from pydantic import BaseModel, ConfigDict, PositiveInt, ValidationError

from .errors import ConfigurationError


class BackgroundTaskSettings(BaseModel):
    """猶予期間チェックの設定"""

    model_config = ConfigDict(frozen=True)

    check_update_time: PositiveInt   # 秒: ポーリング間隔
    grace_period_time: PositiveInt   # 分: Submitted のまま待つ猶予


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str
    redis_url: str = "redis://localhost:6379"
    event_bus_channel: str = "order_events"
    orders_schema: str | None = "ordering"
    otlp_endpoint: str | None = None
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    background: BackgroundTaskSettings


def load_settings(environ=None) -> Settings:
    """
    環境変数から Settings を組み立てる。

    必須: DATABASE_URL, CHECK_UPDATE_TIME, GRACE_PERIOD_TIME
    欠けている・不正な値は ConfigurationError になる（ループ開始前に失敗させる）。
    """
    env = os.environ if environ is None else environ

    missing = [
        name
        for name in ("DATABASE_URL", "CHECK_UPDATE_TIME", "GRACE_PERIOD_TIME")
        if not env.get(name)
    ]
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    # 空文字の ORDERS_SCHEMA はスキーマ無し（デフォルトスキーマ）扱い
    orders_schema = env.get("ORDERS_SCHEMA", "ordering") or None

    try:
        return Settings(
            database_url=env["DATABASE_URL"],
            redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
            event_bus_channel=env.get("EVENT_BUS_CHANNEL", "order_events"),
            orders_schema=orders_schema,
            otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            background=BackgroundTaskSettings(
                check_update_time=env["CHECK_UPDATE_TIME"],
                grace_period_time=env["GRACE_PERIOD_TIME"],
            ),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
