"""
Order Processor — 例外定義

クエリ失敗はここの例外を使わない（OrderQueryResult で空の結果に落とす）。
発行失敗だけが例外として呼び出し元へ伝播する。
"""


class OrderProcessorError(Exception):
    """Order Processor の基底例外"""


class ConfigurationError(OrderProcessorError):
    """環境変数が欠けている、または値が不正"""


class PublishError(OrderProcessorError):
    """イベントバスへの発行に失敗した（ループにとって致命的）"""

    def __init__(self, order_id: int, event) -> None:
        super().__init__(f"Failed to publish grace period event for order {order_id}")
        self.order_id = order_id
        self.event = event
