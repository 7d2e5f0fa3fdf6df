# backend/notifier/notifications/errors.py

"""
通知レイヤで使用する例外群。

- RecipientNotFoundError: 未登録の受信者 ID を参照した（呼び出し元に必ず伝播させる）
- DeliveryFault: 外部チャンネルへの配送に失敗した（チャンネル単位で隔離・集約する）
- ConfigurationError: Dispatcher / ChannelSender の構成不備（生成時に拒否する）
- DispatchError: 集約された配送失敗をまとめて呼び出し元に通知したい場合に使う
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import ChannelOutcome, NotificationChannel


class NotificationError(Exception):
    """通知レイヤ全般の基底例外。"""


class RecipientNotFoundError(NotificationError, LookupError):
    """受信者 ID が RecipientDirectory に登録されていない場合の例外。"""

    def __init__(self, recipient_id: str) -> None:
        super().__init__(f"Recipient '{recipient_id}' is not registered.")
        self.recipient_id = recipient_id


class DeliveryFault(NotificationError):
    """外部チャンネル（SMTP / Push / SMS ゲートウェイ）への配送失敗。"""

    def __init__(self, channel: "NotificationChannel", message: str) -> None:
        super().__init__(f"[{channel.value}] {message}")
        self.channel = channel


class ChannelTimeoutError(DeliveryFault):
    """チャンネル送信がタイムアウトした場合の例外。"""


class ConfigurationError(NotificationError, ValueError):
    """Dispatcher や ChannelSender の構成が不正な場合の例外。"""


class DispatchError(NotificationError):
    """1件以上のチャンネルで配送に失敗したことを表す集約例外。"""

    def __init__(self, recipient_id: str, outcomes: Sequence["ChannelOutcome"]) -> None:
        channels = ", ".join(o.channel.value for o in outcomes)
        super().__init__(
            f"Delivery failed for recipient '{recipient_id}' on channel(s): {channels}"
        )
        self.recipient_id = recipient_id
        self.outcomes = list(outcomes)
