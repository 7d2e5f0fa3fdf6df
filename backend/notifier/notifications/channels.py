# backend/notifier/notifications/channels.py

"""
チャンネル別の通知送信（Email / Push / SMS）。

各 ChannelSender は:
- RecipientDirectory から受信者を引き直し
- 自チャンネルの有効フラグだけを確認し
- 有効なら DeliveryHook（外部トランスポートの境界）に配送を依頼する

有効判定は Dispatcher に集約せず、各チャンネルが自分で持つ。
チャンネル固有のポリシー（おやすみ時間・レート制限など）は各サブクラスに追加する想定。

実際の SMTP / Push / SMS ゲートウェイ連携はこのモジュールの範囲外で、
DeliveryHook を実装した外部コンポーネントを差し込む。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Protocol

from .directory import RecipientDirectory
from .errors import ConfigurationError, DeliveryFault
from .schemas import (
    ChannelOutcome,
    ChannelStatus,
    Notification,
    NotificationChannel,
    Preferences,
)

logger = logging.getLogger(__name__)


class DeliveryHook(Protocol):
    """
    外部トランスポートへの配送インターフェース。

    配送に失敗した場合は任意の例外を投げてよい（ChannelSender 側で DeliveryFault に包む）。
    """

    def deliver(
        self,
        channel: NotificationChannel,
        contact_address: str,
        title: str,
        body: str,
    ) -> None:  # pragma: no cover - Protocol
        ...


class LoggingDeliveryHook:
    """
    配送内容を Python の logger に記録するだけの DeliveryHook。

    - デフォルト実装
    - 実際の外部サービスへの送信は行わない
    """

    def __init__(self, logger_: logging.Logger | None = None) -> None:
        self._logger = logger_ or logger

    def deliver(
        self,
        channel: NotificationChannel,
        contact_address: str,
        title: str,
        body: str,
    ) -> None:
        self._logger.info(
            "Sending %s notification: %s (to=%s)", channel.value, title, contact_address
        )


class ChannelSender(ABC):
    """
    チャンネル別 Sender の基底クラス。

    サブクラスは channel と is_enabled() だけを定義する。
    """

    channel: NotificationChannel

    def __init__(
        self,
        directory: RecipientDirectory,
        hook: Optional[DeliveryHook] = None,
    ) -> None:
        if directory is None:
            raise ConfigurationError(
                f"{type(self).__name__} requires a RecipientDirectory."
            )
        self._directory = directory
        self._hook: DeliveryHook = hook or LoggingDeliveryHook()

    @abstractmethod
    def is_enabled(self, preferences: Preferences) -> bool:
        """受信者設定でこのチャンネルが有効かどうか。"""

    def send(self, notification: Notification) -> ChannelOutcome:
        """
        通知 1件をこのチャンネルで配送する（無効ならスキップ）。

        :raises RecipientNotFoundError: 受信者が未登録の場合
        :raises DeliveryFault: DeliveryHook が失敗した場合
        """
        recipient = self._directory.lookup(notification.recipient_id)

        if not self.is_enabled(recipient.preferences):
            logger.debug(
                "Skipping %s notification for %s: channel disabled",
                self.channel.value,
                recipient.id,
            )
            return ChannelOutcome(channel=self.channel, status=ChannelStatus.SKIPPED)

        try:
            self._hook.deliver(
                self.channel,
                recipient.contact_address,
                notification.title,
                notification.body,
            )
        except DeliveryFault:
            raise
        except Exception as exc:
            raise DeliveryFault(self.channel, str(exc) or type(exc).__name__) from exc

        return ChannelOutcome(channel=self.channel, status=ChannelStatus.SENT)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class EmailChannelSender(ChannelSender):
    channel = NotificationChannel.EMAIL

    def is_enabled(self, preferences: Preferences) -> bool:
        return preferences.email_enabled


class PushChannelSender(ChannelSender):
    channel = NotificationChannel.PUSH

    def is_enabled(self, preferences: Preferences) -> bool:
        return preferences.push_enabled


class SmsChannelSender(ChannelSender):
    channel = NotificationChannel.SMS

    def is_enabled(self, preferences: Preferences) -> bool:
        return preferences.sms_enabled


SENDER_CLASSES = {
    NotificationChannel.EMAIL: EmailChannelSender,
    NotificationChannel.PUSH: PushChannelSender,
    NotificationChannel.SMS: SmsChannelSender,
}


def build_channel_senders(
    directory: RecipientDirectory,
    hook: Optional[DeliveryHook] = None,
    channels: Optional[Iterable[NotificationChannel]] = None,
) -> List[ChannelSender]:
    """
    指定チャンネル（省略時は email, push, sms の順）の Sender を生成する。

    全 Sender で同じ DeliveryHook を共有する。
    """
    if channels is None:
        channels = list(NotificationChannel)
    return [SENDER_CLASSES[NotificationChannel(ch)](directory, hook) for ch in channels]
