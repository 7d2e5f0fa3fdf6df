# backend/notifier/notifications/factory.py

"""
通知システムの組み立て（ブートストラップ）と共有インスタンス管理。

- build_notification_system: Directory / ChannelSender / Dispatcher / NotificationSender を
  明示的に配線して NotificationSystem を返す
- get_notification_system: HTTP レイヤなどアプリ全体で共有するインスタンスを返す
- reset_state: テスト用に共有インスタンスを破棄する
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from .channels import DeliveryHook, build_channel_senders
from .config import NotificationSettings, get_notification_settings
from .directory import Recipient, RecipientDirectory
from .schemas import Clock, DispatchReport, Notification, Preferences, utc_now
from .service import Dispatcher, NotificationSender

logger = logging.getLogger(__name__)

_notification_system: Optional["NotificationSystem"] = None


class NotificationSystem:
    """
    登録 API と送信 API をまとめたファサード。

    各コンポーネントはコンストラクタで受け取ったものだけを使い、
    グローバルな状態には依存しない。
    """

    def __init__(
        self,
        directory: RecipientDirectory,
        dispatcher: Dispatcher,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.directory = directory
        self.dispatcher = dispatcher
        self.sender = NotificationSender(dispatcher, directory)
        self._clock = clock

    def register(
        self,
        recipient_id: str,
        name: str,
        contact_address: str,
        preferences: Preferences,
    ) -> Recipient:
        return self.directory.register_user(recipient_id, name, contact_address, preferences)

    def update_preferences(self, recipient_id: str, preferences: Preferences) -> Recipient:
        return self.directory.update_preferences(recipient_id, preferences)

    def send(
        self,
        title: str,
        body: str,
        icon_ref: str,
        recipient_id: str,
    ) -> DispatchReport:
        """
        通知を生成して送信する。

        :raises RecipientNotFoundError: 未登録の受信者の場合（受信箱・チャンネルには一切触れない）
        """
        notification = self.create_notification(title, body, icon_ref, recipient_id)
        return self.sender.send(notification)

    def create_notification(
        self,
        title: str,
        body: str,
        icon_ref: str,
        recipient_id: str,
    ) -> Notification:
        return Notification.create(title, body, icon_ref, recipient_id, clock=self._clock)

    def inbox(self, recipient_id: str) -> Tuple[Notification, ...]:
        return self.directory.lookup(recipient_id).inbox.items()

    def close(self) -> None:
        self.dispatcher.close()


def build_notification_system(
    settings: Optional[NotificationSettings] = None,
    *,
    directory: Optional[RecipientDirectory] = None,
    hook: Optional[DeliveryHook] = None,
    clock: Clock = utc_now,
) -> NotificationSystem:
    """
    設定に従って NotificationSystem を組み立てる。

    settings を省略した場合は環境変数から読み出す。
    """
    settings = settings or get_notification_settings()
    directory = directory if directory is not None else RecipientDirectory()

    senders = build_channel_senders(directory, hook, settings.enabled_channels)
    dispatcher = Dispatcher(
        senders,
        timeout_seconds=settings.channel_timeout_seconds,
        max_concurrency_per_channel=settings.channel_max_concurrency,
    )

    logger.info(
        "Notification system ready: channels=%s timeout=%.1fs",
        ",".join(s.channel.value for s in senders),
        settings.channel_timeout_seconds,
    )
    return NotificationSystem(directory, dispatcher, clock=clock)


def get_notification_system() -> NotificationSystem:
    """
    アプリ全体で共有する NotificationSystem を返す。

    初回呼び出し時にのみ生成し、それ以降は同じインスタンスを返す。
    """
    global _notification_system
    if _notification_system is None:
        _notification_system = build_notification_system()
    return _notification_system


def reset_state() -> None:
    """
    テスト用に共有 NotificationSystem をリセットする。
    """
    global _notification_system
    if _notification_system is not None:
        _notification_system.close()
    _notification_system = None
