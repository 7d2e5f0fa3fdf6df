# backend/notifier/notifications/directory.py

"""
受信者ディレクトリと受信箱（Inbox）。

- Inbox: 受信者 1人分の通知ログ。追記のみ。受信者ごとのロックで追記順序を保証する
- Recipient: 受信者 1人分のレコード（ID / 表示名 / 連絡先 / Preferences / Inbox）
- RecipientDirectory: 受信者 ID → Recipient の対応表

RecipientDirectory はグローバルなシングルトンではなく、必要なコンポーネントへ
コンストラクタで明示的に渡す前提。テストごとに新しいインスタンスを作れる。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import RecipientNotFoundError
from .schemas import Notification, NotificationChannel, Preferences

logger = logging.getLogger(__name__)


class Inbox:
    """
    受信者 1人分の通知ログ。

    - append のみ。削除・既読管理・件数上限はない
    - 同一受信者への並行 append はこの Inbox 専用のロックで直列化する
    """

    def __init__(self, recipient_id: str) -> None:
        self.recipient_id = recipient_id
        self._notifications: List[Notification] = []
        self._lock = threading.Lock()

    def append(self, notification: Notification) -> None:
        with self._lock:
            self._notifications.append(notification)

    def items(self) -> Tuple[Notification, ...]:
        """現時点のスナップショットを返す。"""
        with self._lock:
            return tuple(self._notifications)

    def last(self) -> Optional[Notification]:
        with self._lock:
            return self._notifications[-1] if self._notifications else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._notifications)

    def __iter__(self) -> Iterator[Notification]:
        return iter(self.items())

    def __repr__(self) -> str:
        return f"Inbox(recipient_id={self.recipient_id!r}, size={len(self)})"


@dataclass(frozen=True)
class Recipient:
    """
    通知を受け取る登録済みユーザー。

    Preferences と Inbox は生成時に確定する。設定変更は
    RecipientDirectory.update_preferences で新しい Recipient に差し替えて行う。
    """

    id: str
    name: str
    contact_address: str
    preferences: Preferences
    inbox: Inbox = field(compare=False, repr=False)

    def channel_enabled(self, channel: NotificationChannel) -> bool:
        return self.preferences.is_enabled(channel)


class RecipientDirectory:
    """
    受信者 ID → Recipient の対応表。

    - register は upsert（同じ ID は後勝ち）
    - 完成済みの Recipient だけを公開するので、読み手が構築途中の状態を見ることはない
    - エントリの削除はしない
    """

    def __init__(self) -> None:
        self._recipients: Dict[str, Recipient] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # 登録系
    # ------------------------------------------------------------------
    def register(self, recipient: Recipient) -> Recipient:
        """
        Recipient をそのまま登録（上書き）する。
        """
        with self._lock:
            self._recipients[recipient.id] = recipient
        logger.debug("Registered recipient %s", recipient.id)
        return recipient

    def register_user(
        self,
        recipient_id: str,
        name: str,
        contact_address: str,
        preferences: Preferences,
    ) -> Recipient:
        """
        受信者を生成して登録する。

        既に同じ ID が登録されている場合は既存の Inbox を引き継ぐ。
        Preferences などは新しい値で置き換わるが、過去の通知履歴は失われない。
        """
        with self._lock:
            existing = self._recipients.get(recipient_id)
            inbox = existing.inbox if existing is not None else Inbox(recipient_id)
            recipient = Recipient(
                id=recipient_id,
                name=name,
                contact_address=contact_address,
                preferences=preferences,
                inbox=inbox,
            )
            self._recipients[recipient_id] = recipient

        if existing is not None:
            logger.info("Re-registered recipient %s (inbox kept)", recipient_id)
        else:
            logger.info("Registered recipient %s", recipient_id)
        return recipient

    def update_preferences(self, recipient_id: str, preferences: Preferences) -> Recipient:
        """
        登録済み受信者の Preferences だけを差し替える。

        :raises RecipientNotFoundError: 未登録の ID の場合
        """
        with self._lock:
            current = self._recipients.get(recipient_id)
            if current is None:
                raise RecipientNotFoundError(recipient_id)
            updated = replace(current, preferences=preferences)
            self._recipients[recipient_id] = updated

        logger.info("Updated preferences for recipient %s", recipient_id)
        return updated

    # ------------------------------------------------------------------
    # 参照系
    # ------------------------------------------------------------------
    def lookup(self, recipient_id: str) -> Recipient:
        """
        受信者を取得する。

        :raises RecipientNotFoundError: 未登録の ID の場合（None は返さない）
        """
        with self._lock:
            recipient = self._recipients.get(recipient_id)
        if recipient is None:
            raise RecipientNotFoundError(recipient_id)
        return recipient

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._recipients)

    def __contains__(self, recipient_id: object) -> bool:
        with self._lock:
            return recipient_id in self._recipients

    def __len__(self) -> int:
        with self._lock:
            return len(self._recipients)
