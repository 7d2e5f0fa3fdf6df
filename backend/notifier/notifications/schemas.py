# backend/notifier/notifications/schemas.py

"""
通知メッセージ・受信者設定・配送結果の共通スキーマ定義。

- 通知のチャンネル種別（email / push / sms）
- 受信者ごとのチャンネル有効フラグ（Preferences）
- 通知 1件分の不変レコード（Notification）
- チャンネルごとの配送結果と、その集約（ChannelOutcome / DispatchReport）
- HTTP API 用のリクエスト / レスポンスモデル

Notification / Preferences は生成後に変更しない（frozen）。
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import DispatchError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """デフォルトの時計。タイムゾーン付き UTC の現在時刻を返す。"""
    return datetime.now(timezone.utc)


class NotificationChannel(str, Enum):
    """
    通知の配送チャンネル種別。

    - EMAIL: メール
    - PUSH: プッシュ通知
    - SMS: ショートメッセージ
    """

    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


class Preferences(BaseModel):
    """
    受信者ごとのチャンネル有効フラグ。

    デフォルト値は持たない。3つのフラグはすべて明示的に指定する必要がある。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    email_enabled: bool = Field(..., description="メール通知を受け取るかどうか。")
    push_enabled: bool = Field(..., description="プッシュ通知を受け取るかどうか。")
    sms_enabled: bool = Field(..., description="SMS 通知を受け取るかどうか。")

    def is_enabled(self, channel: NotificationChannel) -> bool:
        if channel == NotificationChannel.EMAIL:
            return self.email_enabled
        if channel == NotificationChannel.PUSH:
            return self.push_enabled
        return self.sms_enabled


class Notification(BaseModel):
    """
    通知 1件分の不変レコード。

    同一内容の Notification が複数存在してもよい（再送など）。
    created_at は生成時に時計から取得する。テストでは create() に clock を渡して固定できる。
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="短いタイトル。")
    body: str = Field(..., description="本文。プレーンテキスト想定。")
    icon_ref: str = Field(..., description="アイコンの参照（URL や絵文字など）。")
    recipient_id: str = Field(..., description="RecipientDirectory 上の受信者 ID。")
    created_at: datetime = Field(
        default_factory=utc_now,
        description="通知生成時刻（UTC）。",
    )

    @classmethod
    def create(
        cls,
        title: str,
        body: str,
        icon_ref: str,
        recipient_id: str,
        *,
        clock: Clock = utc_now,
    ) -> "Notification":
        """注入された clock で created_at を確定させて Notification を生成する。"""
        return cls(
            title=title,
            body=body,
            icon_ref=icon_ref,
            recipient_id=recipient_id,
            created_at=clock(),
        )


class ChannelStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ChannelOutcome(BaseModel):
    """
    チャンネルごとの配送結果。
    """

    model_config = ConfigDict(frozen=True)

    channel: NotificationChannel = Field(..., description="対象チャンネル")
    status: ChannelStatus = Field(..., description="sent / skipped / failed / timeout")
    error: Optional[str] = Field(
        None,
        description="失敗時のエラー内容（正常時・スキップ時は None）",
    )

    @property
    def failed(self) -> bool:
        return self.status in (ChannelStatus.FAILED, ChannelStatus.TIMEOUT)


class DispatchReport(BaseModel):
    """
    1件の通知を全チャンネルにファンアウトした結果の集約。

    outcomes は Dispatcher に設定されたチャンネル順に並ぶ。
    """

    recipient_id: str
    outcomes: List[ChannelOutcome] = Field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ChannelStatus.SENT)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ChannelStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0

    @property
    def delivered_channels(self) -> List[NotificationChannel]:
        return [o.channel for o in self.outcomes if o.status == ChannelStatus.SENT]

    def raise_for_failures(self) -> None:
        """
        失敗したチャンネルが1つでもあれば DispatchError を投げる。

        Dispatcher 自体は失敗を集約して返すだけなので、
        失敗を例外として扱いたい呼び出し元がこのメソッドを使う。
        """
        failures = [o for o in self.outcomes if o.failed]
        if failures:
            raise DispatchError(self.recipient_id, failures)


# ---------------------------------------------------------------------------
# HTTP API 用モデル
# ---------------------------------------------------------------------------


class RecipientRegisterRequest(BaseModel):
    """
    POST /recipients のリクエストボディ。
    """

    id: str = Field(..., min_length=1, description="受信者 ID（一意）")
    name: str = Field(..., description="表示名")
    contact_address: str = Field(..., description="連絡先（メールアドレス等）")
    preferences: Preferences = Field(..., description="チャンネル有効フラグ")


class RecipientResponse(BaseModel):
    id: str
    name: str
    contact_address: str
    preferences: Preferences
    inbox_size: int = Field(..., ge=0, description="受信箱の通知件数")


class NotificationSendRequest(BaseModel):
    """
    POST /notifications のリクエストボディ。
    """

    title: str = Field(..., description="短いタイトル")
    body: str = Field(..., description="本文")
    icon_ref: str = Field(..., description="アイコンの参照")
    recipient_id: str = Field(..., min_length=1, description="送信先の受信者 ID")


class NotificationSendResponse(BaseModel):
    """
    POST /notifications のレスポンスボディ。

    集計サマリ＋各チャンネルの結果詳細を返す。
    """

    recipient_id: str
    created_at: datetime
    sent_count: int = Field(..., ge=0, description="配送に成功したチャンネル数")
    skipped_count: int = Field(..., ge=0, description="受信者設定によりスキップしたチャンネル数")
    failed_count: int = Field(..., ge=0, description="配送に失敗したチャンネル数")
    outcomes: List[ChannelOutcome] = Field(..., description="チャンネルごとの結果")


class InboxResponse(BaseModel):
    recipient_id: str
    count: int = Field(..., ge=0)
    notifications: List[Notification]
