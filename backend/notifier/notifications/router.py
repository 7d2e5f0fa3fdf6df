# backend/notifier/notifications/router.py

"""
通知レイヤの HTTP エンドポイント。

- POST /recipients: 受信者の登録（同じ ID は上書き、受信箱は引き継ぐ）
- PUT /recipients/{id}/preferences: チャンネル有効フラグの更新
- GET /recipients/{id}/inbox: 受信箱の参照
- POST /notifications: 通知の送信（受信箱へ追記 → 各チャンネルへ配送）

未登録の受信者は 404 Not Found にマッピングする。
NotificationSystem は Depends(get_notification_system) で受け取り、テストでは差し替える。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from .directory import Recipient
from .errors import RecipientNotFoundError
from .factory import NotificationSystem, get_notification_system
from .schemas import (
    InboxResponse,
    NotificationSendRequest,
    NotificationSendResponse,
    Preferences,
    RecipientRegisterRequest,
    RecipientResponse,
)

router = APIRouter(tags=["notifications"])


def _to_response(recipient: Recipient) -> RecipientResponse:
    return RecipientResponse(
        id=recipient.id,
        name=recipient.name,
        contact_address=recipient.contact_address,
        preferences=recipient.preferences,
        inbox_size=len(recipient.inbox),
    )


def _not_found(exc: RecipientNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post(
    "/recipients",
    response_model=RecipientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="受信者を登録（同じ ID は上書き）",
)
def post_recipient(
    body: RecipientRegisterRequest,
    system: NotificationSystem = Depends(get_notification_system),
) -> RecipientResponse:
    recipient = system.register(
        body.id,
        body.name,
        body.contact_address,
        body.preferences,
    )
    return _to_response(recipient)


@router.put(
    "/recipients/{recipient_id}/preferences",
    response_model=RecipientResponse,
    summary="受信者のチャンネル有効フラグを更新",
)
def put_recipient_preferences(
    recipient_id: str,
    body: Preferences,
    system: NotificationSystem = Depends(get_notification_system),
) -> RecipientResponse:
    try:
        recipient = system.update_preferences(recipient_id, body)
    except RecipientNotFoundError as exc:
        raise _not_found(exc) from exc
    return _to_response(recipient)


@router.get(
    "/recipients/{recipient_id}/inbox",
    response_model=InboxResponse,
    summary="受信者の受信箱を取得",
)
def get_recipient_inbox(
    recipient_id: str,
    system: NotificationSystem = Depends(get_notification_system),
) -> InboxResponse:
    try:
        notifications = system.inbox(recipient_id)
    except RecipientNotFoundError as exc:
        raise _not_found(exc) from exc
    return InboxResponse(
        recipient_id=recipient_id,
        count=len(notifications),
        notifications=list(notifications),
    )


@router.post(
    "/notifications",
    response_model=NotificationSendResponse,
    summary="通知を受信箱に追加し、受信者設定に従って各チャンネルへ配送",
)
def post_notification(
    body: NotificationSendRequest,
    system: NotificationSystem = Depends(get_notification_system),
) -> NotificationSendResponse:
    """
    通知を 1件送信するエンドポイント。

    - 未登録の受信者 → 404 Not Found（受信箱にも追加しない）
    - チャンネル単位の配送失敗 → 200 のまま outcomes / failed_count で返す
    """
    notification = system.create_notification(
        body.title,
        body.body,
        body.icon_ref,
        body.recipient_id,
    )
    try:
        report = system.sender.send(notification)
    except RecipientNotFoundError as exc:
        raise _not_found(exc) from exc

    return NotificationSendResponse(
        recipient_id=report.recipient_id,
        created_at=notification.created_at,
        sent_count=report.sent_count,
        skipped_count=report.skipped_count,
        failed_count=report.failed_count,
        outcomes=report.outcomes,
    )
