# backend/notifier/notifications/config.py

"""
通知レイヤの設定値読み出しモジュール。

- 環境変数からチャンネル送信のタイムアウトと有効チャンネルを取得する
- 未設定の場合は「全チャンネル有効・タイムアウト 5秒」に倒す
- 外部トランスポートの認証情報などはここでは扱わない
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from notifier.utils.config import get_env

from .schemas import NotificationChannel
from .service import DEFAULT_CHANNEL_MAX_CONCURRENCY, DEFAULT_CHANNEL_TIMEOUT_SECONDS


@dataclass
class NotificationSettings:
    """
    通知ディスパッチに関する設定値のまとまり。
    """

    channel_timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT_SECONDS
    channel_max_concurrency: int = DEFAULT_CHANNEL_MAX_CONCURRENCY
    enabled_channels: List[NotificationChannel] = field(
        default_factory=lambda: list(NotificationChannel)
    )


def _get_env_float(name: str, default: float) -> float:
    """
    正の浮動小数の環境変数を取得するヘルパー。

    不正な値が入っていた場合は RuntimeError にする。
    """
    raw: Optional[str] = get_env(name, required=False)
    if raw is None:
        return default

    try:
        value = float(raw)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"Invalid float value for env var {name}: {raw!r}"
        ) from exc

    if not math.isfinite(value) or value <= 0:
        raise RuntimeError(f"Env var {name} must be a positive finite number, got {raw!r}")
    return value


def _get_env_int(name: str, default: int) -> int:
    """
    1 以上の整数の環境変数を取得するヘルパー。

    不正な値が入っていた場合は RuntimeError にする。
    """
    raw = get_env(name, required=False)
    if raw is None:
        return default

    try:
        value = int(raw)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"Invalid integer value for env var {name}: {raw!r}"
        ) from exc

    if value < 1:
        raise RuntimeError(f"Env var {name} must be at least 1, got {raw!r}")
    return value


def _get_env_channels(name: str) -> List[NotificationChannel]:
    """
    カンマ区切りのチャンネル名リストを取得する。

    例: "email,sms" → [EMAIL, SMS]
    """
    raw = get_env(name, required=False)
    if raw is None:
        return list(NotificationChannel)

    channels: List[NotificationChannel] = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            channel = NotificationChannel(part)
        except ValueError as exc:
            raise RuntimeError(
                f"Unknown notification channel in env var {name}: {part!r}"
            ) from exc
        if channel not in channels:
            channels.append(channel)
    return channels


def get_notification_settings() -> NotificationSettings:
    """
    NotificationSettings を環境変数から構築して返す。

    任意:
      - NOTIFY_CHANNEL_TIMEOUT_SECONDS（デフォルト 5秒）
      - NOTIFY_CHANNEL_MAX_CONCURRENCY（チャンネルごとの同時送信数, デフォルト 4）
      - NOTIFY_ENABLED_CHANNELS（デフォルト "email,push,sms"）
    """
    return NotificationSettings(
        channel_timeout_seconds=_get_env_float(
            "NOTIFY_CHANNEL_TIMEOUT_SECONDS",
            default=DEFAULT_CHANNEL_TIMEOUT_SECONDS,
        ),
        channel_max_concurrency=_get_env_int(
            "NOTIFY_CHANNEL_MAX_CONCURRENCY",
            default=DEFAULT_CHANNEL_MAX_CONCURRENCY,
        ),
        enabled_channels=_get_env_channels("NOTIFY_ENABLED_CHANNELS"),
    )
