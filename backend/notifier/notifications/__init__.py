# backend/notifier/notifications/__init__.py

"""
通知レイヤ用モジュール群。

通知イベントを受信者の受信箱（Inbox）に記録し、受信者設定に応じて
email / push / sms の各チャンネルへファンアウトする。

構成イメージ:
- schemas: 通知・受信者設定・配送結果の共通スキーマ
- directory: 受信者ディレクトリと受信箱
- channels: チャンネル別 Sender と外部配送フック
- service: Dispatcher（ファンアウト）と NotificationSender（入口）
- config: 環境変数からの設定読み出し
- factory: 各コンポーネントの配線と共有インスタンス管理
- router: HTTP エンドポイント
"""

from .channels import (  # noqa: F401
    ChannelSender,
    DeliveryHook,
    EmailChannelSender,
    LoggingDeliveryHook,
    PushChannelSender,
    SmsChannelSender,
    build_channel_senders,
)
from .directory import Inbox, Recipient, RecipientDirectory  # noqa: F401
from .errors import (  # noqa: F401
    ChannelTimeoutError,
    ConfigurationError,
    DeliveryFault,
    DispatchError,
    NotificationError,
    RecipientNotFoundError,
)
from .factory import (  # noqa: F401
    NotificationSystem,
    build_notification_system,
    get_notification_system,
    reset_state,
)
from .schemas import (  # noqa: F401
    ChannelOutcome,
    ChannelStatus,
    DispatchReport,
    Notification,
    NotificationChannel,
    Preferences,
)
from .service import Dispatcher, NotificationSender  # noqa: F401
