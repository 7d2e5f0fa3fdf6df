# backend/notifier/notifications/service.py

"""
通知のファンアウトと送信オーケストレーション。

- Dispatcher: 設定された全 ChannelSender に通知をファンアウトする
- NotificationSender: 受信箱への追記 → Dispatcher 呼び出し、を行う唯一の入口

失敗ポリシー:
- チャンネル単位の配送失敗（DeliveryFault / タイムアウト / 同時実行枠の枯渇）は
  集約して DispatchReport で返す。1チャンネルの失敗が他チャンネルの配送を止めることはない。
- RecipientNotFoundError はデータ整合性エラーとして呼び出し元にそのまま伝播させる。
- 自動リトライは行わない。
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Iterable, List, Optional, Sequence

from .channels import ChannelSender
from .directory import RecipientDirectory
from .errors import (
    ChannelTimeoutError,
    ConfigurationError,
    DeliveryFault,
    RecipientNotFoundError,
)
from .schemas import ChannelOutcome, ChannelStatus, DispatchReport, Notification

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TIMEOUT_SECONDS = 5.0
DEFAULT_CHANNEL_MAX_CONCURRENCY = 4


class _ChannelLane:
    """
    1チャンネル専用のスレッドプールと同時実行枠。

    枠の数とワーカー数を一致させているので、枠を確保できた送信はキュー待ちせずに開始する。
    タイムアウト後もバックグラウンドで走り続ける送信は、このチャンネルの枠だけを消費する。
    """

    def __init__(self, sender: ChannelSender, max_concurrency: int) -> None:
        self.sender = sender
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency,
            thread_name_prefix=f"notify-{sender.channel.value}",
        )

    def try_submit(
        self,
        notification: Notification,
        wait_seconds: Optional[float] = None,
    ) -> Optional["_ChannelRun"]:
        """
        枠が空いていれば送信を開始する。

        wait_seconds を指定した場合はその時間だけ枠の解放を待つ。枠を確保できなければ None。
        """
        if wait_seconds is None:
            acquired = self._slots.acquire(blocking=False)
        else:
            acquired = self._slots.acquire(timeout=max(wait_seconds, 0.0))
        if not acquired:
            return None
        run = _ChannelRun()
        try:
            run.future = self._executor.submit(self._run, notification, run)
        except BaseException:
            self._slots.release()
            raise
        return run

    def release_unstarted(self, run: "_ChannelRun") -> None:
        if run.future is not None and run.future.cancel():
            self._slots.release()

    def _run(self, notification: Notification, run: "_ChannelRun") -> ChannelOutcome:
        run.started_at = time.monotonic()
        run.started.set()
        try:
            return self.sender.send(notification)
        finally:
            self._slots.release()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class _ChannelRun:
    def __init__(self) -> None:
        self.future: Optional[Future] = None
        self.started = threading.Event()
        self.started_at: Optional[float] = None


class Dispatcher:
    """
    複数の ChannelSender に通知をファンアウトするサービス。

    - Sender の並びは生成時に固定（後から追加・削除はできない）
    - 各チャンネルは専用のスレッドプールで並行に実行し、全チャンネルの完了
      （またはタイムアウト）を待ってから dispatch() を返す
    - タイムアウトは各チャンネルの送信が実際に開始した時点から数える
    - 同時実行枠が timeout_seconds 以内に空かないチャンネルは実行せず、
      FAILED（channel saturated）として返す
    - 結果は Sender の並び順で DispatchReport にまとめる
    """

    def __init__(
        self,
        senders: Iterable[ChannelSender],
        *,
        timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT_SECONDS,
        max_concurrency_per_channel: int = DEFAULT_CHANNEL_MAX_CONCURRENCY,
    ) -> None:
        self._senders: tuple[ChannelSender, ...] = tuple(senders)
        if not self._senders:
            raise ConfigurationError("Dispatcher requires at least one channel sender.")
        if not math.isfinite(timeout_seconds) or timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds must be a positive finite number, got {timeout_seconds!r}."
            )
        if max_concurrency_per_channel < 1:
            raise ConfigurationError(
                "max_concurrency_per_channel must be at least 1, "
                f"got {max_concurrency_per_channel!r}."
            )

        self._timeout_seconds = float(timeout_seconds)
        self._lanes: tuple[_ChannelLane, ...] = tuple(
            _ChannelLane(sender, max_concurrency_per_channel) for sender in self._senders
        )
        self._closed = False

    @property
    def senders(self) -> Sequence[ChannelSender]:
        return self._senders

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # 公開 API
    # ------------------------------------------------------------------
    def dispatch(self, notification: Notification) -> DispatchReport:
        """
        全 ChannelSender に通知を送り、結果を集約して返す。

        :raises RecipientNotFoundError: いずれかの Sender が受信者を解決できなかった場合
        :raises ConfigurationError: close() 済みの Dispatcher で呼び出された場合
        """
        if self._closed:
            raise ConfigurationError("Dispatcher is closed.")

        deadline = time.monotonic() + self._timeout_seconds
        runs = [lane.try_submit(notification) for lane in self._lanes]
        # 枠が埋まっていたチャンネルだけ、他チャンネルの送信を走らせたまま解放を待つ
        for index, lane in enumerate(self._lanes):
            if runs[index] is None:
                runs[index] = lane.try_submit(notification, deadline - time.monotonic())

        outcomes: List[ChannelOutcome] = []
        not_found: Optional[RecipientNotFoundError] = None
        for lane, run in zip(self._lanes, runs):
            try:
                outcomes.append(self._collect(lane, run))
            except RecipientNotFoundError as exc:
                not_found = not_found or exc

        if not_found is not None:
            raise not_found

        report = DispatchReport(recipient_id=notification.recipient_id, outcomes=outcomes)
        logger.info(
            "Dispatched '%s' to %s: sent=%d skipped=%d failed=%d",
            notification.title,
            notification.recipient_id,
            report.sent_count,
            report.skipped_count,
            report.failed_count,
        )
        return report

    def close(self) -> None:
        """全チャンネルのスレッドプールを停止する。実行中の送信の完了は待たない。"""
        self._closed = True
        for lane in self._lanes:
            lane.close()

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------
    def _failed(self, lane: _ChannelLane, message: str) -> ChannelOutcome:
        return ChannelOutcome(
            channel=lane.sender.channel,
            status=ChannelStatus.FAILED,
            error=message,
        )

    def _collect(self, lane: _ChannelLane, run: Optional[_ChannelRun]) -> ChannelOutcome:
        channel = lane.sender.channel
        if run is None:
            logger.warning("Channel %s is saturated; send not attempted", channel.value)
            return self._failed(lane, f"[{channel.value}] channel saturated; send not attempted")

        if not run.started.wait(self._timeout_seconds):
            lane.release_unstarted(run)
            logger.warning("Channel %s send did not start in time", channel.value)
            return self._failed(lane, f"[{channel.value}] send did not start in time")

        remaining = run.started_at + self._timeout_seconds - time.monotonic()
        try:
            return run.future.result(timeout=max(remaining, 0.0))
        except FutureTimeoutError:
            # 実行中の送信はバックグラウンドで完了させる（このチャンネルの枠だけを消費する）
            fault = ChannelTimeoutError(
                channel,
                f"send did not complete within {self._timeout_seconds:.1f}s",
            )
            logger.warning("Channel send timed out: %s", fault)
            return ChannelOutcome(
                channel=channel,
                status=ChannelStatus.TIMEOUT,
                error=str(fault),
            )
        except RecipientNotFoundError:
            raise
        except DeliveryFault as exc:
            logger.exception("Channel sender failed. Continuing with others.")
            return self._failed(lane, str(exc))
        except Exception as exc:  # noqa: BLE001 - 1チャンネルの失敗で他チャンネルを止めない
            logger.exception("Channel sender raised unexpectedly. Continuing with others.")
            return self._failed(lane, f"{type(exc).__name__}: {exc}")


class NotificationSender:
    """
    通知送信の唯一の入口。

    send() の処理順序:
    1. RecipientDirectory で受信者を解決（未登録なら RecipientNotFoundError）
    2. 受信者の Inbox に追記
    3. Dispatcher で全チャンネルにファンアウト

    Inbox への追記は必ず配送より先に行うため、チャンネル配送が失敗しても
    通知は受信箱から参照できる。close() 済みの Dispatcher では受信箱にも追記しない。
    """

    def __init__(self, dispatcher: Dispatcher, directory: RecipientDirectory) -> None:
        if dispatcher is None:
            raise ConfigurationError("NotificationSender requires a Dispatcher.")
        if directory is None:
            raise ConfigurationError("NotificationSender requires a RecipientDirectory.")
        self._dispatcher = dispatcher
        self._directory = directory

    def send(self, notification: Notification) -> DispatchReport:
        if self._dispatcher.closed:
            raise ConfigurationError("Cannot send: dispatcher is closed.")
        recipient = self._directory.lookup(notification.recipient_id)
        recipient.inbox.append(notification)
        return self._dispatcher.dispatch(notification)
