# backend/tests/test_notifications_service.py

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List

import pytest

from notifier.notifications.channels import build_channel_senders
from notifier.notifications.errors import (
    ConfigurationError,
    DeliveryFault,
    DispatchError,
    RecipientNotFoundError,
)
from notifier.notifications.schemas import (
    ChannelOutcome,
    ChannelStatus,
    Notification,
    NotificationChannel,
    Preferences,
)
from notifier.notifications.service import Dispatcher, NotificationSender


def _notification(title: str = "System Alert", recipient_id: str = "u123") -> Notification:
    return Notification(
        title=title,
        body="Your CPU is on fire.",
        icon_ref="fire-icon",
        recipient_id=recipient_id,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class DummySender:
    def __init__(self, channel: NotificationChannel, calls: List[str]) -> None:
        self.channel = channel
        self._calls = calls

    def send(self, notification: Notification) -> ChannelOutcome:
        self._calls.append(self.channel.value)
        return ChannelOutcome(channel=self.channel, status=ChannelStatus.SENT)


class FailingSender:
    def __init__(self, channel: NotificationChannel) -> None:
        self.channel = channel

    def send(self, notification: Notification) -> ChannelOutcome:
        raise DeliveryFault(self.channel, "gateway rejected")


class BlockingSender:
    def __init__(self, channel: NotificationChannel, release: threading.Event) -> None:
        self.channel = channel
        self._release = release

    def send(self, notification: Notification) -> ChannelOutcome:
        self._release.wait(5)
        return ChannelOutcome(channel=self.channel, status=ChannelStatus.SENT)


def _sms_only() -> Preferences:
    return Preferences(email_enabled=False, push_enabled=False, sms_enabled=True)


# ----------------------------------------------------------------------
# Dispatcher
# ----------------------------------------------------------------------


def test_dispatcher_fanout_reports_in_sender_order() -> None:
    """
    Dispatcher が全 Sender を呼び出し、結果を Sender の並び順で返すことを確認。
    """
    calls: List[str] = []
    senders = [
        DummySender(NotificationChannel.EMAIL, calls),
        DummySender(NotificationChannel.PUSH, calls),
        DummySender(NotificationChannel.SMS, calls),
    ]

    with Dispatcher(senders) as dispatcher:
        report = dispatcher.dispatch(_notification())

    assert sorted(calls) == ["email", "push", "sms"]
    assert [o.channel for o in report.outcomes] == [
        NotificationChannel.EMAIL,
        NotificationChannel.PUSH,
        NotificationChannel.SMS,
    ]
    assert report.sent_count == 3
    assert report.ok


def test_dispatcher_aggregates_failures_without_stopping_others() -> None:
    """
    1チャンネルの失敗が他チャンネルの配送を止めないことを確認。
    """
    calls: List[str] = []
    senders = [
        DummySender(NotificationChannel.EMAIL, calls),
        FailingSender(NotificationChannel.PUSH),
        DummySender(NotificationChannel.SMS, calls),
    ]

    with Dispatcher(senders) as dispatcher:
        report = dispatcher.dispatch(_notification())

    assert sorted(calls) == ["email", "sms"]
    statuses = [o.status for o in report.outcomes]
    assert statuses == [ChannelStatus.SENT, ChannelStatus.FAILED, ChannelStatus.SENT]
    assert report.failed_count == 1
    assert "gateway rejected" in report.outcomes[1].error
    assert not report.ok

    with pytest.raises(DispatchError) as exc_info:
        report.raise_for_failures()
    assert [o.channel for o in exc_info.value.outcomes] == [NotificationChannel.PUSH]


def test_dispatcher_isolates_unexpected_exceptions() -> None:
    class ExplodingSender:
        channel = NotificationChannel.EMAIL

        def send(self, notification):
            raise RuntimeError("boom")

    calls: List[str] = []
    with Dispatcher([ExplodingSender(), DummySender(NotificationChannel.SMS, calls)]) as dispatcher:
        report = dispatcher.dispatch(_notification())

    assert report.outcomes[0].status == ChannelStatus.FAILED
    assert "RuntimeError" in report.outcomes[0].error
    assert calls == ["sms"]


def test_dispatcher_times_out_slow_channel() -> None:
    """
    遅いチャンネルがタイムアウト扱いになり、他チャンネルの結果は返ることを確認。
    """
    release = threading.Event()
    calls: List[str] = []
    senders = [
        BlockingSender(NotificationChannel.EMAIL, release),
        DummySender(NotificationChannel.SMS, calls),
    ]
    dispatcher = Dispatcher(senders, timeout_seconds=0.2)
    try:
        report = dispatcher.dispatch(_notification())
    finally:
        release.set()
        dispatcher.close()

    assert report.outcomes[0].status == ChannelStatus.TIMEOUT
    assert report.outcomes[1].status == ChannelStatus.SENT
    assert report.failed_count == 1
    assert calls == ["sms"]


def test_dispatcher_propagates_not_found(directory, hook) -> None:
    with Dispatcher(build_channel_senders(directory, hook)) as dispatcher:
        with pytest.raises(RecipientNotFoundError):
            dispatcher.dispatch(_notification(recipient_id="nobody"))

    assert hook.deliveries == []


def test_dispatcher_rejects_empty_senders() -> None:
    with pytest.raises(ConfigurationError):
        Dispatcher([])


@pytest.mark.parametrize("timeout", [0, -1.0, float("inf"), float("nan")])
def test_dispatcher_rejects_invalid_timeout(timeout) -> None:
    with pytest.raises(ConfigurationError):
        Dispatcher([DummySender(NotificationChannel.SMS, [])], timeout_seconds=timeout)


def test_dispatcher_rejects_zero_concurrency() -> None:
    with pytest.raises(ConfigurationError):
        Dispatcher([DummySender(NotificationChannel.SMS, [])], max_concurrency_per_channel=0)


def test_hung_channel_does_not_starve_other_channels() -> None:
    """
    固まったチャンネルが同時実行枠を使い切っても、他チャンネルは毎回配送されること。

    枠を使い切った後の email は実行されず、タイムアウトではなく FAILED（saturated）で返る。
    """
    release = threading.Event()
    calls: List[str] = []
    senders = [
        BlockingSender(NotificationChannel.EMAIL, release),
        DummySender(NotificationChannel.SMS, calls),
    ]
    dispatcher = Dispatcher(senders, timeout_seconds=0.1, max_concurrency_per_channel=2)
    try:
        reports = [dispatcher.dispatch(_notification(f"n-{i}")) for i in range(6)]
    finally:
        release.set()
        dispatcher.close()

    sms_statuses = [r.outcomes[1].status for r in reports]
    email_statuses = [r.outcomes[0].status for r in reports]

    assert sms_statuses == [ChannelStatus.SENT] * 6
    assert calls == ["sms"] * 6
    assert email_statuses[:2] == [ChannelStatus.TIMEOUT] * 2
    assert email_statuses[2:] == [ChannelStatus.FAILED] * 4
    assert all("saturated" in r.outcomes[0].error for r in reports[2:])


def test_dispatch_after_close_raises() -> None:
    calls: List[str] = []
    dispatcher = Dispatcher([DummySender(NotificationChannel.SMS, calls)])
    dispatcher.close()

    with pytest.raises(ConfigurationError):
        dispatcher.dispatch(_notification())

    assert dispatcher.closed
    assert calls == []


# ----------------------------------------------------------------------
# NotificationSender
# ----------------------------------------------------------------------


@pytest.fixture
def sender(directory, hook):
    dispatcher = Dispatcher(build_channel_senders(directory, hook))
    yield NotificationSender(dispatcher, directory)
    dispatcher.close()


def test_send_system_alert_scenario(directory, hook, sender) -> None:
    """
    email=false / push=false / sms=true の受信者に1件送ると、
    受信箱に1件入り、配送は sms の1回だけになることを確認。
    """
    directory.register_user("u123", "Abhishek", "abhi@example.com", _sms_only())
    notification = _notification()

    report = sender.send(notification)

    inbox = directory.lookup("u123").inbox
    assert inbox.items() == (notification,)
    assert hook.channels() == ["sms"]
    assert report.delivered_channels == [NotificationChannel.SMS]
    assert report.sent_count == 1
    assert report.skipped_count == 2


def test_send_appends_as_last_inbox_entry(directory, sender) -> None:
    directory.register_user("u1", "A", "a@example.com", _sms_only())

    for title in ("one", "two", "three"):
        notification = _notification(title, "u1")
        sender.send(notification)
        assert directory.lookup("u1").inbox.last() == notification

    assert [n.title for n in directory.lookup("u1").inbox] == ["one", "two", "three"]


def test_send_unknown_recipient_touches_nothing(directory, hook, sender) -> None:
    """
    未登録受信者への送信は RecipientNotFoundError となり、受信箱にもチャンネルにも触れないこと。
    """
    directory.register_user("u1", "A", "a@example.com", _sms_only())

    with pytest.raises(RecipientNotFoundError):
        sender.send(_notification(recipient_id="ghost"))

    assert len(directory.lookup("u1").inbox) == 0
    assert hook.deliveries == []


def test_inbox_append_happens_even_if_channel_fails(directory) -> None:
    class BrokenHook:
        def deliver(self, channel, contact_address, title, body) -> None:
            raise TimeoutError("sms gateway timeout")

    directory.register_user("u1", "A", "a@example.com", _sms_only())
    dispatcher = Dispatcher(build_channel_senders(directory, BrokenHook()))
    try:
        report = NotificationSender(dispatcher, directory).send(_notification(recipient_id="u1"))
    finally:
        dispatcher.close()

    assert len(directory.lookup("u1").inbox) == 1
    assert report.failed_count == 1
    assert report.outcomes[2].channel == NotificationChannel.SMS
    assert report.outcomes[2].status == ChannelStatus.FAILED


def test_reregistration_changes_effective_preferences(directory, hook, sender) -> None:
    directory.register_user("u1", "A", "a@example.com", _sms_only())
    first = _notification("first", "u1")
    sender.send(first)

    directory.register_user(
        "u1", "A", "a@example.com",
        Preferences(email_enabled=True, push_enabled=False, sms_enabled=False),
    )
    second = _notification("second", "u1")
    sender.send(second)

    assert hook.channels() == ["sms", "email"]
    assert directory.lookup("u1").inbox.items() == (first, second)


def test_concurrent_sends_to_same_recipient(directory, hook, sender) -> None:
    """
    同一受信者への100件の並行送信で、受信箱がちょうど100件になることを確認。
    """
    directory.register_user("u1", "A", "a@example.com", _sms_only())
    notifications = [_notification(f"n-{i}", "u1") for i in range(100)]

    with ThreadPoolExecutor(max_workers=16) as pool:
        reports = list(pool.map(sender.send, notifications))

    inbox = directory.lookup("u1").inbox.items()
    assert len(inbox) == 100
    assert sorted(n.title for n in inbox) == sorted(n.title for n in notifications)
    assert all(r.ok for r in reports)
    assert hook.channels().count("sms") == 100


def test_notification_sender_requires_collaborators(directory) -> None:
    with pytest.raises(ConfigurationError):
        NotificationSender(None, directory)  # type: ignore[arg-type]


def test_send_after_close_leaves_inbox_untouched(directory, hook) -> None:
    """
    close() 済みの Dispatcher では ConfigurationError となり、受信箱にも追記されないこと。
    """
    directory.register_user("u1", "A", "a@example.com", _sms_only())
    dispatcher = Dispatcher(build_channel_senders(directory, hook))
    sender = NotificationSender(dispatcher, directory)
    dispatcher.close()

    with pytest.raises(ConfigurationError):
        sender.send(_notification(recipient_id="u1"))

    assert len(directory.lookup("u1").inbox) == 0
    assert hook.deliveries == []
