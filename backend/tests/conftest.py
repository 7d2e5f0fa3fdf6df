# backend/tests/conftest.py
"""
Pytest configuration for the notifier backend tests.

- Ensures that the project root (backend/) is added to sys.path
  so that `import notifier.*` works correctly in tests.
- Clears notification env vars so each test starts from the defaults.
- Provides a recording delivery hook and a fresh directory per test.
"""

import sys
import threading
from pathlib import Path
from typing import List, Tuple

import pytest


def _ensure_project_root_in_sys_path() -> None:
    # This file is located at: backend/tests/conftest.py
    # parents[1] -> backend/
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)

    if project_root_str not in sys.path:
        # Insert at the beginning so it has priority over site-packages, etc.
        sys.path.insert(0, project_root_str)


_ensure_project_root_in_sys_path()

from notifier.notifications.directory import RecipientDirectory  # noqa: E402
from notifier.notifications.factory import reset_state  # noqa: E402
from notifier.notifications.schemas import NotificationChannel  # noqa: E402


class RecordingHook:
    """
    実際の外部トランスポートの代わりに、配送呼び出しを記録するテスト用フック。
    """

    def __init__(self) -> None:
        self.deliveries: List[Tuple[NotificationChannel, str, str, str]] = []
        self._lock = threading.Lock()

    def deliver(self, channel, contact_address, title, body) -> None:
        with self._lock:
            self.deliveries.append((channel, contact_address, title, body))

    def channels(self) -> List[str]:
        return [d[0].value for d in self.deliveries]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("NOTIFY_CHANNEL_TIMEOUT_SECONDS", raising=False)
    monkeypatch.delenv("NOTIFY_ENABLED_CHANNELS", raising=False)
    monkeypatch.delenv("NOTIFY_CHANNEL_MAX_CONCURRENCY", raising=False)
    yield
    reset_state()


@pytest.fixture
def hook() -> RecordingHook:
    return RecordingHook()


@pytest.fixture
def directory() -> RecipientDirectory:
    return RecipientDirectory()
