"""Shared test fixtures."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from receipt_lira.scheduler import ReminderScheduler
from receipt_lira.settings import ReminderStorage
from receipt_lira.store import InMemoryKeyValueStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from receipt_lira.notifications import NotificationContent

FIXED_NOW = datetime(2025, 6, 10, 12, 0, tzinfo=UTC)


class RecordingNotificationFacility:
    """Notification facility that records calls and hands out numbered handles."""

    def __init__(self) -> None:
        self.pending: dict[str, tuple[NotificationContent, datetime]] = {}
        self.cancelled: list[str] = []
        self.fail_at: set[datetime] = set()
        self._counter = 0

    async def schedule_at(self, content: NotificationContent, when: datetime) -> str:
        self._counter += 1
        if when in self.fail_at:
            msg = "notification permission revoked"
            raise RuntimeError(msg)
        handle = f"notification-{self._counter}"
        self.pending[handle] = (content, when)
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)
        self.pending.pop(handle, None)

    async def cancel_all(self) -> None:
        self.cancelled.extend(self.pending)
        self.pending.clear()


class FakeBillSource:
    """In-memory bill documents keyed by collection name."""

    def __init__(self) -> None:
        self.documents: dict[str, list[dict[str, Any]]] = {}
        self.failing: set[str] = set()
        self.queried: list[str] = []

    async def query_bills(
        self,
        collection: str,
        user_id: str,
        *,
        due_from: datetime,
        due_until: datetime | None = None,
    ) -> list[dict[str, Any]]:
        self.queried.append(collection)
        if collection in self.failing:
            msg = f"{collection} unavailable"
            raise ConnectionError(msg)
        return [
            doc
            for doc in self.documents.get(collection, [])
            if doc.get("user_id") == user_id
            and doc["due_date"] >= due_from
            and (due_until is None or doc["due_date"] <= due_until)
        ]


@pytest.fixture(autouse=True)
def utc_local_zone(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test with UTC as the process-local time zone."""
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def set_local_zone(monkeypatch: pytest.MonkeyPatch) -> Callable[[str], None]:
    """Switch the process-local time zone, given a POSIX TZ string."""

    def apply(zone: str) -> None:
        monkeypatch.setenv("TZ", zone)
        time.tzset()

    return apply


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """Provide a temporary directory as the key-value store root."""
    root = tmp_path / "state"
    root.mkdir()
    return root


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def reminder_storage(kv_store: InMemoryKeyValueStore) -> ReminderStorage:
    return ReminderStorage(kv_store)


@pytest.fixture
def facility() -> RecordingNotificationFacility:
    return RecordingNotificationFacility()


@pytest.fixture
def bill_source() -> FakeBillSource:
    return FakeBillSource()


@pytest.fixture
def scheduler(
    reminder_storage: ReminderStorage,
    facility: RecordingNotificationFacility,
    bill_source: FakeBillSource,
    now: datetime,
) -> ReminderScheduler:
    """Scheduler with a fixed clock, recording facility and in-memory bills."""
    return ReminderScheduler(
        reminder_storage,
        facility,
        bill_source,
        clock=lambda: now,
        language="tr",
    )
