"""Bill payment reminder scheduling.

Reminders fire at the configured wall-clock time on the due date and on
each configured number of days before it. ``refresh_all`` cancels every
pending reminder before scheduling anything, so the persisted set
always matches the live notifications.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from receipt_lira.adapters.base import BILL_COLLECTIONS, bill_from_document
from receipt_lira.config import get_device_language
from receipt_lira.messages import reminder_text
from receipt_lira.models import ScheduledReminder, UpcomingBill
from receipt_lira.notifications import NotificationContent

if TYPE_CHECKING:
    from collections.abc import Callable

    from receipt_lira.adapters.base import BillSource
    from receipt_lira.models import BillRecord, ReminderSettings
    from receipt_lira.notifications import NotificationFacility
    from receipt_lira.settings import ReminderStorage

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def local_now() -> datetime:
    """Return the current local time, timezone-aware."""
    return datetime.now().astimezone()


def lead_times(settings: ReminderSettings) -> list[int]:
    """Days-before-due to remind at, ascending, always including the due date."""
    return sorted(set(settings.reminder_days) | {0})


def reminder_instant(
    due_date: datetime, days_before_due: int, settings: ReminderSettings
) -> datetime:
    """Return when the reminder N days before ``due_date`` fires.

    The reminder time is local wall-clock time: the due date is moved into
    the local zone first and the result is re-localized, so DST changes
    between the two days do not shift the hour.
    """
    day = due_date.astimezone().date() - timedelta(days=days_before_due)
    wall_clock = datetime.combine(
        day, time(settings.reminder_time.hour, settings.reminder_time.minute)
    )
    return wall_clock.astimezone()


def days_until(due_date: datetime, now: datetime) -> int:
    """Whole days until ``due_date``, rounding any partial day up."""
    return math.ceil((due_date - now).total_seconds() / SECONDS_PER_DAY)


async def fetch_bills(
    source: BillSource,
    user_id: str,
    *,
    due_from: datetime,
    due_until: datetime | None = None,
) -> list[BillRecord]:
    """Query every bill collection concurrently and merge the results.

    A collection whose query fails contributes nothing; the failure is logged.
    """
    results = await asyncio.gather(
        *(
            _query_collection(source, collection, user_id, due_from, due_until)
            for collection in BILL_COLLECTIONS
        )
    )
    return [bill for bills in results for bill in bills]


async def _query_collection(
    source: BillSource,
    collection: str,
    user_id: str,
    due_from: datetime,
    due_until: datetime | None,
) -> list[BillRecord]:
    try:
        documents = await source.query_bills(
            collection, user_id, due_from=due_from, due_until=due_until
        )
    except Exception:  # noqa: BLE001
        logger.warning("Failed to query %s", collection, exc_info=True)
        return []

    bills: list[BillRecord] = []
    for document in documents:
        bill = bill_from_document(document, collection)
        if bill is None:
            logger.debug("Skipping document without id in %s", collection)
            continue
        bills.append(bill)
    return bills


async def count_upcoming_bills(
    source: BillSource,
    user_id: str,
    window_days: int = 7,
    *,
    now: datetime | None = None,
) -> int:
    """Count bills due within ``window_days`` from now across all collections."""
    start = now if now is not None else local_now()
    bills = await fetch_bills(
        source, user_id, due_from=start, due_until=start + timedelta(days=window_days)
    )
    return len(bills)


async def list_upcoming_bills(
    source: BillSource,
    user_id: str,
    window_days: int = 30,
    *,
    now: datetime | None = None,
) -> list[UpcomingBill]:
    """Return bills due within ``window_days``, soonest first."""
    start = now if now is not None else local_now()
    bills = await fetch_bills(
        source, user_id, due_from=start, due_until=start + timedelta(days=window_days)
    )

    upcoming = [
        UpcomingBill(
            bill_id=bill.id,
            bill_type=bill.bill_type,
            cost=bill.cost or 0.0,
            due_date=bill.due_date,
            merchant=bill.merchant,
            days_until_due=days_until(bill.due_date, start),
        )
        for bill in bills
        if bill.due_date is not None
    ]
    upcoming.sort(key=lambda item: item.due_date)
    return upcoming


class ReminderScheduler:
    """Schedule, cancel and reconcile bill reminder notifications."""

    def __init__(
        self,
        storage: ReminderStorage,
        notifications: NotificationFacility,
        bills: BillSource,
        *,
        clock: Callable[[], datetime] = local_now,
        language: str | None = None,
    ) -> None:
        self.storage = storage
        self.notifications = notifications
        self.bills = bills
        self._clock = clock
        self._language = language

    @property
    def language(self) -> str:
        return self._language or get_device_language()

    async def schedule_for_bill(self, bill: BillRecord) -> list[str]:
        """Schedule every still-future reminder for one bill.

        Returns the new notification handles. Does nothing when reminders
        are disabled or the bill has no due date or cost. If the reminder set
        cannot be saved, the new notifications are cancelled and the storage
        error propagates.
        """
        settings = await self.storage.get_reminder_settings()
        if not settings.enabled:
            logger.info("Bill reminders are disabled")
            return []
        if bill.due_date is None or bill.cost is None:
            logger.debug("Bill %s has no due date or cost, not scheduling", bill.id)
            return []

        now = self._clock()
        reminders = await self.storage.get_scheduled_reminders()
        handles: list[str] = []

        for days_before_due in lead_times(settings):
            fires_at = reminder_instant(bill.due_date, days_before_due, settings)
            if fires_at <= now:
                logger.debug(
                    "Skipping past reminder for bill %s, %d day(s) before due",
                    bill.id,
                    days_before_due,
                )
                continue

            composite_id = ScheduledReminder.make_id(bill.id, days_before_due)
            reminders = await self._drop_existing(reminders, composite_id)

            title, body = reminder_text(
                bill.bill_type, bill.cost, days_before_due, bill.merchant, self.language
            )
            content = NotificationContent(
                title=title,
                body=body,
                data={
                    "bill_id": bill.id,
                    "bill_type": bill.bill_type.value,
                    "due_date": bill.due_date.isoformat(),
                },
            )
            try:
                handle = await self.notifications.schedule_at(content, fires_at)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Failed to schedule reminder %s at %s", composite_id, fires_at, exc_info=True
                )
                continue

            handles.append(handle)
            reminders.append(
                ScheduledReminder(
                    composite_id=composite_id,
                    notification_handle=handle,
                    bill_id=bill.id,
                    bill_type=bill.bill_type,
                    due_date=bill.due_date,
                    amount=bill.cost,
                    merchant=bill.merchant,
                    fires_at=fires_at,
                )
            )
            logger.info(
                "Scheduled %s bill reminder %d day(s) before due date",
                bill.bill_type.value,
                days_before_due,
            )

        try:
            await self.storage.save_scheduled_reminders(reminders)
        except Exception:
            logger.error(
                "Failed to persist reminders for bill %s, cancelling %d new notification(s)",
                bill.id,
                len(handles),
            )
            for handle in handles:
                await self._cancel_handle(handle)
            raise
        return handles

    async def cancel_for_bill(self, bill_id: str) -> None:
        """Cancel and forget every reminder of one bill; others are untouched."""
        reminders = await self.storage.get_scheduled_reminders()
        keep: list[ScheduledReminder] = []
        for reminder in reminders:
            if reminder.bill_id == bill_id:
                await self._cancel_handle(reminder.notification_handle)
            else:
                keep.append(reminder)
        await self.storage.save_scheduled_reminders(keep)

    async def cancel_all(self) -> None:
        """Cancel every persisted reminder and persist an empty set."""
        for reminder in await self.storage.get_scheduled_reminders():
            await self._cancel_handle(reminder.notification_handle)
        await self.storage.save_scheduled_reminders([])

    async def refresh_all(self, user_id: str) -> None:
        """Rebuild the whole reminder schedule for a user.

        Cancellation completes and is persisted before anything new is
        scheduled.
        """
        settings = await self.storage.get_reminder_settings()
        await self.cancel_all()
        if not settings.enabled:
            logger.info("Bill reminders are disabled, cancelled all reminders")
            return

        now = self._clock()
        bills = await fetch_bills(self.bills, user_id, due_from=now)
        scheduled = 0
        for bill in bills:
            if bill.due_date is None or bill.due_date <= now:
                continue
            scheduled += len(await self.schedule_for_bill(bill))
        logger.info("Refreshed reminders for %d bill(s), %d scheduled", len(bills), scheduled)

    async def count_upcoming(self, user_id: str, window_days: int = 7) -> int:
        """Number of bills due in the next ``window_days`` days."""
        return await count_upcoming_bills(self.bills, user_id, window_days, now=self._clock())

    async def list_upcoming(self, user_id: str, window_days: int = 30) -> list[UpcomingBill]:
        """Bills due in the next ``window_days`` days, soonest first."""
        return await list_upcoming_bills(self.bills, user_id, window_days, now=self._clock())

    async def _drop_existing(
        self, reminders: list[ScheduledReminder], composite_id: str
    ) -> list[ScheduledReminder]:
        kept: list[ScheduledReminder] = []
        for reminder in reminders:
            if reminder.composite_id == composite_id:
                await self._cancel_handle(reminder.notification_handle)
            else:
                kept.append(reminder)
        return kept

    async def _cancel_handle(self, handle: str) -> None:
        try:
            await self.notifications.cancel(handle)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to cancel notification %s", handle, exc_info=True)
