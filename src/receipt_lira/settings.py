"""Reminder settings and scheduled-reminder persistence."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from receipt_lira.models import ReminderSettings, ScheduledReminder

if TYPE_CHECKING:
    from receipt_lira.store import KeyValueStore

logger = logging.getLogger(__name__)

REMINDER_SETTINGS_KEY = "@bill_reminder_settings"
SCHEDULED_REMINDERS_KEY = "@scheduled_bill_reminders"

_REMINDER_LIST = TypeAdapter(list[ScheduledReminder])


class ReminderStorage:
    """Read/modify/write access to reminder state in a KeyValueStore.

    Reads never raise: missing or corrupt data yields the defaults.
    Saving never triggers rescheduling.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get_reminder_settings(self) -> ReminderSettings:
        """Return stored settings, or the defaults (on, 1/3/7 days, 09:00)."""
        try:
            stored = await self.store.get(REMINDER_SETTINGS_KEY)
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read reminder settings", exc_info=True)
            return ReminderSettings()
        if not stored:
            return ReminderSettings()
        try:
            return ReminderSettings.model_validate_json(stored)
        except ValidationError:
            logger.warning("Stored reminder settings are corrupt, using defaults")
            return ReminderSettings()

    async def save_reminder_settings(self, settings: ReminderSettings) -> None:
        """Overwrite stored settings. Storage errors propagate."""
        await self.store.set(REMINDER_SETTINGS_KEY, settings.model_dump_json())

    async def get_scheduled_reminders(self) -> list[ScheduledReminder]:
        """Return the persisted reminder set, or [] if missing or corrupt."""
        try:
            stored = await self.store.get(SCHEDULED_REMINDERS_KEY)
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read scheduled reminders", exc_info=True)
            return []
        if not stored:
            return []
        try:
            return _REMINDER_LIST.validate_json(stored)
        except ValidationError:
            logger.warning("Stored scheduled reminders are corrupt, starting empty")
            return []

    async def save_scheduled_reminders(self, reminders: list[ScheduledReminder]) -> None:
        """Overwrite the persisted reminder set."""
        await self.store.set(SCHEDULED_REMINDERS_KEY, _REMINDER_LIST.dump_json(reminders).decode())
