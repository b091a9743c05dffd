"""Local notification facility contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class NotificationContent:
    """What the OS shows when a notification fires."""

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: bool = True


@runtime_checkable
class NotificationFacility(Protocol):
    """Protocol for the device's local notification scheduler."""

    async def schedule_at(self, content: NotificationContent, when: datetime) -> str: ...

    async def cancel(self, handle: str) -> None: ...

    async def cancel_all(self) -> None: ...
