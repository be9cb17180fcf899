"""
Calendar Client
===============
Календарь пользователя нужен только чтобы понять, занят ли он сегодня:
от этого зависит вариант вечернего поста.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

BUSY_HOURS_THRESHOLD = 3.0


@dataclass
class CalendarEvent:
    summary: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    transparency: str = "opaque"

    @property
    def is_busy(self) -> bool:
        return self.transparency != "transparent"

    @property
    def hours(self) -> float:
        return max((self.end - self.start).total_seconds(), 0) / 3600


class CalendarService(Protocol):
    async def get_events_for_user(self, user_id: int) -> list[CalendarEvent]:
        ...


class NullCalendar:
    """Календарь не подключён"""

    async def get_events_for_user(self, user_id: int) -> list[CalendarEvent]:
        return []


def detect_probably_busy(events: list[CalendarEvent]) -> tuple[bool, str]:
    """
    Returns:
        (занят ли пользователь, причина для промпта)
    """
    busy = [event for event in events if event.is_busy]
    total_hours = sum(event.hours for event in busy)
    if total_hours < BUSY_HOURS_THRESHOLD:
        return False, ""
    titles = ", ".join(event.summary for event in busy[:3] if event.summary)
    return True, f"{total_hours:.1f} ч. событий: {titles}" if titles else f"{total_hours:.1f} ч. событий"
