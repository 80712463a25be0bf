from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from utils.datetime_utils import date_key


class CancellableHandle(Protocol):
    def cancel(self) -> None: ...


@dataclass(frozen=True)
class ReminderKey:
    user_id: int
    day: date

    def __str__(self) -> str:
        return f"{self.user_id}-{date_key(self.day)}"


def reminder_key(user_id: Any, day: date) -> ReminderKey:
    return ReminderKey(user_id=int(user_id), day=day)


@dataclass(eq=False)
class ArmedTimer:
    key: ReminderKey
    kind: str  # meal | exercise
    label: str
    time_of_day: str
    fire_at: datetime
    recipient: str | None = None
    handle: CancellableHandle | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


class ReminderRegistry:
    """In-memory map of reminder key -> timers armed for that (user, day).

    Holds at most one set per key: `register` cancels whatever was there first.
    Nothing here survives a process restart.
    """

    def __init__(self) -> None:
        self._timers: dict[ReminderKey, tuple[ArmedTimer, ...]] = {}

    def cancel(self, key: ReminderKey) -> int:
        timers = self._timers.pop(key, ())
        for timer in timers:
            timer.cancel()
        return len(timers)

    def register(self, key: ReminderKey, timers: list[ArmedTimer]) -> None:
        self.cancel(key)
        if timers:
            self._timers[key] = tuple(timers)

    def discard(self, key: ReminderKey, timer: ArmedTimer) -> None:
        current = self._timers.get(key)
        if not current or timer not in current:
            return
        remaining = tuple(t for t in current if t is not timer)
        if remaining:
            self._timers[key] = remaining
        else:
            del self._timers[key]

    def get(self, key: ReminderKey) -> tuple[ArmedTimer, ...]:
        return self._timers.get(key, ())

    def keys(self) -> list[ReminderKey]:
        return list(self._timers)

    def armed_count(self) -> int:
        return sum(len(timers) for timers in self._timers.values())

    def clear(self) -> int:
        cancelled = 0
        for key in list(self._timers):
            cancelled += self.cancel(key)
        return cancelled

    def __contains__(self, key: object) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)
