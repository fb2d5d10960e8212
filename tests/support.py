from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import date, timedelta
from typing import Any

from app.db.models import Registration

OWNER_ID = "parent-1"

RegistrationFactory = Callable[..., Awaitable[Registration]]


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, object] = {}

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self._store:
            return False
        self._store[key] = value
        return True

    async def get(self, key: str) -> object | None:
        return self._store.get(key)

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            return 1
        return 0

    async def ping(self) -> bool:
        return True


class FakeNotifier:
    def __init__(self, failures: int = 0) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failures = failures

    async def send(self, payload: dict[str, Any]) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("webhook unavailable")
        self.sent.append(payload)

    async def close(self) -> None:
        return None


def next_weekday(weekday: int, today: date | None = None, min_days: int = 3) -> date:
    """First date on the given weekday (Monday is 0) at least min_days away."""
    start = (today or date.today()) + timedelta(days=min_days)
    return start + timedelta(days=(weekday - start.weekday()) % 7)
