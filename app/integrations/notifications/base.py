from typing import Any, Protocol


class Notifier(Protocol):
    async def send(self, payload: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...
