from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import ProcessedPaymentEvent


class PaymentEventRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_event_id(self, event_id: str) -> ProcessedPaymentEvent | None:
        stmt = select(ProcessedPaymentEvent).where(ProcessedPaymentEvent.event_id == event_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def record(self, event_id: str, event_type: str, outcome: str) -> ProcessedPaymentEvent:
        item = ProcessedPaymentEvent(event_id=event_id, event_type=event_type, outcome=outcome)
        self._session.add(item)
        await self._session.flush()
        return item
