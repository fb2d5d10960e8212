from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CreditAdjustment, CreditPurchase, ParentCreditAccount
from app.domain.enums import PurchaseStatus


class CreditRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_account(self, owner_id: str) -> ParentCreditAccount | None:
        stmt = select(ParentCreditAccount).where(ParentCreditAccount.owner_id == owner_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_account(self, owner_id: str) -> ParentCreditAccount:
        existing = await self.get_account(owner_id)
        if existing is not None:
            return existing

        account = ParentCreditAccount(owner_id=owner_id, total_credits=0)
        try:
            async with self._session.begin_nested():
                self._session.add(account)
                await self._session.flush()
            return account
        except IntegrityError:
            # Opened concurrently by another request for the same parent.
            existing = await self.get_account(owner_id)
            if existing is None:
                raise
            return existing

    async def get_total(self, owner_id: str) -> int:
        stmt = select(ParentCreditAccount.total_credits).where(ParentCreditAccount.owner_id == owner_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def add_to_total(self, owner_id: str, delta: int) -> bool:
        stmt = (
            update(ParentCreditAccount)
            .where(
                ParentCreditAccount.owner_id == owner_id,
                ParentCreditAccount.total_credits + delta >= 0,
            )
            .values(total_credits=ParentCreditAccount.total_credits + delta)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_purchase(self, purchase: CreditPurchase) -> CreditPurchase:
        self._session.add(purchase)
        await self._session.flush()
        return purchase

    async def get_purchase(self, purchase_id: UUID) -> CreditPurchase | None:
        stmt = (
            select(CreditPurchase)
            .where(CreditPurchase.id == purchase_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_purchase_by_session_id(self, payment_session_id: str) -> CreditPurchase | None:
        stmt = select(CreditPurchase).where(CreditPurchase.payment_session_id == payment_session_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_spendable(self, owner_id: str, now_utc: datetime) -> list[CreditPurchase]:
        stmt = (
            select(CreditPurchase)
            .where(
                CreditPurchase.owner_id == owner_id,
                CreditPurchase.status == PurchaseStatus.ACTIVE.value,
                CreditPurchase.credits_remaining > 0,
                CreditPurchase.expires_at >= now_utc,
            )
            .order_by(CreditPurchase.expires_at, CreditPurchase.purchased_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_purchases(self, owner_id: str, limit: int = 200) -> list[CreditPurchase]:
        stmt = (
            select(CreditPurchase)
            .where(CreditPurchase.owner_id == owner_id)
            .order_by(CreditPurchase.purchased_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_due_for_expiry(self, now_utc: datetime, owner_id: str | None = None) -> list[CreditPurchase]:
        stmt = select(CreditPurchase).where(
            CreditPurchase.status != PurchaseStatus.EXPIRED.value,
            CreditPurchase.expires_at < now_utc,
        )
        if owner_id is not None:
            stmt = stmt.where(CreditPurchase.owner_id == owner_id)
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    async def take_from_purchase(self, purchase_id: UUID, amount: int, now_utc: datetime) -> bool:
        stmt = (
            update(CreditPurchase)
            .where(
                CreditPurchase.id == purchase_id,
                CreditPurchase.status == PurchaseStatus.ACTIVE.value,
                CreditPurchase.expires_at >= now_utc,
                CreditPurchase.credits_remaining >= amount,
            )
            .values(
                credits_remaining=CreditPurchase.credits_remaining - amount,
                status=case(
                    (CreditPurchase.credits_remaining == amount, PurchaseStatus.EXHAUSTED.value),
                    else_=CreditPurchase.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def restore_to_purchase(self, purchase_id: UUID, amount: int, now_utc: datetime) -> bool:
        stmt = (
            update(CreditPurchase)
            .where(
                CreditPurchase.id == purchase_id,
                CreditPurchase.status != PurchaseStatus.EXPIRED.value,
                CreditPurchase.expires_at >= now_utc,
                CreditPurchase.credits_remaining + amount <= CreditPurchase.credits_purchased,
            )
            .values(
                credits_remaining=CreditPurchase.credits_remaining + amount,
                status=PurchaseStatus.ACTIVE.value,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_expired(self, purchase_id: UUID, observed_remaining: int) -> bool:
        stmt = (
            update(CreditPurchase)
            .where(
                CreditPurchase.id == purchase_id,
                CreditPurchase.status != PurchaseStatus.EXPIRED.value,
                CreditPurchase.credits_remaining == observed_remaining,
            )
            .values(status=PurchaseStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_adjustment(self, item: CreditAdjustment) -> CreditAdjustment:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_adjustments(self, owner_id: str, limit: int = 100) -> list[CreditAdjustment]:
        stmt = (
            select(CreditAdjustment)
            .where(CreditAdjustment.owner_id == owner_id)
            .order_by(CreditAdjustment.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())
