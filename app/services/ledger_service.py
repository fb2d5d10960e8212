from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import add_months, ensure_utc, utc_now
from app.db.models import CreditAdjustment, CreditPurchase
from app.domain.enums import PackageType, PurchaseStatus
from app.domain.errors import InsufficientCredits, ValidationFailed
from app.repositories.credit_repository import CreditRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Allocation:
    purchase_id: UUID
    amount: int


@dataclass(frozen=True, slots=True)
class DebitResult:
    allocations: list[Allocation]
    balance: int

    @property
    def primary_purchase_id(self) -> UUID | None:
        return self.allocations[0].purchase_id if self.allocations else None


@dataclass(frozen=True, slots=True)
class RefundResult:
    refunded: int
    balance: int
    restored_to: UUID | None = None


@dataclass(slots=True)
class LedgerHistory:
    balance: int
    purchases: list[CreditPurchase] = field(default_factory=list)
    adjustments: list[CreditAdjustment] = field(default_factory=list)


class LedgerService:
    """Parent credit balances.

    ``total_credits`` on the account always equals the remaining balance summed
    over the parent's non-expired purchases. Every mutation pairs the purchase
    change and the account change inside one savepoint.
    """

    def __init__(
        self,
        session: AsyncSession,
        credit_repository: CreditRepository,
        validity_months: int = 12,
    ) -> None:
        self._session = session
        self._credits = credit_repository
        self._validity_months = validity_months

    async def credit(
        self,
        owner_id: str,
        package_type: PackageType,
        credits: int,
        price_paid: int = 0,
        currency: str = "cad",
        payment_session_id: str | None = None,
        payment_intent_id: str | None = None,
        now_utc: datetime | None = None,
    ) -> tuple[CreditPurchase, bool]:
        if credits < 1:
            msg = "A purchase must add at least one credit"
            raise ValidationFailed(msg)
        now = ensure_utc(now_utc or utc_now())

        if payment_session_id:
            existing = await self._credits.get_purchase_by_session_id(payment_session_id)
            if existing is not None:
                logger.info("ledger.credit_duplicate", owner_id=owner_id, payment_session_id=payment_session_id)
                return existing, False

        await self._credits.get_or_create_account(owner_id)
        purchase = CreditPurchase(
            owner_id=owner_id,
            package_type=package_type.value,
            credits_purchased=credits,
            credits_remaining=credits,
            price_paid=price_paid,
            currency=currency,
            payment_session_id=payment_session_id,
            payment_intent_id=payment_intent_id,
            purchased_at=now,
            expires_at=add_months(now, self._validity_months),
            status=PurchaseStatus.ACTIVE.value,
        )
        try:
            async with self._session.begin_nested():
                await self._credits.add_purchase(purchase)
                await self._credits.add_to_total(owner_id, credits)
        except IntegrityError:
            # Same payment session credited by a concurrent delivery.
            if payment_session_id is None:
                raise
            existing = await self._credits.get_purchase_by_session_id(payment_session_id)
            if existing is None:
                raise
            return existing, False

        logger.info("ledger.credited", owner_id=owner_id, credits=credits, package_type=package_type.value)
        return purchase, True

    async def debit(self, owner_id: str, amount: int, now_utc: datetime | None = None) -> DebitResult:
        if amount < 1:
            msg = "Debit amount must be positive"
            raise ValidationFailed(msg)
        now = ensure_utc(now_utc or utc_now())
        await self.expire_due(now, owner_id=owner_id)

        purchases = await self._credits.list_spendable(owner_id, now)
        available = sum(item.credits_remaining for item in purchases)
        if available < amount:
            logger.info("ledger.debit_failed", owner_id=owner_id, required=amount, available=available)
            raise InsufficientCredits(
                f"Not enough credits: {available} available, {amount} required",
                available=available,
                required=amount,
            )

        allocations: list[Allocation] = []
        async with self._session.begin_nested():
            outstanding = amount
            for purchase in purchases:
                if outstanding == 0:
                    break
                take = min(purchase.credits_remaining, outstanding)
                if not await self._credits.take_from_purchase(purchase.id, take, now):
                    raise InsufficientCredits(available=available, required=amount)
                allocations.append(Allocation(purchase_id=purchase.id, amount=take))
                outstanding -= take
            if outstanding or not await self._credits.add_to_total(owner_id, -amount):
                raise InsufficientCredits(available=available, required=amount)

        balance = await self._credits.get_total(owner_id)
        logger.info("ledger.debited", owner_id=owner_id, amount=amount, balance=balance)
        return DebitResult(allocations=allocations, balance=balance)

    async def refund(
        self,
        owner_id: str,
        amount: int,
        originating_purchase_id: UUID | None = None,
        now_utc: datetime | None = None,
    ) -> RefundResult:
        now = ensure_utc(now_utc or utc_now())
        if amount <= 0:
            return RefundResult(refunded=0, balance=await self._credits.get_total(owner_id))

        await self._credits.get_or_create_account(owner_id)
        restored_to: UUID | None = None
        async with self._session.begin_nested():
            if originating_purchase_id is not None and await self._credits.restore_to_purchase(
                originating_purchase_id, amount, now
            ):
                restored_to = originating_purchase_id
            else:
                await self._credits.add_purchase(
                    CreditPurchase(
                        owner_id=owner_id,
                        package_type=PackageType.REFUND.value,
                        credits_purchased=amount,
                        credits_remaining=amount,
                        price_paid=0,
                        purchased_at=now,
                        expires_at=add_months(now, self._validity_months),
                        status=PurchaseStatus.ACTIVE.value,
                    )
                )
            await self._credits.add_to_total(owner_id, amount)

        balance = await self._credits.get_total(owner_id)
        logger.info(
            "ledger.refunded",
            owner_id=owner_id,
            amount=amount,
            restored_to=str(restored_to) if restored_to else None,
            balance=balance,
        )
        return RefundResult(refunded=amount, balance=balance, restored_to=restored_to)

    async def expire_due(self, now_utc: datetime | None = None, owner_id: str | None = None) -> int:
        now = ensure_utc(now_utc or utc_now())
        forfeited = 0
        for purchase in await self._credits.list_due_for_expiry(now, owner_id=owner_id):
            remaining = purchase.credits_remaining
            async with self._session.begin_nested():
                if not await self._credits.mark_expired(purchase.id, remaining):
                    # A debit touched it in between; the next pass picks it up.
                    continue
                if remaining and not await self._credits.add_to_total(purchase.owner_id, -remaining):
                    logger.error("ledger.expire_total_mismatch", owner_id=purchase.owner_id, remaining=remaining)
            forfeited += remaining
            logger.info(
                "ledger.credits_expired",
                owner_id=purchase.owner_id,
                purchase_id=str(purchase.id),
                forfeited=remaining,
            )
        return forfeited

    async def admin_adjust(
        self,
        owner_id: str,
        adjustment: int,
        reason: str,
        admin_id: str,
        now_utc: datetime | None = None,
    ) -> CreditAdjustment:
        if adjustment == 0:
            msg = "Adjustment must be non-zero"
            raise ValidationFailed(msg)
        if len(reason.strip()) < 5:
            msg = "Reason must be at least 5 characters"
            raise ValidationFailed(msg)
        now = ensure_utc(now_utc or utc_now())

        await self.expire_due(now, owner_id=owner_id)
        await self._credits.get_or_create_account(owner_id)
        before = await self._credits.get_total(owner_id)
        async with self._session.begin_nested():
            if adjustment > 0:
                await self._credits.add_purchase(
                    CreditPurchase(
                        owner_id=owner_id,
                        package_type=PackageType.ADMIN_GRANT.value,
                        credits_purchased=adjustment,
                        credits_remaining=adjustment,
                        price_paid=0,
                        purchased_at=now,
                        expires_at=add_months(now, self._validity_months),
                        status=PurchaseStatus.ACTIVE.value,
                    )
                )
                await self._credits.add_to_total(owner_id, adjustment)
            else:
                await self.debit(owner_id, -adjustment, now_utc=now)
            after = await self._credits.get_total(owner_id)
            record = await self._credits.add_adjustment(
                CreditAdjustment(
                    owner_id=owner_id,
                    adjustment=adjustment,
                    balance_before=before,
                    balance_after=after,
                    reason=reason.strip(),
                    admin_id=admin_id,
                )
            )

        logger.info("ledger.admin_adjusted", owner_id=owner_id, adjustment=adjustment, admin_id=admin_id)
        return record

    async def balance(self, owner_id: str, now_utc: datetime | None = None) -> int:
        await self.expire_due(now_utc, owner_id=owner_id)
        return await self._credits.get_total(owner_id)

    async def history(self, owner_id: str, now_utc: datetime | None = None) -> LedgerHistory:
        balance = await self.balance(owner_id, now_utc=now_utc)
        return LedgerHistory(
            balance=balance,
            purchases=await self._credits.list_purchases(owner_id),
            adjustments=await self._credits.list_adjustments(owner_id),
        )
