from __future__ import annotations

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.integrations.notifications.base import Notifier
from app.repositories.booking_repository import BookingRepository
from app.repositories.capacity_repository import CapacityRepository
from app.repositories.credit_repository import CreditRepository
from app.repositories.notification_repository import NotificationRepository
from app.repositories.outbox_repository import OutboxRepository
from app.repositories.payment_event_repository import PaymentEventRepository
from app.repositories.recurring_schedule_repository import RecurringScheduleRepository
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.schedule_repository import ScheduleRepository
from app.repositories.sunday_slot_repository import SundaySlotRepository
from app.services.booking_service import BookingService
from app.services.capacity_service import CapacityService
from app.services.ledger_service import LedgerService
from app.services.notification_service import NotificationService
from app.services.outbox_delivery_service import OutboxDeliveryService
from app.services.payment_event_service import PaymentEventService
from app.services.recurring_service import RecurringService
from app.services.schedule_service import ScheduleService
from app.services.sunday_service import SundayService


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    notifier: Notifier

    def create_ledger_service(self, session: AsyncSession) -> LedgerService:
        return LedgerService(
            session,
            CreditRepository(session),
            validity_months=self.settings.credit_validity_months,
        )

    def create_capacity_service(self, session: AsyncSession) -> CapacityService:
        return CapacityService(CapacityRepository(session), BookingRepository(session))

    def create_notification_service(self, session: AsyncSession) -> NotificationService:
        return NotificationService(session, NotificationRepository(session), OutboxRepository(session))

    def create_booking_service(self, session: AsyncSession) -> BookingService:
        return BookingService(
            session,
            booking_repository=BookingRepository(session),
            registration_repository=RegistrationRepository(session),
            sunday_slot_repository=SundaySlotRepository(session),
            capacity_service=self.create_capacity_service(session),
            ledger_service=self.create_ledger_service(session),
            notification_service=self.create_notification_service(session),
            timezone=self.settings.academy_timezone,
            refund_window_hours=self.settings.refund_window_hours,
            low_credit_threshold=self.settings.low_credit_threshold,
        )

    def create_schedule_service(self, session: AsyncSession) -> ScheduleService:
        return ScheduleService(
            session,
            registration_repository=RegistrationRepository(session),
            schedule_repository=ScheduleRepository(session),
            notification_service=self.create_notification_service(session),
            timezone=self.settings.academy_timezone,
        )

    def create_sunday_service(self, session: AsyncSession) -> SundayService:
        return SundayService(
            session,
            sunday_slot_repository=SundaySlotRepository(session),
            booking_repository=BookingRepository(session),
            registration_repository=RegistrationRepository(session),
            notification_service=self.create_notification_service(session),
            timezone=self.settings.academy_timezone,
        )

    def create_recurring_service(self, session: AsyncSession) -> RecurringService:
        return RecurringService(
            session,
            recurring_schedule_repository=RecurringScheduleRepository(session),
            registration_repository=RegistrationRepository(session),
            schedule_repository=ScheduleRepository(session),
            booking_service=self.create_booking_service(session),
            notification_service=self.create_notification_service(session),
            timezone=self.settings.academy_timezone,
            lead_days=self.settings.recurring_lead_days,
        )

    def create_payment_event_service(self, session: AsyncSession) -> PaymentEventService:
        return PaymentEventService(
            session,
            payment_event_repository=PaymentEventRepository(session),
            registration_repository=RegistrationRepository(session),
            ledger_service=self.create_ledger_service(session),
            booking_service=self.create_booking_service(session),
            notification_service=self.create_notification_service(session),
        )

    def create_outbox_delivery_service(self, session: AsyncSession) -> OutboxDeliveryService:
        return OutboxDeliveryService(
            OutboxRepository(session),
            self.notifier,
            redis=self.redis,
            max_attempts=self.settings.outbox_max_attempts,
            backoff_base_seconds=self.settings.outbox_backoff_base_seconds,
            backoff_max_seconds=self.settings.outbox_backoff_max_seconds,
            dedupe_ttl_seconds=self.settings.outbox_dedupe_ttl_seconds,
        )
