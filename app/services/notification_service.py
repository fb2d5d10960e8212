from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import utc_now
from app.db.models import Notification
from app.domain.enums import NotificationType
from app.repositories.notification_repository import NotificationRepository
from app.repositories.outbox_repository import OutboxRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ParentAudience:
    owner_id: str


@dataclass(frozen=True, slots=True)
class AllAdmins:
    pass


Audience = ParentAudience | AllAdmins


class NotificationService:
    """Records notifications and queues them for delivery.

    Publishing never fails the caller: the write happens in its own savepoint
    and an error only rolls that savepoint back.
    """

    def __init__(
        self,
        session: AsyncSession,
        notification_repository: NotificationRepository,
        outbox_repository: OutboxRepository,
    ) -> None:
        self._session = session
        self._notifications = notification_repository
        self._outbox = outbox_repository

    async def publish(
        self,
        audience: Audience,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> Notification | None:
        match audience:
            case ParentAudience(owner_id=owner_id):
                audience_kind, target = "parent", owner_id
            case AllAdmins():
                audience_kind, target = "all_admins", None

        payload = {
            "audience": audience_kind,
            "owner_id": target,
            "type": notification_type.value,
            "title": title,
            "message": message,
            "data": data or {},
        }
        try:
            async with self._session.begin_nested():
                notification = await self._notifications.create(
                    Notification(
                        audience=audience_kind,
                        owner_id=target,
                        notification_type=notification_type.value,
                        title=title,
                        message=message,
                        data=data or {},
                    )
                )
                payload["notification_id"] = str(notification.id)
                await self._outbox.enqueue(
                    payload=payload,
                    available_at=now_utc or utc_now(),
                    notification_id=notification.id,
                    dedupe_key=dedupe_key,
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "notification.enqueue_failed",
                notification_type=notification_type.value,
                audience=audience_kind,
                error=str(exc),
            )
            return None
        return notification
