"""Notification inbox persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from pod_marketplace.core.errors import ConstraintViolation
from pod_marketplace.core.ids import DomainId, to_domain, to_storage
from pod_marketplace.storage.connection import session_scope
from pod_marketplace.storage.models import NotificationRecord
from pod_marketplace.storage.repos import (
    SqlAlchemyRepository,
    as_utc,
    translate_storage_errors,
)

logger = logging.getLogger(__name__)

_DUPLICATE_FIELDS = frozenset({"event_id", "recipient_id"})


@dataclass(frozen=True)
class Notification:
    id: DomainId
    event_id: str
    recipient_id: DomainId
    kind: str
    message: str
    created_at: datetime


class NotificationRepository(SqlAlchemyRepository[NotificationRecord, Notification]):
    """Repository for :class:`Notification` rows."""

    record_class = NotificationRecord
    aggregate_name = "notification"
    writable_fields = frozenset({"event_id", "recipient_id", "kind", "message"})
    reference_fields = frozenset({"recipient_id"})

    def _to_aggregate(self, record: NotificationRecord) -> Notification:
        return Notification(
            id=to_domain(record.id),
            event_id=record.event_id,
            recipient_id=to_domain(record.recipient_id),
            kind=record.kind,
            message=record.message,
            created_at=as_utc(record.created_at),
        )

    async def record_once(
        self,
        event_id: str,
        recipient_id: DomainId,
        kind: str,
        message: str,
    ) -> bool:
        """Insert unless this event already notified this recipient.

        Returns ``True`` if a row was written.  A concurrent duplicate that
        slips past the existence check is caught by the unique constraint.
        """
        key = to_storage(recipient_id)
        model = NotificationRecord
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(model.id).where(
                        model.event_id == event_id, model.recipient_id == key,
                    )
                )
                if result.first() is not None:
                    logger.debug("Notification for event %s already stored", event_id)
                    return False

        try:
            await self.create({
                "event_id": event_id,
                "recipient_id": recipient_id,
                "kind": kind,
                "message": message,
            })
        except ConstraintViolation as exc:
            if exc.field in _DUPLICATE_FIELDS and "UNIQUE" in str(exc).upper():
                return False
            raise
        return True

    async def list_for_recipient(self, recipient_id: DomainId) -> list[Notification]:
        key = to_storage(recipient_id)
        model = NotificationRecord
        with translate_storage_errors(self.aggregate_name):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(model)
                    .where(model.recipient_id == key)
                    .order_by(model.id.asc())
                )
                return [self._to_aggregate(r) for r in result.scalars().all()]
