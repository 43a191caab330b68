"""Register-user workflow.

A duplicate email surfaces as ``ConstraintViolation(field="email")``,
which the HTTP layer maps to a field-level validation error.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pod_marketplace.application.inputs import UserRegisterInput
from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.domain.events import user_registered
from pod_marketplace.domain.models import User
from pod_marketplace.domain.repositories import AggregateRepository

logger = logging.getLogger(__name__)


class RegisterUser:
    def __init__(
        self,
        users: AggregateRepository[User],
        bus: DomainEventBus,
    ) -> None:
        self._users = users
        self._bus = bus

    async def execute(self, fields: Mapping[str, Any]) -> User:
        request = UserRegisterInput.model_validate(dict(fields))
        user = await self._users.create(request.to_fields())
        logger.info("User %s registered (seller=%s)", user.id, user.is_seller)

        await self._bus.publish(user_registered(user))
        return user
