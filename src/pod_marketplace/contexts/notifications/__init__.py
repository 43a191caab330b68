from pod_marketplace.contexts.notifications.handlers import SellerNotifier, register
from pod_marketplace.contexts.notifications.repository import (
    Notification,
    NotificationRepository,
)

__all__ = ["Notification", "NotificationRepository", "SellerNotifier", "register"]
