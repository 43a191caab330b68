"""Enumerations used across the marketplace."""

from enum import Enum


class BusBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class DeliveryMode(str, Enum):
    SYNC = "sync"  # Inline with the publisher; failures propagate
    DEFERRED = "deferred"  # Via the task queue; failures isolated


class ProductStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
