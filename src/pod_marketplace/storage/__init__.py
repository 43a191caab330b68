"""Relational persistence: ORM records, sessions, repositories."""

from pod_marketplace.storage.repos import (
    DesignRepository,
    ProductRepository,
    SqlAlchemyRepository,
    UserRepository,
)

__all__ = [
    "DesignRepository",
    "ProductRepository",
    "SqlAlchemyRepository",
    "UserRepository",
]
