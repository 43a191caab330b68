"""Marketplace aggregate roots.

Each aggregate holds its own ``id`` plus the DomainIds of the aggregates it
relates to.  A related aggregate is never embedded, so loading one root is
always a single-table read and no object graph (or cycle) can form.

Aggregates are created by a repository's load/create and replaced, not
mutated, on update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pod_marketplace.core.enums import ProductStatus
from pod_marketplace.core.ids import DomainId


@dataclass(frozen=True)
class User:
    """A marketplace account.  Sellers own designs and list products."""

    id: DomainId
    name: str
    email: str
    is_seller: bool
    created_at: datetime


@dataclass(frozen=True)
class Design:
    """Artwork uploaded by a user; products are printed from it."""

    id: DomainId
    owner_id: DomainId
    title: str
    image_path: str
    created_at: datetime


@dataclass(frozen=True)
class Product:
    """A sellable item: a design printed on a blank, listed by a seller.

    ``design_id`` is ``None`` for products whose artwork was removed.
    """

    id: DomainId
    seller_id: DomainId
    design_id: DomainId | None
    title: str
    price_cents: int
    status: ProductStatus
    created_at: datetime
    updated_at: datetime
