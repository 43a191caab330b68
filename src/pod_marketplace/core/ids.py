"""Canonical ID and timestamp factories for the marketplace.

ID Categories
-------------
1. Domain IDs: opaque strings handed out by repositories.  Today they are
   the decimal form of the storage key; consumers only compare them and
   pass them back to repositories.
2. Storage keys: positive BIGINT primary keys.  They never leave the
   repository layer.
3. Event IDs: UUID v4 strings, generated when an event is created.

Every conversion between (1) and (2) goes through ``to_storage`` /
``to_domain`` so the representation can change in one place.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc`` — never naive.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, NewType

from .errors import InvalidIdentifier

DomainId = NewType("DomainId", str)
StorageKey = int

MAX_STORAGE_KEY = 2**63 - 1

_CANONICAL_KEY = re.compile(r"[1-9][0-9]*")
_MAX_KEY_DIGITS = len(str(MAX_STORAGE_KEY))


def new_id() -> str:
    """Generate a new UUID v4 string.  Use for event IDs."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _is_valid_key(key: Any) -> bool:
    # bool is an int subclass; True must not become key 1.
    return (
        isinstance(key, int)
        and not isinstance(key, bool)
        and 0 < key <= MAX_STORAGE_KEY
    )


def to_storage(domain_id: Any) -> StorageKey:
    """Convert a DomainId to its storage key.

    Only the canonical decimal form is accepted: no sign, no whitespace,
    no leading zeros.  ``"07"`` is rejected so that exactly one DomainId
    maps to each key.

    Raises:
        InvalidIdentifier: if *domain_id* is not a canonical positive key.
    """
    if not isinstance(domain_id, str):
        raise InvalidIdentifier(domain_id)
    if len(domain_id) > _MAX_KEY_DIGITS or not _CANONICAL_KEY.fullmatch(domain_id):
        raise InvalidIdentifier(domain_id)
    key = int(domain_id)
    if key > MAX_STORAGE_KEY:
        raise InvalidIdentifier(domain_id)
    return key


def to_domain(key: Any) -> DomainId:
    """Convert a storage key to its DomainId (decimal string).

    Raises:
        InvalidIdentifier: if *key* is not a positive BIGINT.
    """
    if not _is_valid_key(key):
        raise InvalidIdentifier(key)
    return DomainId(str(key))


def to_domain_optional(key: StorageKey | None) -> DomainId | None:
    """Like :func:`to_domain` but passes ``None`` through untouched."""
    if key is None:
        return None
    return to_domain(key)


def to_storage_optional(domain_id: str | None) -> StorageKey | None:
    """Like :func:`to_storage` but passes ``None`` through untouched."""
    if domain_id is None:
        return None
    return to_storage(domain_id)
