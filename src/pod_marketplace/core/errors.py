"""Custom exception hierarchy for the marketplace."""

from __future__ import annotations

from typing import Any


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""


# --- Configuration ---
class ConfigError(MarketplaceError):
    """Invalid or missing configuration."""


# --- Identifiers ---
class InvalidIdentifier(MarketplaceError, ValueError):
    """A value presented as a DomainId or storage key is malformed."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid identifier: {value!r}")


# --- Storage ---
class RepositoryError(MarketplaceError):
    """Persistence layer error."""


class StorageUnavailable(RepositoryError):
    """The relational store could not be reached or the connection broke."""


class ConstraintViolation(RepositoryError):
    """A uniqueness or foreign-key constraint rejected a write.

    ``field`` names the violated column when the driver message allows it.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class UnknownField(RepositoryError, ValueError):
    """A write referenced a field the aggregate does not have."""

    def __init__(self, aggregate: str, fields: set[str]):
        self.aggregate = aggregate
        self.fields = frozenset(fields)
        names = ", ".join(sorted(fields))
        super().__init__(f"Unknown field(s) for {aggregate}: {names}")


# --- Event bus ---
class EventBusError(MarketplaceError):
    """Event bus infrastructure error."""


class RegistrationError(EventBusError):
    """Handler registration rejected (duplicate id or registry frozen)."""


class HandlerFailure(EventBusError):
    """An event handler raised while processing an event."""

    def __init__(self, event_name: str, handler_id: str, reason: str):
        self.event_name = event_name
        self.handler_id = handler_id
        self.reason = reason
        super().__init__(
            f"Handler {handler_id} failed on {event_name}: {reason}"
        )
