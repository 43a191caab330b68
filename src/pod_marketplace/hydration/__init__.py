"""Request-scoped resolution of DomainId references."""

from pod_marketplace.hydration.batch import (
    BatchHydrator,
    HydratedItem,
    HydrationResult,
    Reference,
    Resolved,
    ResolutionContext,
    Unresolved,
)

__all__ = [
    "BatchHydrator",
    "HydratedItem",
    "HydrationResult",
    "Reference",
    "Resolved",
    "ResolutionContext",
    "Unresolved",
]
