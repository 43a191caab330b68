"""Batch hydration of DomainId references.

Aggregates only carry the ids of related aggregates.  Before a page of them
is rendered those ids must become something displayable, and doing that
one lookup per item is the classic N+1 pattern (24 products x 2 relations
= 48 extra queries).  The hydrator instead:

1.  collects the distinct, non-null ids per referenced repository across
    the whole input;
2.  issues exactly one ``find_by_ids`` per repository with a non-empty set;
3.  keeps the id → aggregate maps in a :class:`ResolutionContext` that
    lives for one request only;
4.  resolves every field by map lookup, marking misses as
    :class:`Unresolved` instead of failing or inventing a placeholder.

Query count is therefore ``number of repositories with at least one id``,
independent of how many aggregates are hydrated.

The context is a plain value passed into and returned from ``hydrate``.
It is never stored on the hydrator or at module level, so data loaded for
one request cannot leak into another.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pod_marketplace.core.ids import DomainId
from pod_marketplace.domain.repositories import AggregateRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resolution markers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Resolved:
    """A reference whose target was found.  ``value`` is the summary."""

    id: DomainId
    value: Any

    @property
    def resolved(self) -> bool:
        return True


@dataclass(frozen=True)
class Unresolved:
    """A reference whose target no longer exists (or was never visible)."""

    id: DomainId

    @property
    def resolved(self) -> bool:
        return False


RelationValue = Resolved | Unresolved | None


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Reference:
    """One foreign-id field to resolve.

    Parameters
    ----------
    field:
        Attribute on the aggregate holding a DomainId (or ``None``).
    repository:
        Repository of the referenced aggregate type.  References sharing a
        repository instance share one batch query.
    summarize:
        Optional projection applied to each resolved aggregate.
    name:
        Key in the output relations; defaults to ``field`` without ``_id``.
    """

    field: str
    repository: AggregateRepository[Any]
    summarize: Callable[[Any], Any] | None = None
    name: str | None = None

    @property
    def relation_name(self) -> str:
        if self.name is not None:
            return self.name
        return self.field[:-3] if self.field.endswith("_id") else self.field


class ResolutionContext:
    """Per-request id → aggregate maps, one per referenced repository.

    Ids that were looked up and not found are remembered as well, so a
    second ``hydrate`` call in the same request does not query for them
    again.
    """

    def __init__(self) -> None:
        self._found: dict[Any, dict[DomainId, Any]] = {}
        self._missing: dict[Any, set[DomainId]] = {}

    def unknown(self, repository: Any, ids: set[DomainId]) -> set[DomainId]:
        """Return the ids not yet looked up through *repository*."""
        found = self._found.get(repository, {})
        missing = self._missing.get(repository, set())
        return {i for i in ids if i not in found and i not in missing}

    def remember(
        self,
        repository: Any,
        requested: set[DomainId],
        found: Mapping[DomainId, Any],
    ) -> None:
        self._found.setdefault(repository, {}).update(found)
        self._missing.setdefault(repository, set()).update(requested - set(found))

    def lookup(self, repository: Any, domain_id: DomainId) -> Any | None:
        return self._found.get(repository, {}).get(domain_id)

    def __len__(self) -> int:
        return sum(len(m) for m in self._found.values())


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HydratedItem:
    """An aggregate plus its resolved relations, keyed by relation name."""

    aggregate: Any
    relations: Mapping[str, RelationValue] = field(default_factory=dict)

    @property
    def id(self) -> DomainId:
        return self.aggregate.id

    def relation(self, name: str) -> RelationValue:
        return self.relations[name]


@dataclass(frozen=True)
class HydrationResult:
    """Hydrated items in input order, the context, and queries issued."""

    items: tuple[HydratedItem, ...]
    context: ResolutionContext
    queries_issued: int = 0

    def for_id(self, domain_id: DomainId) -> HydratedItem | None:
        for item in self.items:
            if item.id == domain_id:
                return item
        return None

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


# ---------------------------------------------------------------------------
# Hydrator
# ---------------------------------------------------------------------------

class BatchHydrator:
    """Stateless: every call works on the context it is given."""

    async def hydrate(
        self,
        aggregates: Iterable[Any],
        references: Iterable[Reference],
        context: ResolutionContext | None = None,
    ) -> HydrationResult:
        """Resolve *references* on every aggregate in bounded queries."""
        items = list(aggregates)
        refs = list(references)
        ctx = context if context is not None else ResolutionContext()

        # Step 1: distinct non-null ids per repository.
        wanted: dict[Any, set[DomainId]] = {}
        for ref in refs:
            ids = wanted.setdefault(ref.repository, set())
            for aggregate in items:
                value = getattr(aggregate, ref.field)
                if value is not None:
                    ids.add(value)

        # Step 2/3: one batch query per repository with unknown ids.
        queries = 0
        for repository, ids in wanted.items():
            pending = ctx.unknown(repository, ids)
            if not pending:
                continue
            found = await repository.find_by_ids(pending)
            ctx.remember(repository, pending, found)
            queries += 1

        # Step 4: resolve by lookup.
        hydrated = tuple(
            HydratedItem(
                aggregate=aggregate,
                relations={
                    ref.relation_name: self._resolve(ctx, ref, aggregate)
                    for ref in refs
                },
            )
            for aggregate in items
        )

        logger.debug(
            "Hydrated %d items across %d references with %d queries",
            len(hydrated), len(refs), queries,
        )
        return HydrationResult(items=hydrated, context=ctx, queries_issued=queries)

    @staticmethod
    def _resolve(
        ctx: ResolutionContext, ref: Reference, aggregate: Any,
    ) -> RelationValue:
        domain_id = getattr(aggregate, ref.field)
        if domain_id is None:
            return None
        target = ctx.lookup(ref.repository, domain_id)
        if target is None:
            return Unresolved(id=domain_id)
        value = ref.summarize(target) if ref.summarize is not None else target
        return Resolved(id=domain_id, value=value)
