"""Domain layer — aggregates, events, repository contracts.

Everything here is immutable.  Aggregates reference each other only by
DomainId; resolving those ids is the job of the hydration layer.
"""
