"""Bounded contexts that react to catalog events.

Each context depends only on event names and payload keys from
:mod:`pod_marketplace.domain.events` and exposes a ``register`` function
called during bootstrap, before the handler registry is frozen.
"""
