from pod_marketplace.contexts.search.index import (
    SearchDocument,
    SearchIndex,
    SearchIndexer,
    register,
)

__all__ = ["SearchDocument", "SearchIndex", "SearchIndexer", "register"]
