"""Shared FastAPI dependencies."""

from functools import lru_cache

from ..datastore import Datastore, create_datastore


@lru_cache(maxsize=1)
def get_datastore() -> Datastore:
    """Process-wide datastore, configured from the environment."""
    return create_datastore()
