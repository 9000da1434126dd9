"""Datastores the migration engine reads from and writes to."""

import logging
from typing import Optional

from ..models.migration import DatastoreSettings
from .base import Datastore, Filter, FilterOp
from .memory import InMemoryDatastore
from .rest import RestDatastore

logger = logging.getLogger(__name__)


def create_datastore(settings: Optional[DatastoreSettings] = None) -> Datastore:
    """REST datastore when a URL is configured, otherwise an in-memory one."""
    settings = settings or DatastoreSettings.from_env()
    if settings.is_remote:
        logger.info(f"Using REST datastore at {settings.url}")
        return RestDatastore.from_settings(settings)
    logger.warning("MIGRATION_DATASTORE_URL not set, using in-memory datastore")
    return InMemoryDatastore()


__all__ = [
    "Datastore",
    "Filter",
    "FilterOp",
    "InMemoryDatastore",
    "RestDatastore",
    "create_datastore",
]
