"""
Shared pytest fixtures for the migration engine tests.

Provides datastores, a controllable clock and reusable source rows.
"""

from datetime import datetime, timedelta, timezone

import pytest

from enterprise_migration.datastore import InMemoryDatastore
from enterprise_migration.exceptions import DatastoreError
from enterprise_migration.models.mapping import FieldMapping


# =============================================================================
# Clock Fixtures
# =============================================================================

class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock frozen at 2024-01-15 12:00 UTC until advanced."""
    return FakeClock()


# =============================================================================
# Datastore Fixtures
# =============================================================================

@pytest.fixture
def datastore(clock):
    """Empty in-memory datastore with the built-in workflow template."""
    return InMemoryDatastore(clock=clock)


class FailingInsertDatastore(InMemoryDatastore):
    """In-memory datastore whose inserts into ``table`` fail for chosen source ids."""

    def __init__(self, table, failing_source_ids, transient=True, **kwargs):
        super().__init__(**kwargs)
        self.failing_table = table
        self.failing_source_ids = set(failing_source_ids)
        self.transient = transient
        self.insert_calls = []

    def insert(self, table, rows):
        if table == self.failing_table:
            self.insert_calls.append([r.get("source_id") for r in rows])
            if any(r.get("source_id") in self.failing_source_ids for r in rows):
                raise DatastoreError("connection reset by peer", transient=self.transient)
        return super().insert(table, rows)


@pytest.fixture
def failing_datastore_factory(clock):
    """Build a FailingInsertDatastore for a table and set of source ids."""
    def factory(table, failing_source_ids, transient=True):
        return FailingInsertDatastore(table, failing_source_ids, transient=transient, clock=clock)
    return factory


# =============================================================================
# Source Data Fixtures
# =============================================================================

@pytest.fixture
def staff_rows():
    """Three staff rows; the second is missing a last name."""
    return [
        {"id": "1", "first_name": "Maria", "last_name": "Lopez", "npi": "1234567893", "state": "Texas"},
        {"id": "2", "first_name": "Kevin", "last_name": "", "npi": "1234567893", "state": "Ohio"},
        {"id": "3", "first_name": "Priya", "last_name": "Shah", "npi": "1234567893", "state": "Utah"},
    ]


@pytest.fixture
def staff_mappings():
    """Mappings of the staff rows into hc_staff."""
    return [
        FieldMapping("first_name", "hc_staff", "first_name"),
        FieldMapping("last_name", "hc_staff", "last_name"),
        FieldMapping("npi", "hc_staff", "npi"),
        FieldMapping("state", "hc_staff", "state", transform="CONVERT_STATE_TO_CODE"),
    ]
