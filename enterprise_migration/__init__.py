"""
Enterprise Migration Engine

Batch data migration from legacy sources into a normalized target schema,
with the reliability guarantees an operational dataset needs.

Supports:
- Field-level lineage stored as content hashes
- Table snapshots with two-person approved rollback
- Durable retry queue with exponential backoff and jitter
- Fuzzy duplicate detection before load
- Post-migration quality scoring and grading
- Conditional per-column routing rules
- Dependency-ordered workflow templates and ranged work items for worker pools
"""

__version__ = "0.1.0"
