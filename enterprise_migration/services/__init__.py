"""Services for migration reliability and orchestration."""

from .similarity import hash_value, edit_distance, phonetic_code, name_similarity
from .lineage import LineageTracker
from .snapshots import SnapshotManager
from .retry_queue import RetryQueue, backoff_delay_ms
from .work_coordinator import WorkCoordinator
from .deduplicator import Deduplicator, score_pair
from .quality import QualityScorer, grade_for
from .conditional_router import ConditionalRouter, RuleCache
from .workflow import WorkflowOrchestrator
from .transformer import ValueTransformer
from .validator import FieldValidator, ValidationRules
from .change_detector import ChangeDetector

__all__ = [
    "hash_value",
    "edit_distance",
    "phonetic_code",
    "name_similarity",
    "LineageTracker",
    "SnapshotManager",
    "RetryQueue",
    "backoff_delay_ms",
    "WorkCoordinator",
    "Deduplicator",
    "score_pair",
    "QualityScorer",
    "grade_for",
    "ConditionalRouter",
    "RuleCache",
    "WorkflowOrchestrator",
    "ValueTransformer",
    "FieldValidator",
    "ValidationRules",
    "ChangeDetector",
]
