"""Unit tests for quality scoring and grading."""

import pytest

from enterprise_migration.datastore.base import BATCHES, DEDUP_CANDIDATES
from enterprise_migration.services.quality import QualityScorer, grade_for, is_ready_for_production


def add_batch(datastore, batch_id, success, errors):
    datastore.insert(BATCHES, [{
        "batch_id": batch_id,
        "record_count": success + errors,
        "success_count": success,
        "error_count": errors,
    }])


class TestGrades:
    """Test the grade boundaries."""

    @pytest.mark.parametrize("score,grade", [
        (100, "A+"), (95, "A+"), (94.99, "A"), (90, "A"), (85, "B+"), (84.99, "B"), (84, "B"),
        (80, "B"), (75, "C+"), (70, "C"), (60, "D"), (59.99, "F"), (0, "F"),
    ])
    def test_grade_for(self, score, grade):
        assert grade_for(score) == grade

    def test_readiness_needs_overall_and_accuracy(self):
        assert is_ready_for_production(85, 90) is True
        assert is_ready_for_production(84.9, 100) is False
        assert is_ready_for_production(99, 89.9) is False


class TestQualityScorer:
    """Test scoring batches through the datastore."""

    def test_clean_batch(self, datastore):
        add_batch(datastore, "batch-1", success=9, errors=1)

        score = QualityScorer(datastore).calculate_score("batch-1")

        assert score.accuracy_score == 90.0
        assert score.overall_score == 97.0
        assert score.grade == "A+"
        assert score.ready_for_production is True

    def test_good_overall_poor_accuracy_not_ready(self, datastore):
        add_batch(datastore, "batch-1", success=5, errors=5)

        score = QualityScorer(datastore).calculate_score("batch-1")

        assert score.overall_score == 85.0
        assert score.grade == "B+"
        assert score.ready_for_production is False
        assert "Fix validation errors before proceeding" in score.recommendations

    def test_duplicates_lower_uniqueness(self, datastore):
        add_batch(datastore, "batch-1", success=4, errors=0)
        datastore.insert(DEDUP_CANDIDATES, [
            {"candidate_id": "c1", "batch_id": "batch-1", "resolution": "pending"},
            {"candidate_id": "c2", "batch_id": "batch-1", "resolution": "keep_both"},
        ])

        score = QualityScorer(datastore).calculate_score("batch-1")
        assert score.uniqueness_score == 75.0

    def test_unknown_batch_scores_zero(self, datastore):
        score = QualityScorer(datastore).calculate_score("missing")

        assert score.overall_score == 0.0
        assert score.grade == "F"
        assert score.ready_for_production is False

    def test_history_newest_first(self, datastore, clock):
        add_batch(datastore, "batch-1", success=5, errors=5)
        scorer = QualityScorer(datastore)
        scorer.calculate_score("batch-1")
        clock.advance(minutes=1)
        datastore.update(BATCHES, {"success_count": 10, "error_count": 0}, [])
        scorer.calculate_score("batch-1")

        history = scorer.historical_scores("batch-1")
        assert [s.grade for s in history] == ["A+", "B+"]
