"""Post-migration quality scoring."""

import logging
from typing import List, Optional

from ..datastore.base import Datastore, eq, QUALITY_SCORES
from ..exceptions import DatastoreError
from ..models.quality import QualityScore

logger = logging.getLogger(__name__)

GRADE_THRESHOLDS = [
    (95, "A+"),
    (90, "A"),
    (85, "B+"),
    (80, "B"),
    (75, "C+"),
    (70, "C"),
    (60, "D"),
]

PRODUCTION_OVERALL_MIN = 85
PRODUCTION_ACCURACY_MIN = 90


def grade_for(score: float) -> str:
    """Letter grade for an overall score; boundaries are inclusive."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def is_ready_for_production(overall: float, accuracy: float) -> bool:
    """Both a good overall score and good accuracy are required."""
    return overall >= PRODUCTION_OVERALL_MIN and accuracy >= PRODUCTION_ACCURACY_MIN


class QualityScorer:
    """Computes and grades the quality of a migrated batch."""

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    def calculate_score(self, batch_id: str) -> QualityScore:
        """
        Compute the batch's quality score.

        The sub-scores come from the datastore; grading and the production
        readiness decision happen here. Never raises: on failure the score
        is all zeros with grade F.
        """
        try:
            data = self.datastore.calculate_quality_score(batch_id)
            score = QualityScore.from_dict({**data, "batch_id": batch_id})
        except Exception as e:
            logger.error(f"Failed to calculate quality score for batch {batch_id}: {e}")
            return QualityScore(batch_id=batch_id)

        score.grade = grade_for(score.overall_score)
        score.ready_for_production = is_ready_for_production(score.overall_score, score.accuracy_score)
        logger.info(f"Batch {batch_id} quality: {score.overall_score} ({score.grade})")
        return score

    def historical_scores(self, batch_id: Optional[str] = None, limit: int = 10) -> List[QualityScore]:
        """Recent scores, newest first."""
        filters = [eq("batch_id", batch_id)] if batch_id else []
        try:
            rows = self.datastore.select(QUALITY_SCORES, filters, order_by=["-calculated_at"], limit=limit)
        except DatastoreError as e:
            logger.error(f"Failed to load quality history: {e}")
            return []

        scores = []
        for row in rows:
            score = QualityScore.from_dict(row)
            score.grade = grade_for(score.overall_score)
            score.ready_for_production = is_ready_for_production(score.overall_score, score.accuracy_score)
            scores.append(score)
        return scores
