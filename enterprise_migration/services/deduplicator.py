"""Fuzzy duplicate detection across one source batch."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..datastore.base import Datastore, eq, DEDUP_CANDIDATES
from ..exceptions import DedupResolutionError
from ..models.migration import utcnow, to_iso
from ..models.quality import DedupCandidate, DedupResolution
from ..models.record import SourceRow
from .similarity import name_similarity, normalize_phone, phonetic_code

logger = logging.getLogger(__name__)

NAME_WEIGHT = 0.4
DOB_WEIGHT = 0.25
PHONE_WEIGHT = 0.2
EMAIL_WEIGHT = 0.15


@dataclass
class PairScore:
    """Composite similarity of two records with the per-field parts."""
    overall: float
    name: Optional[float] = None
    dob_match: Optional[bool] = None
    phone: Optional[float] = None
    email: Optional[float] = None


def _as_row(record: Any, index: int) -> SourceRow:
    if isinstance(record, SourceRow):
        return record
    return SourceRow(record, row_number=index + 1)


def _full_name(row: SourceRow) -> str:
    first = row.get("first_name") if row.is_populated("first_name") else ""
    last = row.get("last_name") if row.is_populated("last_name") else ""
    name = f"{first} {last}".strip()
    if not name and row.is_populated("name"):
        name = str(row["name"]).strip()
    return name


def _dob(row: SourceRow) -> str:
    _, value = row.first_populated("date_of_birth", "dob")
    return str(value).strip() if value is not None else ""


def _phone(row: SourceRow) -> str:
    _, value = row.first_populated("phone", "phone_mobile")
    return normalize_phone(value)


def _email(row: SourceRow) -> str:
    return str(row["email"]).strip().lower() if row.is_populated("email") else ""


def score_pair(a: Mapping[str, Any], b: Mapping[str, Any]) -> PairScore:
    """
    Weighted composite similarity of two records.

    Name (0.4), date of birth (0.25), normalized phone (0.2) and email (0.15)
    each count only when both records carry the field; the weights of the
    fields that do count are renormalized to sum to 1.
    """
    ra = _as_row(a, 0)
    rb = _as_row(b, 1)
    score = 0.0
    weight = 0.0
    result = PairScore(overall=0.0)

    name_a, name_b = _full_name(ra), _full_name(rb)
    if name_a and name_b:
        result.name = name_similarity(name_a, name_b)
        score += NAME_WEIGHT * result.name
        weight += NAME_WEIGHT

    dob_a, dob_b = _dob(ra), _dob(rb)
    if dob_a and dob_b:
        result.dob_match = dob_a == dob_b
        score += DOB_WEIGHT * (1.0 if result.dob_match else 0.0)
        weight += DOB_WEIGHT

    phone_a, phone_b = _phone(ra), _phone(rb)
    if phone_a and phone_b:
        result.phone = 1.0 if phone_a == phone_b else 0.0
        score += PHONE_WEIGHT * result.phone
        weight += PHONE_WEIGHT

    email_a, email_b = _email(ra), _email(rb)
    if email_a and email_b:
        result.email = 1.0 if email_a == email_b else 0.0
        score += EMAIL_WEIGHT * result.email
        weight += EMAIL_WEIGHT

    result.overall = score / weight if weight else 0.0
    return result


class Deduplicator:
    """
    Surfaces near-duplicate source records before load.

    Pairs scoring at or above ``threshold`` become candidates. Only pairs at
    or above ``auto_merge_threshold`` may be resolved automatically; the
    rest are marked for human review.
    """

    def __init__(
        self,
        datastore: Datastore,
        threshold: float = 0.8,
        auto_merge_threshold: float = 0.95,
        blocking: bool = False,
    ):
        self.datastore = datastore
        self.threshold = threshold
        self.auto_merge_threshold = auto_merge_threshold
        self.blocking = blocking

    def _pairs(self, rows: List[SourceRow]) -> Iterable[Tuple[SourceRow, SourceRow]]:
        if not self.blocking:
            return combinations(rows, 2)

        # Bucket by phonetic code of the last name; rows without one share a bucket
        buckets: Dict[str, List[SourceRow]] = defaultdict(list)
        for row in rows:
            last = row.get("last_name") or _full_name(row).split(" ")[-1]
            buckets[phonetic_code(str(last or ""))].append(row)
        return (pair for bucket in buckets.values() for pair in combinations(bucket, 2))

    def find_duplicates(self, batch_id: str, records: List[Mapping[str, Any]]) -> List[DedupCandidate]:
        """
        Compare every unordered pair of records and persist the candidates.

        Args:
            batch_id: Batch the records belong to
            records: Source rows (``SourceRow`` or plain dicts)

        Returns:
            Candidates at or above the threshold, highest similarity first
        """
        rows = [_as_row(r, i) for i, r in enumerate(records)]
        candidates = []

        for a, b in self._pairs(rows):
            pair = score_pair(a, b)
            if pair.overall < self.threshold:
                continue
            candidates.append(DedupCandidate(
                batch_id=batch_id,
                record_a_id=a.record_id,
                record_a_data=a.to_dict(),
                record_b_id=b.record_id,
                record_b_data=b.to_dict(),
                overall_similarity=round(pair.overall, 4),
                name_similarity=pair.name,
                dob_match=pair.dob_match,
                phone_similarity=pair.phone,
                email_similarity=pair.email,
                requires_human_review=pair.overall < self.auto_merge_threshold,
            ))

        for candidate in candidates:
            self.datastore.insert_if_absent(DEDUP_CANDIDATES, candidate.to_dict(), "pair_key")

        if candidates:
            logger.warning(f"Found {len(candidates)} potential duplicate pairs in batch {batch_id}")

        candidates.sort(key=lambda c: c.overall_similarity, reverse=True)
        return candidates

    def resolve_duplicate(
        self,
        candidate_id: str,
        resolution: DedupResolution,
        resolved_by: str,
        notes: Optional[str] = None,
    ) -> DedupCandidate:
        """
        Record the decision for a pending candidate.

        Raises:
            DedupResolutionError: Unknown candidate, already resolved, or
                ``pending`` given as the resolution
        """
        resolution = DedupResolution(resolution)
        if resolution == DedupResolution.PENDING:
            raise DedupResolutionError("Cannot resolve a candidate back to pending")

        row = self.datastore.get_one(DEDUP_CANDIDATES, [eq("candidate_id", candidate_id)])
        if row is None:
            raise DedupResolutionError(f"Duplicate candidate not found: {candidate_id}")
        candidate = DedupCandidate.from_dict(row)
        if candidate.resolution != DedupResolution.PENDING:
            raise DedupResolutionError(
                f"Candidate {candidate_id} already resolved as {candidate.resolution.value}"
            )

        now = utcnow()
        self.datastore.update(
            DEDUP_CANDIDATES,
            {
                "resolution": resolution.value,
                "resolved_by": resolved_by,
                "resolution_notes": notes,
                "resolved_at": to_iso(now),
            },
            [eq("candidate_id", candidate_id), eq("resolution", DedupResolution.PENDING.value)],
        )
        candidate.resolution = resolution
        candidate.resolved_by = resolved_by
        candidate.resolution_notes = notes
        candidate.resolved_at = now
        logger.info(f"Duplicate candidate {candidate_id} resolved as {resolution.value} by {resolved_by}")
        return candidate

    def auto_resolve(self, batch_id: str, resolved_by: str = "system") -> int:
        """Auto-merge pending candidates that do not need human review."""
        resolved = 0
        for candidate in self.pending_duplicates(batch_id):
            if candidate.requires_human_review:
                continue
            self.resolve_duplicate(
                candidate.candidate_id,
                DedupResolution.AUTO_MERGED,
                resolved_by,
                notes=f"Auto-merged at similarity {candidate.overall_similarity}",
            )
            resolved += 1
        return resolved

    def pending_duplicates(self, batch_id: Optional[str] = None) -> List[DedupCandidate]:
        """Unresolved candidates, most similar first."""
        filters = [eq("resolution", DedupResolution.PENDING.value)]
        if batch_id:
            filters.append(eq("batch_id", batch_id))
        rows = self.datastore.select(DEDUP_CANDIDATES, filters, order_by=["-overall_similarity"])
        return [DedupCandidate.from_dict(r) for r in rows]
