"""Data-quality scoring for parsed exports."""

import json
import logging
from typing import Any, Dict, List, Tuple

from ..models.schema import FieldMapping, ParsedField

logger = logging.getLogger(__name__)

# (null-rate threshold, penalty), checked in order
NULL_PENALTIES = [(0.5, 10), (0.25, 5), (0.10, 2)]
# (duplicate-rate threshold, penalty), checked in order
DUPLICATE_PENALTIES = [(0.20, 15), (0.10, 8), (0.05, 3)]
MIXED_TYPE_PENALTY = 3
NULL_WARNING_RATE = 0.5
LOW_CONFIDENCE = 0.7


def _row_key(record: Dict[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, default=str)


def count_duplicate_rows(records: List[Dict[str, Any]]) -> int:
    """Number of records that are exact copies of an earlier record."""
    return len(records) - len({_row_key(r) for r in records})


class QualityScorer:
    """
    Scores how clean an export is, from 0 (unusable) to 100.

    The score starts at 100 and loses points for sparse fields, fields with
    mixed value types and duplicated rows.
    """

    def score(
        self,
        records: List[Dict[str, Any]],
        fields: List[ParsedField]
    ) -> Tuple[int, List[str]]:
        """
        Score a parsed record set.

        Args:
            records: Parsed records
            fields: Fields inferred from the records

        Returns:
            Tuple of (score 0-100, warnings)
        """
        if not records:
            return 0, ["File contains no records"]

        score = 100
        warnings: List[str] = []

        for f in fields:
            for threshold, penalty in NULL_PENALTIES:
                if f.null_rate >= threshold:
                    score -= penalty
                    break
            if f.null_rate >= NULL_WARNING_RATE:
                warnings.append(f'Field "{f.name}" is empty in {f.null_rate * 100:.0f}% of records')
            if f.mixed_types:
                score -= MIXED_TYPE_PENALTY
                warnings.append(f'Field "{f.name}" mixes values of different types')

        duplicates = count_duplicate_rows(records)
        if duplicates:
            rate = duplicates / len(records)
            for threshold, penalty in DUPLICATE_PENALTIES:
                if rate > threshold:
                    score -= penalty
                    break
            warnings.append(f"Found {duplicates} duplicate records")

        score = max(0, min(100, score))
        logger.debug(f"Quality score {score} for {len(records)} records, {len(fields)} fields")
        return score, warnings

    def recommendations(
        self,
        fields: List[ParsedField],
        mappings: List[FieldMapping]
    ) -> List[str]:
        """Follow-up suggestions for a proposed mapping set."""
        recommendations = []
        mapped = {m.source_field for m in mappings}

        unmapped = [f.name for f in fields if f.name not in mapped]
        if unmapped:
            recommendations.append(
                f"{len(unmapped)} fields have no suggested mapping. Review them manually."
            )

        low_confidence = [m for m in mappings if m.confidence < LOW_CONFIDENCE]
        if low_confidence:
            recommendations.append(
                f"{len(low_confidence)} mappings have low confidence. Verify them before migrating."
            )

        return recommendations
