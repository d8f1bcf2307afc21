"""Delimited-text (CSV) extractor."""

import csv
import io
import logging
from typing import Any, Dict, List, Optional

from .base import BaseExtractor, ExtractionResult
from ..exceptions import ParseError

logger = logging.getLogger(__name__)

DELIMITERS = (",", ";", "\t", "|")


class CSVExtractor(BaseExtractor):
    """
    Extractor for CSV exports.

    The first non-blank line is the header. Quoted values may contain the
    delimiter, quotes and line breaks. Blank lines are skipped and empty
    cells become None.
    """

    file_type = "csv"

    def __init__(self, delimiter: Optional[str] = None):
        """
        Initialize the CSV extractor.

        Args:
            delimiter: Delimiter character; sniffed from the content if omitted
        """
        self.delimiter = delimiter

    def extract(self, content: str) -> ExtractionResult:
        """Parse CSV content into records."""
        result = ExtractionResult(file_type=self.file_type)
        if content is None:
            raise ParseError("No content to parse")

        content = content.lstrip("\ufeff")
        delimiter = self.delimiter or self._sniff_delimiter(content)

        try:
            rows = [
                row for row in csv.reader(io.StringIO(content), delimiter=delimiter)
                if any(cell.strip() for cell in row)
            ]
        except csv.Error as e:
            raise ParseError(f"Invalid CSV content: {e}") from e

        if not rows:
            result.warnings.append("File contains no rows")
            return result

        header = [h.strip() for h in rows[0]]
        if any(not h for h in header):
            header = [h or f"column_{i + 1}" for i, h in enumerate(header)]
            result.warnings.append("Header has empty column names; generated placeholders")

        for row_num, row in enumerate(rows[1:], start=2):
            if len(row) > len(header):
                result.warnings.append(
                    f"Row {row_num} has {len(row)} values but the header has {len(header)}; extra values ignored"
                )
            result.records.append(self._process_row(header, row))

        result.fields = list(header)
        logger.info(f"Parsed {result.total_extracted} CSV records with {len(header)} columns")
        return result

    def _process_row(self, header: List[str], row: List[str]) -> Dict[str, Any]:
        """Zip a row against the header; missing trailing cells become None."""
        data = {}
        for idx, column in enumerate(header):
            value = row[idx].strip() if idx < len(row) else None
            data[column] = value if value else None
        return data

    def _sniff_delimiter(self, content: str) -> str:
        """Pick the candidate delimiter most frequent in the header line."""
        header = next((line for line in content.splitlines() if line.strip()), "")
        counts = {d: header.count(d) for d in DELIMITERS}
        best = max(counts, key=counts.get)
        return best if counts[best] else ","
