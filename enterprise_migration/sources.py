"""CSV/JSON source row and mapping file readers."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import ConfigError
from .models.mapping import FieldMapping
from .models.record import SourceRow

logger = logging.getLogger(__name__)

JSON_LIST_KEYS = ("data", "records", "items", "rows", "results")


class SourceReader:
    """
    Reads source exports into ``SourceRow`` lists.

    Supports:
    - CSV with delimiter sniffing and a latin-1 fallback
    - JSON arrays, or objects wrapping one under a common key
    - JSON Lines

    Values are kept as strings; blank CSV cells become present nulls so
    that validation can tell them apart from missing columns.
    """

    def __init__(
        self,
        id_column: Optional[str] = None,
        encoding: str = "utf-8",
        delimiter: str = ",",
    ):
        """
        Initialize the reader.

        Args:
            id_column: Column holding the source record id
            encoding: File encoding tried first
            delimiter: CSV delimiter used when sniffing fails
        """
        self.id_column = id_column
        self.encoding = encoding
        self.delimiter = delimiter

    def read(self, path: Union[str, Path]) -> List[SourceRow]:
        """Read a CSV, JSON or JSONL file; the format follows the suffix."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Source file not found: {path}")

        suffix = path.suffix.lower()
        if suffix == ".json":
            rows = self._read_json(path)
        elif suffix == ".jsonl":
            rows = self._read_jsonl(path)
        else:
            rows = self._read_csv(path)

        logger.info(f"Read {len(rows)} source rows from {path}")
        return rows

    def _make_row(self, data: Dict[str, Any], row_number: int) -> SourceRow:
        source_id = None
        if self.id_column and data.get(self.id_column) not in (None, ""):
            source_id = str(data[self.id_column])
        return SourceRow(data, row_number=row_number, source_id=source_id)

    def _read_csv(self, path: Path) -> List[SourceRow]:
        try:
            return self._read_csv_with_encoding(path, self.encoding, sniff=True)
        except UnicodeDecodeError:
            logger.warning(f"{self.encoding} decode failed, trying latin-1 for {path}")
            return self._read_csv_with_encoding(path, "latin-1", sniff=False)

    def _read_csv_with_encoding(self, path: Path, encoding: str, sniff: bool) -> List[SourceRow]:
        rows = []
        with open(path, "r", encoding=encoding, newline="") as f:
            delimiter = self.delimiter
            if sniff:
                sample = f.read(8192)
                f.seek(0)
                try:
                    delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
                except csv.Error:
                    pass

            reader = csv.DictReader(f, delimiter=delimiter)
            for row_number, raw in enumerate(reader, start=1):
                data = {}
                for column, value in raw.items():
                    if column is None:
                        continue
                    if value is not None:
                        value = value.strip() or None
                    data[column.strip()] = value

                if all(v is None for v in data.values()):
                    logger.debug(f"Skipping empty row {row_number} in {path}")
                    continue
                rows.append(self._make_row(data, len(rows) + 1))
        return rows

    def _read_json(self, path: Path) -> List[SourceRow]:
        try:
            with open(path, "r", encoding=self.encoding) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

        if isinstance(data, dict):
            for key in JSON_LIST_KEYS:
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
            else:
                data = [data]

        if not isinstance(data, list):
            raise ConfigError(f"Unexpected JSON structure in {path}")

        return [self._make_row(item, i + 1) for i, item in enumerate(data) if isinstance(item, dict)]

    def _read_jsonl(self, path: Path) -> List[SourceRow]:
        rows = []
        with open(path, "r", encoding=self.encoding) as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError as e:
                    raise ConfigError(f"Invalid JSON on line {line_number} of {path}: {e}") from e
                rows.append(self._make_row(item, len(rows) + 1))
        return rows


def load_mappings(path: Union[str, Path]) -> List[FieldMapping]:
    """
    Load mapping suggestions from a JSON file.

    The file holds a list of mappings, or an object with a ``mappings`` list.
    Entries mapped to ``UNMAPPED`` are kept; the orchestrator ignores them.
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read mapping file {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("mappings", [])

    mappings = []
    for i, entry in enumerate(data):
        try:
            mappings.append(FieldMapping.from_dict(entry))
        except (AttributeError, KeyError, TypeError) as e:
            raise ConfigError(f"Invalid mapping #{i + 1} in {path}: {e}") from e
    return mappings
