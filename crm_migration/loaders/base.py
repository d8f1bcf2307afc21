"""Base destination store interface."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
import logging
import uuid

from ..exceptions import DestinationWriteError
from ..models.schema import CANONICAL_SCHEMA, FieldType, TableSpec
from ..services.transformer import format_date, is_empty, parse_date, parse_number

logger = logging.getLogger(__name__)

TRUE_LITERALS = {"true", "yes", "1", "y", "si", "sí"}
FALSE_LITERALS = {"false", "no", "0", "n"}


@dataclass
class RollbackResult:
    """Result of deleting the rows written by a migration."""
    total: int = 0
    rolled_back: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "rolled_back": self.rolled_back,
            "failed": self.failed,
            "errors": self.errors,
        }


class Transaction(ABC):
    """Insert handle valid for the duration of one destination transaction."""

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> str:
        """Insert a row and return its new id."""
        pass


class DestinationStore(ABC):
    """
    Base class for destination stores.

    A store receives the rows produced from one source record and writes
    them atomically: either every row is inserted or none is. Child rows get
    their parent link filled with the id of the parent row written in the
    same call.
    """

    def __init__(self, schema: Optional[Dict[str, TableSpec]] = None):
        """
        Initialize the store.

        Args:
            schema: Destination tables (defaults to the canonical schema)
        """
        self.schema = schema or CANONICAL_SCHEMA

    @abstractmethod
    @contextmanager
    def _transaction(self) -> Iterator[Transaction]:
        """Open a transaction; commit on normal exit, discard on error."""
        pass

    @abstractmethod
    def delete(self, table: str, row_id: str) -> bool:
        """
        Delete a row.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def rows(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rows of a table, each including its id."""
        pass

    def count(self, table: str) -> int:
        return len(self.rows(table))

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def write_record(self, rows: Dict[str, Dict[str, Any]]) -> List[Dict[str, str]]:
        """
        Write all rows of one source record in a single transaction.

        Args:
            rows: Table -> row values

        Returns:
            Written rows as ``[{"table", "id"}]``, parents first

        Raises:
            DestinationWriteError: If any row is rejected; nothing is written
        """
        if not rows:
            raise DestinationWriteError("Record produced no destination values")

        order = list(self.schema)
        tables = sorted(rows, key=lambda t: order.index(t) if t in order else len(order))
        prepared = {table: self.prepare_row(table, rows[table]) for table in tables}

        written: List[Dict[str, str]] = []
        parent_ids: Dict[str, str] = {}

        with self._transaction() as tx:
            for table in tables:
                row = prepared[table]
                spec = self.schema[table]
                if spec.parent and is_empty(row.get(spec.parent_field)):
                    if spec.parent in parent_ids:
                        row[spec.parent_field] = parent_ids[spec.parent]
                row_id = tx.insert(table, row)
                parent_ids[table] = row_id
                written.append({"table": table, "id": row_id})

        logger.debug(f"Wrote {len(written)} rows: {', '.join(w['table'] for w in written)}")
        return written

    def prepare_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check a row against the schema and coerce values to column types.

        Raises:
            DestinationWriteError: On unknown tables or fields, missing
                required fields, or values of the wrong type
        """
        spec = self.schema.get(table)
        if spec is None:
            raise DestinationWriteError(f"Unknown destination table: {table}")

        unknown = [f for f in row if f not in spec.fields]
        if unknown:
            raise DestinationWriteError(f"Unknown fields for {table}: {', '.join(unknown)}", field=unknown[0])

        for required in spec.required:
            if is_empty(row.get(required)):
                raise DestinationWriteError(f"Missing required field {table}.{required}", field=required)

        return {
            name: self._coerce(table, name, spec.fields[name], value)
            for name, value in row.items()
        }

    def _coerce(self, table: str, name: str, field_type: FieldType, value: Any) -> Any:
        if value is None:
            return None
        if field_type == FieldType.BOOLEAN:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in TRUE_LITERALS:
                return True
            if text in FALSE_LITERALS:
                return False
        elif field_type == FieldType.NUMBER:
            number = parse_number(value)
            if number is not None:
                return number
        elif field_type == FieldType.DATE:
            parsed = parse_date(value)
            if parsed is not None:
                return format_date(parsed)
        else:
            return value if isinstance(value, str) else str(value)

        raise DestinationWriteError(
            f"Invalid {field_type.value} value for {table}.{name}: {value!r}", field=name
        )

    def rollback(self, targets: List[Dict[str, str]]) -> RollbackResult:
        """
        Delete written rows, children before parents.

        Args:
            targets: Rows as ``[{"table", "id"}]``

        Returns:
            RollbackResult with per-row failures
        """
        result = RollbackResult(total=len(targets))
        order = list(self.schema)
        ordered = sorted(
            targets,
            key=lambda t: order.index(t["table"]) if t["table"] in order else -1,
            reverse=True,
        )

        for target in ordered:
            try:
                if self.delete(target["table"], target["id"]):
                    result.rolled_back += 1
                else:
                    result.failed += 1
                    result.errors.append({**target, "error": "Row not found"})
            except DestinationWriteError as e:
                result.failed += 1
                result.errors.append({**target, "error": str(e)})
                logger.error(f"Failed to delete {target['table']} {target['id']}: {e}")

        logger.info(f"Rolled back {result.rolled_back}/{result.total} destination rows")
        return result
