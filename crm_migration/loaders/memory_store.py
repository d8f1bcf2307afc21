"""In-memory destination store."""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .base import DestinationStore, Transaction

logger = logging.getLogger(__name__)


class _StagedTransaction(Transaction):
    """Collects inserts until the transaction commits."""

    def __init__(self, store: "InMemoryDestinationStore"):
        self.store = store
        self.staged: List[Tuple[str, str, Dict[str, Any]]] = []

    def insert(self, table: str, row: Dict[str, Any]) -> str:
        row_id = self.store.new_id()
        self.staged.append((table, row_id, dict(row)))
        return row_id


class InMemoryDestinationStore(DestinationStore):
    """Destination tables kept in dicts; a failed transaction leaves no rows."""

    def __init__(self, schema=None):
        super().__init__(schema)
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in self.schema}

    @contextmanager
    def _transaction(self) -> Iterator[Transaction]:
        tx = _StagedTransaction(self)
        yield tx
        with self._lock:
            for table, row_id, row in tx.staged:
                self._tables[table][row_id] = {"id": row_id, **row}

    def delete(self, table: str, row_id: str) -> bool:
        with self._lock:
            return self._tables.get(table, {}).pop(row_id, None) is not None

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._tables.get(table, {}).get(row_id)
            return copy.deepcopy(row) if row else None

    def rows(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._tables.get(table, {}).values())
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    def insert_existing(self, table: str, row: Dict[str, Any]) -> str:
        """Seed a row outside any migration (e.g. pre-existing companies)."""
        with self._transaction() as tx:
            return tx.insert(table, self.prepare_row(table, row))
