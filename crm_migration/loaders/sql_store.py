"""SQL destination store backed by SQLAlchemy Core."""

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Engine,
    Float,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from ..exceptions import DestinationWriteError
from ..models.schema import FieldType, TableSpec
from .base import DestinationStore, Transaction

logger = logging.getLogger(__name__)

COLUMN_TYPES = {
    FieldType.STRING: Text,
    FieldType.NUMBER: Float,
    FieldType.BOOLEAN: Boolean,
    FieldType.DATE: lambda: String(32),  # ISO 8601
}


def build_metadata(schema: Dict[str, TableSpec]) -> MetaData:
    """Create SQLAlchemy tables for the destination schema."""
    metadata = MetaData()
    for spec in schema.values():
        columns = [Column("id", String(36), primary_key=True)]
        for name, field_type in spec.fields.items():
            if name == spec.parent_field:
                columns.append(Column(name, String(36), ForeignKey(f"{spec.parent}.id"), nullable=True))
            else:
                columns.append(Column(name, COLUMN_TYPES[field_type](), nullable=name not in spec.required))
        Table(spec.name, metadata, *columns)
    return metadata


def create_destination_engine(database_url: str) -> Engine:
    """Instantiate an engine; in-memory SQLite shares one connection across threads."""
    kwargs: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, **kwargs)


class _ConnectionTransaction(Transaction):
    def __init__(self, store: "SQLDestinationStore", conn):
        self.store = store
        self.conn = conn

    def insert(self, table: str, row: Dict[str, Any]) -> str:
        row_id = self.store.new_id()
        self.conn.execute(self.store.tables[table].insert().values(id=row_id, **row))
        return row_id


class SQLDestinationStore(DestinationStore):
    """
    Destination store writing to a relational database.

    Each source record is written inside ``engine.begin()``, so a failing
    row rolls back the other rows of the same record.
    """

    def __init__(self, engine: Engine, schema=None, create_tables: bool = True):
        """
        Initialize the SQL store.

        Args:
            engine: SQLAlchemy engine
            schema: Destination tables (defaults to the canonical schema)
            create_tables: Create missing tables on startup
        """
        super().__init__(schema)
        self.engine = engine
        self.metadata = build_metadata(self.schema)
        self.tables = self.metadata.tables
        # One shared connection (in-memory SQLite) must not be used by two threads at once
        self._lock = threading.RLock() if isinstance(engine.pool, StaticPool) else None
        if create_tables:
            self.metadata.create_all(self.engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SQLDestinationStore":
        logger.info(f"Connecting destination store: {database_url.split('@')[-1]}")
        return cls(create_destination_engine(database_url), **kwargs)

    def _guard(self):
        return self._lock if self._lock is not None else nullcontext()

    @contextmanager
    def _transaction(self) -> Iterator[Transaction]:
        try:
            with self._guard(), self.engine.begin() as conn:
                yield _ConnectionTransaction(self, conn)
        except SQLAlchemyError as e:
            raise DestinationWriteError(f"Database write failed: {e.__class__.__name__}: {e}") from e

    def delete(self, table: str, row_id: str) -> bool:
        if table not in self.tables:
            raise DestinationWriteError(f"Unknown destination table: {table}")
        try:
            with self._guard(), self.engine.begin() as conn:
                result = conn.execute(delete(self.tables[table]).where(self.tables[table].c.id == row_id))
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DestinationWriteError(f"Database delete failed: {e}") from e

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        if table not in self.tables:
            return None
        with self._guard(), self.engine.connect() as conn:
            row = conn.execute(select(self.tables[table]).where(self.tables[table].c.id == row_id)).mappings().first()
            return dict(row) if row else None

    def rows(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if table not in self.tables:
            return []
        query = select(self.tables[table])
        if limit is not None:
            query = query.limit(limit)
        with self._guard(), self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(query).mappings()]
