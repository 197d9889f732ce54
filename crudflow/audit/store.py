import threading

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from crudflow.types import AuditRecord, IAuditStore


class MemoryAuditStore(IAuditStore):
    def __init__(self):
        self._records: list[AuditRecord] = []
        self._lock = threading.Lock()

    def write(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    def write_many(self, records: list[AuditRecord]) -> None:
        with self._lock:
            self._records.extend(records)

    @property
    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)


def _build_audit_table(table_name: str, metadata: MetaData) -> Table:
    """Build the SQLAlchemy Table object for audit records."""
    return Table(
        table_name,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("operation", String(32), nullable=False, index=True),
        Column("model", String(255), nullable=False),
        Column("table", String(255), nullable=False, index=True),
        Column("record_id", String(255), nullable=False, index=True),
        Column("old_record", Text, nullable=True),
        Column("record", Text, nullable=True),
        Column("request", Text, nullable=True),
        Column("response", Text, nullable=True),
        Column("query", Text, nullable=True),
        Column("user", String(255), nullable=False, index=True),
        Column("ip", String(64), nullable=False),
        Column("request_id", String(255), nullable=False),
        Column("method", String(16), nullable=False),
        Column("uri", Text, nullable=False),
        Column("user_agent", Text, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    )


class SQLAlchemyAuditStore(IAuditStore):
    """Audit store backed by SQLAlchemy Core, portable across dialects."""

    def __init__(
        self,
        url: str = "sqlite:///:memory:",
        *,
        table_name: str = "audit_log",
        engine: Engine | None = None,
        engine_kwargs: dict | None = None,
    ):
        if engine is None:
            kw = dict(engine_kwargs or {})
            if url.startswith("sqlite") and ":memory:" in url:
                # one shared connection, the drain thread must see the same database
                kw.setdefault("poolclass", StaticPool)
                kw.setdefault("connect_args", {"check_same_thread": False})
            engine = create_engine(url, **kw)
        self._engine = engine
        self._metadata = MetaData()
        self._table = _build_audit_table(table_name, self._metadata)
        self._metadata.create_all(self._engine)

    def _to_row(self, record: AuditRecord) -> dict:
        return {
            "operation": record.operation,
            "model": record.model,
            "table": record.table,
            "record_id": record.record_id,
            "old_record": record.old_record,
            "record": record.record,
            "request": record.request,
            "response": record.response,
            "query": record.query,
            "user": record.user,
            "ip": record.ip,
            "request_id": record.request_id,
            "method": record.method,
            "uri": record.uri,
            "user_agent": record.user_agent,
            "created_at": record.created_at,
        }

    def write(self, record: AuditRecord) -> None:
        self.write_many([record])

    def write_many(self, records: list[AuditRecord]) -> None:
        if not records:
            return
        with self._engine.begin() as conn:
            conn.execute(insert(self._table), [self._to_row(r) for r in records])

    def read_all(self) -> list[AuditRecord]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(self._table).order_by(self._table.c.seq))
            return [
                AuditRecord(**{k: v for k, v in row._mapping.items() if k != "seq"})
                for row in rows
            ]

    def dispose(self) -> None:
        self._engine.dispose()
