from crudflow.audit.buffer import CircularBuffer
from crudflow.audit.manager import AuditManager
from crudflow.audit.store import MemoryAuditStore, SQLAlchemyAuditStore

__all__ = [
    "AuditManager",
    "CircularBuffer",
    "MemoryAuditStore",
    "SQLAlchemyAuditStore",
]
