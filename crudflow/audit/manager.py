import logging
import threading
from typing import Any

import msgspec

from crudflow.audit.buffer import CircularBuffer
from crudflow.audit.store import MemoryAuditStore
from crudflow.config import AuditConfig
from crudflow.model import ModelSpec
from crudflow.types import AuditError, AuditRecord, IAuditStore, RequestContext

logger = logging.getLogger(__name__)

REDACTED = "***"


class AuditManager:
    """Records one AuditRecord per orchestrated operation.

    With `async_write` records go to a CircularBuffer that a single
    daemon thread drains every `flush_interval` seconds, writing in
    chunks of `batch_size`. Otherwise the store is written directly and
    failures surface as AuditError.
    """

    def __init__(self, config: AuditConfig | None = None, store: IAuditStore | None = None):
        self.config = config or AuditConfig()
        self.store = store or MemoryAuditStore()
        self.buffer: CircularBuffer[AuditRecord] = CircularBuffer(self.config.buffer_size)
        self._excluded_fields = {f.lower() for f in self.config.exclude_fields}
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._flush_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if not self.config.async_write or self.running:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._consume, name="crudflow-audit", daemon=True
        )
        self._worker.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the drain thread and write whatever is still buffered."""
        self._stop.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
        self.flush()

    def _consume(self) -> None:
        while not self._stop.wait(self.config.flush_interval):
            self.flush()

    def flush(self) -> int:
        """Drain the buffer into the store. Returns the number of records written."""
        written = 0
        with self._flush_lock:
            while True:
                chunk = self.buffer.drain(self.config.batch_size)
                if not chunk:
                    break
                try:
                    self.store.write_many(chunk)
                except Exception:
                    logger.exception("failed to write %d audit records", len(chunk))
                    continue
                written += len(chunk)
        return written

    def _sanitize(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: REDACTED if str(k).lower() in self._excluded_fields else self._sanitize(v)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [self._sanitize(v) for v in value]
        limit = self.config.max_field_length
        if isinstance(value, str) and limit and len(value) > limit:
            return value[:limit]
        return value

    def _serialize(self, payload: Any) -> str | None:
        if payload is None:
            return None
        if isinstance(payload, (bytes, bytearray)):
            if not payload:
                return None
            try:
                payload = msgspec.json.decode(payload)
            except msgspec.DecodeError:
                payload = payload.decode("utf-8", errors="replace")
        builtins = msgspec.to_builtins(payload)
        return msgspec.json.encode(self._sanitize(builtins)).decode()

    def record(
        self,
        ctx: RequestContext,
        spec: ModelSpec,
        record_id: str = "",
        *,
        old: Any = None,
        new: Any = None,
        request: Any = None,
        response: Any = None,
    ) -> None:
        config = self.config
        if not config.enable or ctx.phase is None:
            return
        if ctx.phase.value in config.exclude_operations:
            return
        if spec.physical_name in config.exclude_tables:
            return

        query = None
        if config.record_query_params and ctx.query:
            query = self._serialize(dict(ctx.query))
        entry = AuditRecord(
            operation=ctx.phase.value,
            model=spec.name,
            table=spec.physical_name,
            record_id=record_id,
            old_record=self._serialize(old) if config.record_old_values else None,
            record=self._serialize(new) if config.record_new_values else None,
            request=self._serialize(request) if config.record_request_body else None,
            response=self._serialize(response) if config.record_response_body else None,
            query=query,
            user=ctx.user,
            ip=ctx.client_ip,
            request_id=ctx.request_id,
            method=ctx.method,
            uri=ctx.path,
            user_agent=ctx.user_agent if config.record_user_agent else "",
            created_at=ctx.now,
        )

        if config.async_write:
            self.buffer.put(entry)
            return
        try:
            self.store.write(entry)
        except Exception as e:
            raise AuditError(f"failed to write audit log: {e}") from e
