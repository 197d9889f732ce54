import datetime as dt
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from enum import StrEnum
from typing import Any, Generic, TypeVar

import msgspec
from msgspec import UNSET, Struct, UnsetType

T = TypeVar("T")


class Phase(StrEnum):
    create = "create"
    delete = "delete"
    update = "update"
    patch = "patch"
    list = "list"
    get = "get"
    create_many = "create_many"
    delete_many = "delete_many"
    update_many = "update_many"
    patch_many = "patch_many"
    import_ = "import"
    export = "export"

    @property
    def label(self) -> str:
        """`create_many` -> `CreateMany`"""
        return "".join(part.capitalize() for part in self.value.split("_"))

    @property
    def is_read(self) -> bool:
        return self in (Phase.list, Phase.get, Phase.export)

    @property
    def is_batch(self) -> bool:
        return self.value.endswith("_many")

    def hook_name(self, stage: "HookStage") -> str:
        return f"{stage.value}_{self.value}"

    @property
    def handler_name(self) -> str:
        return f"handle_{self.value}"


class HookStage(StrEnum):
    before = "before"
    after = "after"


class DispatchMode(StrEnum):
    # request, response and storage types are the same class
    unified = "unified"
    # any pair differs, Service.handle_<phase> owns the whole operation
    custom = "custom"


class IndexHintMode(StrEnum):
    use = "use"
    force = "force"
    ignore = "ignore"


class ExpandPath(Struct, frozen=True):
    relation: str
    depth: int = 1
    is_collection: bool = False

    @property
    def path(self) -> str:
        """Join path handed to the storage layer.

        Collection relations are self-referential trees, so depth N means the
        relation name repeated N times: `Children.Children.Children`.
        """
        if not self.is_collection:
            return self.relation
        return ".".join([self.relation] * self.depth)


class SortClause(Struct, frozen=True):
    field: str
    descending: bool = False


class Pagination(Struct, frozen=True):
    page: int = 1
    size: int = 1000

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size


class Cursor(Struct, frozen=True):
    value: str
    field: str = "id"
    forward: bool = False
    size: int = 1000


class IndexHint(Struct, frozen=True):
    name: str
    mode: IndexHintMode = IndexHintMode.use


class TimeRange(Struct, frozen=True):
    column: str
    start: dt.datetime | None = None
    end: dt.datetime | None = None


class QueryConfig(Struct, frozen=True, kw_only=True):
    fuzzy: bool = False
    use_or: bool = False
    # an empty filter set matches nothing unless this is set
    allow_empty: bool = False
    raw: str = ""


class QueryDescriptor(Struct, frozen=True, kw_only=True):
    filters: dict[str, tuple[Any, ...]] = {}
    config: QueryConfig = msgspec.field(default_factory=QueryConfig)
    sort_by: str = ""
    pagination: Pagination | None = None
    cursor: Cursor | None = None
    expands: tuple[ExpandPath, ...] = ()
    select: tuple[str, ...] = ()
    index: IndexHint | None = None
    cache: bool = False
    nototal: bool = False
    time_range: TimeRange | None = None

    @property
    def needs_total(self) -> bool:
        return not self.nototal and self.cursor is None


class BatchOptions(Struct, kw_only=True):
    atomic: bool = False
    purge: bool = False


class BatchSummary(Struct, kw_only=True):
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class BatchRequest(Struct, Generic[T], kw_only=True, omit_defaults=True):
    ids: list[str] = []
    items: list[T] = []
    options: BatchOptions = msgspec.field(default_factory=BatchOptions)
    summary: BatchSummary | UnsetType = UNSET


class ListResult(Struct, Generic[T], kw_only=True):
    items: list[T]
    # omitted from the wire when total is suppressed
    total: int | UnsetType = UNSET


class AuditRecord(Struct, kw_only=True, frozen=True):
    operation: str
    model: str
    table: str
    record_id: str = ""
    old_record: str | None = None
    record: str | None = None
    request: str | None = None
    response: str | None = None
    query: str | None = None
    user: str = ""
    ip: str = ""
    request_id: str = ""
    method: str = ""
    uri: str = ""
    user_agent: str = ""
    created_at: dt.datetime


class CRUDError(Exception):
    """Base class of every error the orchestrator maps onto a response code."""


class ValidationError(CRUDError):
    pass


class MissingIdentifierError(ValidationError):
    def __init__(self):
        super().__init__("id missing")


class RouteParamNotFoundError(ValidationError):
    def __init__(self, param: str = "id"):
        super().__init__(f"not found router param '{param}'")
        self.param = param


class NotFoundError(CRUDError):
    def __init__(self, resource_id: str = ""):
        super().__init__(f"Resource '{resource_id}' not found.")
        self.resource_id = resource_id


class AlreadyExistError(CRUDError):
    def __init__(self, resource_id: str):
        super().__init__(f"Resource '{resource_id}' already exists.")
        self.resource_id = resource_id


class PersistenceError(CRUDError):
    pass


class ServiceError(CRUDError):
    """Raised by business hooks to reject an operation.

    The message is shown to the caller as-is. `status_code` overrides the
    HTTP status, otherwise the generic failure status is used.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OperationCancelledError(CRUDError):
    pass


class AuditError(CRUDError):
    pass


class RequestContext(Struct, kw_only=True, frozen=True):
    method: str = ""
    path: str = ""
    route_id: str = ""
    query: list[tuple[str, str]] = []
    body: bytes = b""
    user: str = ""
    now: dt.datetime = msgspec.field(default_factory=dt.datetime.now)
    client_ip: str = ""
    request_id: str = ""
    user_agent: str = ""
    phase: Phase | None = None
    # time.monotonic() based
    deadline: float | None = None
    cancel_event: threading.Event | None = None

    def with_phase(self, phase: Phase) -> "RequestContext":
        return msgspec.structs.replace(self, phase=phase)

    def query_values(self, key: str) -> list[str]:
        return [v for k, v in self.query if k == key]

    def check(self) -> None:
        """Fail fast when the caller gave up on this request."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError("operation cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise OperationCancelledError("context deadline exceeded")


class IDatabase(ABC, Generic[T]):
    """Storage capability consumed by the orchestrator.

    Every `with_*` method returns a new configured handle and leaves the
    receiver untouched, so a base handle can be shared between requests.
    """

    @abstractmethod
    def with_query(
        self, filters: dict[str, tuple[Any, ...]], config: QueryConfig
    ) -> "IDatabase[T]": ...

    @abstractmethod
    def with_pagination(self, pagination: Pagination) -> "IDatabase[T]": ...

    @abstractmethod
    def with_cursor(self, cursor: Cursor) -> "IDatabase[T]": ...

    @abstractmethod
    def with_index(self, hint: IndexHint) -> "IDatabase[T]": ...

    @abstractmethod
    def with_select(self, fields: Iterable[str]) -> "IDatabase[T]": ...

    @abstractmethod
    def with_expand(self, expands: Iterable[ExpandPath]) -> "IDatabase[T]": ...

    @abstractmethod
    def with_order(self, sort_by: str) -> "IDatabase[T]": ...

    @abstractmethod
    def with_time_range(self, time_range: TimeRange) -> "IDatabase[T]": ...

    @abstractmethod
    def with_exclude(self, excludes: dict[str, list[Any]]) -> "IDatabase[T]": ...

    @abstractmethod
    def with_cache(self, enabled: bool) -> "IDatabase[T]": ...

    @abstractmethod
    def with_purge(self, purge: bool) -> "IDatabase[T]": ...

    @abstractmethod
    def create(self, ctx: RequestContext, items: list[T]) -> None: ...

    @abstractmethod
    def update(self, ctx: RequestContext, items: list[T]) -> None:
        """Insert or replace every item by id."""

    @abstractmethod
    def delete(self, ctx: RequestContext, ids: list[str]) -> None: ...

    @abstractmethod
    def list(self, ctx: RequestContext) -> list[T]: ...

    @abstractmethod
    def get(self, ctx: RequestContext, resource_id: str) -> T:
        """Raise NotFoundError when the id does not exist."""

    @abstractmethod
    def count(self, ctx: RequestContext) -> int: ...

    @abstractmethod
    @contextmanager
    def transaction(self, ctx: RequestContext) -> Generator[None, None, None]: ...


class IAuditStore(ABC):
    @abstractmethod
    def write(self, record: AuditRecord) -> None: ...

    @abstractmethod
    def write_many(self, records: list[AuditRecord]) -> None: ...
