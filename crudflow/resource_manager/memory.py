import copy
import threading
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

import msgspec
from msgspec import Struct

from crudflow.model import Base, ModelSpec
from crudflow.query import parse_sort
from crudflow.types import (
    AlreadyExistError,
    Cursor,
    ExpandPath,
    IDatabase,
    IndexHint,
    NotFoundError,
    Pagination,
    PersistenceError,
    QueryConfig,
    RequestContext,
    TimeRange,
)

T = TypeVar("T", bound=Base)


class Scope(Struct, kw_only=True, frozen=True):
    """Query configuration accumulated by the chainable `with_*` calls."""

    filters: dict[str, tuple[Any, ...]] = {}
    # an unconfigured handle sees every row
    config: QueryConfig = msgspec.field(
        default_factory=lambda: QueryConfig(allow_empty=True)
    )
    pagination: Pagination | None = None
    cursor: Cursor | None = None
    index: IndexHint | None = None
    select: tuple[str, ...] = ()
    expands: tuple[ExpandPath, ...] = ()
    sort_by: str = ""
    time_range: TimeRange | None = None
    excludes: dict[str, list[Any]] = {}
    cache: bool = False
    purge: bool = False


class _Table:
    def __init__(self):
        self.rows: dict[str, bytes] = {}
        self.deleted: set[str] = set()
        self.lock = threading.RLock()
        self.last_scope: Scope | None = None


class MemoryDatabase(IDatabase[T], Generic[T]):
    """In-process storage keeping every row as msgspec-encoded JSON.

    Soft-deleted ids stay in `rows` and are hidden by a tombstone set.
    `raw_predicates` maps a raw query string returned by
    `Service.filter_raw` to a callable evaluated against each row.
    """

    def __init__(
        self,
        model: type[T],
        *,
        raw_predicates: dict[str, Callable[[T], bool]] | None = None,
    ):
        self.spec = ModelSpec(model)
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(model)
        self._raw_predicates = raw_predicates or {}
        self._table = _Table()
        self._scope = Scope()

    @property
    def last_scope(self) -> Scope | None:
        """Scope of the most recent read, for inspection."""
        return self._table.last_scope

    def _derive(self, **changes) -> "MemoryDatabase[T]":
        db = copy.copy(self)
        db._scope = msgspec.structs.replace(self._scope, **changes)
        return db

    def with_query(self, filters, config):
        return self._derive(filters=dict(filters), config=config)

    def with_pagination(self, pagination):
        return self._derive(pagination=pagination, cursor=None)

    def with_cursor(self, cursor):
        return self._derive(cursor=cursor, pagination=None)

    def with_index(self, hint):
        return self._derive(index=hint)

    def with_select(self, fields: Iterable[str]):
        return self._derive(select=tuple(fields))

    def with_expand(self, expands: Iterable[ExpandPath]):
        return self._derive(expands=tuple(expands))

    def with_order(self, sort_by):
        return self._derive(sort_by=sort_by)

    def with_time_range(self, time_range):
        return self._derive(time_range=time_range)

    def with_exclude(self, excludes):
        return self._derive(excludes=dict(excludes))

    def with_cache(self, enabled):
        return self._derive(cache=enabled)

    def with_purge(self, purge):
        return self._derive(purge=purge)

    def _load(self, resource_id: str) -> T:
        return self._decoder.decode(self._table.rows[resource_id])

    def _alive(self) -> list[T]:
        return [
            self._load(resource_id)
            for resource_id in self._table.rows
            if resource_id not in self._table.deleted
        ]

    def _match_filters(self, item: T) -> bool:
        scope = self._scope
        if not scope.filters:
            return scope.config.allow_empty
        results = []
        for name, values in scope.filters.items():
            actual = getattr(item, name, None)
            if scope.config.fuzzy:
                text = "" if actual is None else str(actual).lower()
                results.append(any(str(v).lower() in text for v in values))
            else:
                results.append(actual in values)
        return any(results) if scope.config.use_or else all(results)

    def _match(self, item: T) -> bool:
        scope = self._scope
        if not self._match_filters(item):
            return False
        if scope.config.raw:
            predicate = self._raw_predicates.get(scope.config.raw)
            if predicate is None:
                raise PersistenceError(f"unsupported raw query {scope.config.raw!r}")
            if not predicate(item):
                return False
        for name, values in scope.excludes.items():
            if getattr(item, name, None) in values:
                return False
        if scope.time_range is not None:
            value = getattr(item, scope.time_range.column, None)
            if value is None:
                return False
            if scope.time_range.start and value < scope.time_range.start:
                return False
            if scope.time_range.end and value > scope.time_range.end:
                return False
        return True

    def _sorted(self, items: list[T]) -> list[T]:
        # stable sort, least significant clause first
        for clause in reversed(parse_sort(self._scope.sort_by)):
            field = self.spec.field(clause.field)
            if field is None:
                raise PersistenceError(f"unknown sort field {clause.field!r}")
            items.sort(
                key=lambda i, name=field.name: (
                    getattr(i, name) is not None,
                    getattr(i, name),
                ),
                reverse=clause.descending,
            )
        return items

    def _page_by_cursor(self, items: list[T], cursor: Cursor) -> list[T]:
        field = self.spec.field(cursor.field)
        if field is None:
            raise PersistenceError(f"unknown cursor field {cursor.field!r}")
        try:
            pivot = msgspec.convert(cursor.value, type=field.scalar_type, strict=False)
        except msgspec.ValidationError as e:
            raise PersistenceError(f"invalid cursor value {cursor.value!r}") from e

        def key(item):
            return getattr(item, field.name)

        candidates = [i for i in items if key(i) is not None]
        if cursor.forward:
            page = sorted((i for i in candidates if key(i) > pivot), key=key)
            return page[: cursor.size]
        page = sorted((i for i in candidates if key(i) < pivot), key=key, reverse=True)
        # the caller still reads the page in ascending order
        return list(reversed(page[: cursor.size]))

    def _prune(self, nodes: list[T], attr: str, remaining: int) -> None:
        for node in nodes:
            children = getattr(node, attr, None)
            if not children:
                continue
            if remaining <= 0:
                setattr(node, attr, type(children)())
            else:
                self._prune(children, attr, remaining - 1)

    def _project(self, item: T) -> T:
        expanded = {e.relation: e for e in self._scope.expands}
        for relation, field in self.spec.relations.items():
            path = expanded.get(relation)
            if path is None:
                setattr(item, field.name, field.zero())
            elif field.collection:
                self._prune(getattr(item, field.name), field.name, path.depth - 1)
        if self._scope.select:
            keep = {"id"}
            for name in self._scope.select:
                field = self.spec.field(name)
                if field is not None:
                    keep.add(field.name)
            for name, field in self.spec.fields.items():
                if name not in keep:
                    setattr(item, name, field.zero())
        return item

    def create(self, ctx: RequestContext, items: list[T]) -> None:
        ctx.check()
        with self._table.lock:
            for item in items:
                resource_id = item.get_id()
                if (
                    resource_id in self._table.rows
                    and resource_id not in self._table.deleted
                ):
                    raise AlreadyExistError(resource_id)
            for item in items:
                self._table.rows[item.get_id()] = self._encoder.encode(item)
                self._table.deleted.discard(item.get_id())

    def update(self, ctx: RequestContext, items: list[T]) -> None:
        ctx.check()
        with self._table.lock:
            for item in items:
                self._table.rows[item.get_id()] = self._encoder.encode(item)
                self._table.deleted.discard(item.get_id())

    def delete(self, ctx: RequestContext, ids: list[str]) -> None:
        ctx.check()
        with self._table.lock:
            for resource_id in ids:
                if resource_id not in self._table.rows:
                    continue
                if self._scope.purge:
                    del self._table.rows[resource_id]
                    self._table.deleted.discard(resource_id)
                else:
                    self._table.deleted.add(resource_id)

    def list(self, ctx: RequestContext) -> list[T]:
        ctx.check()
        with self._table.lock:
            self._table.last_scope = self._scope
            items = [i for i in self._alive() if self._match(i)]
        if self._scope.cursor is not None:
            items = self._page_by_cursor(items, self._scope.cursor)
        else:
            items = self._sorted(items)
            if self._scope.pagination is not None:
                offset = self._scope.pagination.offset
                items = items[offset : offset + self._scope.pagination.size]
        return [self._project(i) for i in items]

    def get(self, ctx: RequestContext, resource_id: str) -> T:
        ctx.check()
        with self._table.lock:
            self._table.last_scope = self._scope
            if (
                resource_id not in self._table.rows
                or resource_id in self._table.deleted
            ):
                raise NotFoundError(resource_id)
            item = self._load(resource_id)
        return self._project(item)

    def count(self, ctx: RequestContext) -> int:
        ctx.check()
        with self._table.lock:
            self._table.last_scope = self._scope
            return sum(1 for i in self._alive() if self._match(i))

    @contextmanager
    def transaction(self, ctx: RequestContext) -> Generator[None, None, None]:
        ctx.check()
        with self._table.lock:
            rows = dict(self._table.rows)
            deleted = set(self._table.deleted)
            try:
                yield
            except BaseException:
                self._table.rows = rows
                self._table.deleted = deleted
                raise
