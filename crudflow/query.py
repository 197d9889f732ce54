"""Resolve raw query-string parameters into a QueryDescriptor.

Decoding is best effort: a malformed integer or timestamp becomes its
zero value, a malformed boolean keeps its default, and a warning is
logged. The resolver itself never raises.
"""

import datetime as dt
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import msgspec

from crudflow.model import ModelSpec
from crudflow.types import (
    Cursor,
    ExpandPath,
    IndexHint,
    IndexHintMode,
    Pagination,
    QueryConfig,
    QueryDescriptor,
    SortClause,
    TimeRange,
)

logger = logging.getLogger(__name__)

PAGE = "page"
SIZE = "size"
COLUMN_NAME = "_column_name"
START_TIME = "_start_time"
END_TIME = "_end_time"
INDEX = "_index"
INDEX_MODE = "_index_mode"
SELECT = "_select"
NOCACHE = "_nocache"
OR = "_or"
FUZZY = "_fuzzy"
CURSOR_NEXT = "_cursor_next"
CURSOR_VALUE = "_cursor_value"
CURSOR_FIELDS = "_cursor_fields"
DEPTH = "_depth"
EXPAND = "_expand"
SORTBY = "_sortby"
NOTOTAL = "_nototal"

EXPAND_ALL = "all"
DEFAULT_LIMIT = 1000
MAX_DEPTH = 99

RESERVED = frozenset(
    {
        PAGE,
        SIZE,
        COLUMN_NAME,
        START_TIME,
        END_TIME,
        INDEX,
        INDEX_MODE,
        SELECT,
        NOCACHE,
        OR,
        FUZZY,
        CURSOR_NEXT,
        CURSOR_VALUE,
        CURSOR_FIELDS,
        DEPTH,
        EXPAND,
        SORTBY,
        NOTOTAL,
    }
)

_TRUE = {"1", "t", "true", "y", "yes", "on"}
_FALSE = {"0", "f", "false", "n", "no", "off"}

RawParams = Mapping[str, str | list[str]] | Iterable[tuple[str, str]]


def _normalize(params: RawParams) -> dict[str, list[str]]:
    items = params.items() if isinstance(params, Mapping) else params
    values: dict[str, list[str]] = {}
    for key, value in items:
        if isinstance(value, (list, tuple)):
            values.setdefault(key, []).extend(str(v) for v in value)
        else:
            values.setdefault(key, []).append(str(value))
    return values


class _Params:
    def __init__(self, values: dict[str, list[str]]):
        self.values = values

    def __contains__(self, key: str) -> bool:
        return key in self.values

    def text(self, key: str, default: str = "") -> str:
        if key not in self.values:
            return default
        return self.values[key][0].strip()

    def integer(self, key: str, default: int = 0) -> int:
        if key not in self.values:
            return default
        raw = self.text(key)
        try:
            return int(raw)
        except ValueError:
            logger.warning("invalid integer for %s: %r, using 0", key, raw)
            return 0

    def boolean(self, key: str, default: bool = False) -> bool:
        if key not in self.values:
            return default
        raw = self.text(key).lower()
        if raw in _TRUE:
            return True
        if raw in _FALSE:
            return False
        logger.warning("invalid boolean for %s: %r, using %s", key, raw, default)
        return default

    def time(self, key: str) -> dt.datetime | None:
        raw = self.text(key)
        if not raw:
            return None
        try:
            return dt.datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("invalid time for %s: %r, ignored", key, raw)
            return None

    def items(self, key: str) -> list[str]:
        return [item.strip() for item in self.text(key).split(",") if item.strip()]


def parse_sort(sort_by: str) -> list[SortClause]:
    """`"name desc, age"` -> [SortClause("name", True), SortClause("age")]"""
    clauses = []
    for part in sort_by.split(","):
        tokens = part.split()
        if not tokens:
            continue
        descending = len(tokens) > 1 and tokens[1].lower() == "desc"
        clauses.append(SortClause(field=tokens[0], descending=descending))
    return clauses


def _coerce(spec: ModelSpec, name: str, raw: str) -> tuple[Any, ...]:
    field = spec.fields[name]
    target = field.scalar_type
    coerced = []
    # comma separated values mean "any of"
    for item in raw.split(","):
        if not item:
            continue
        try:
            coerced.append(msgspec.convert(item, type=target, strict=False))
        except msgspec.ValidationError:
            logger.warning("invalid value for filter %s: %r, ignored", name, item)
    return tuple(coerced)


def _filters(params: _Params, spec: ModelSpec) -> dict[str, tuple[Any, ...]]:
    filters = {}
    for name, field in spec.queryable.items():
        if name in RESERVED:
            continue
        key = name if name in params else field.wire
        raw = params.text(key)
        if not raw:
            continue
        values = _coerce(spec, name, raw)
        if values:
            filters[name] = values
    return filters


def _expands(params: _Params, spec: ModelSpec, depth: int) -> tuple[ExpandPath, ...]:
    requested = params.items(EXPAND)
    if not requested:
        return ()
    if requested[0].lower() == EXPAND_ALL:
        requested = list(spec.relations)
    paths = []
    for name in requested:
        found = spec.relation(name)
        if found is None:
            logger.warning("%s has no relation %r to expand", spec.name, name)
            continue
        relation, field = found
        paths.append(
            ExpandPath(
                relation=relation,
                depth=depth if field.collection else 1,
                is_collection=field.collection,
            )
        )
    return tuple(paths)


def resolve_query(
    params: RawParams,
    spec: ModelSpec,
    *,
    default_size: int = DEFAULT_LIMIT,
    max_depth: int = MAX_DEPTH,
) -> QueryDescriptor:
    p = _Params(_normalize(params))

    depth = p.integer(DEPTH, 1)
    if depth < 1 or depth > max_depth:
        depth = 1

    size = p.integer(SIZE)
    if size <= 0:
        size = default_size
    page = max(p.integer(PAGE, 1), 1)

    pagination = None
    cursor = None
    cursor_value = p.text(CURSOR_VALUE)
    if cursor_value:
        fields = p.items(CURSOR_FIELDS)
        cursor = Cursor(
            value=cursor_value,
            field=fields[0] if fields else "id",
            forward=p.boolean(CURSOR_NEXT),
            size=size,
        )
    else:
        pagination = Pagination(page=page, size=size)

    index = None
    index_name = p.text(INDEX)
    if index_name:
        raw_mode = p.text(INDEX_MODE, IndexHintMode.use.value).lower()
        try:
            mode = IndexHintMode(raw_mode)
        except ValueError:
            logger.warning("invalid index mode %r, using %s", raw_mode, IndexHintMode.use)
            mode = IndexHintMode.use
        index = IndexHint(name=index_name, mode=mode)

    time_range = None
    column = p.text(COLUMN_NAME)
    if column:
        start, end = p.time(START_TIME), p.time(END_TIME)
        if start or end:
            time_range = TimeRange(column=column, start=start, end=end)

    return QueryDescriptor(
        filters=_filters(p, spec),
        config=QueryConfig(
            fuzzy=p.boolean(FUZZY),
            use_or=p.boolean(OR),
            allow_empty=True,
        ),
        sort_by=p.text(SORTBY),
        pagination=pagination,
        cursor=cursor,
        expands=_expands(p, spec, depth),
        select=tuple(p.items(SELECT)),
        index=index,
        cache=not p.boolean(NOCACHE, True),
        nototal=p.boolean(NOTOTAL),
        time_range=time_range,
    )
