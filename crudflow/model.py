import copy
import datetime as dt
import types
import typing
from typing import Any, Generic, TypeVar
from uuid import uuid4

import msgspec
from msgspec import NODEFAULT, Struct

from crudflow.util.naming import table_name_of

T = TypeVar("T", bound="Base")


class Base(Struct, kw_only=True):
    """Common audit sub-structure embedded in every resource type.

    Subclasses must give every field a default: the orchestrator builds
    zero-valued instances with `model()` when it needs a stub.
    """

    id: str = ""
    created_by: str = ""
    updated_by: str = ""
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    remark: str | None = None
    order: int | None = None

    def table_name(self) -> str:
        """Physical storage name. Empty means derived from the type name."""
        return ""

    def get_id(self) -> str:
        return self.id

    def set_id(self, resource_id: str = "") -> None:
        self.id = resource_id or uuid4().hex

    def clear_id(self) -> None:
        self.id = ""

    def get_created_at(self) -> dt.datetime | None:
        return self.created_at

    def set_created_at(self, value: dt.datetime | None) -> None:
        self.created_at = value

    def get_updated_at(self) -> dt.datetime | None:
        return self.updated_at

    def set_updated_at(self, value: dt.datetime | None) -> None:
        self.updated_at = value

    def get_created_by(self) -> str:
        return self.created_by

    def set_created_by(self, value: str) -> None:
        self.created_by = value

    def get_updated_by(self) -> str:
        return self.updated_by

    def set_updated_by(self, value: str) -> None:
        self.updated_by = value

    def expands(self) -> list[str]:
        """Relation field names the storage layer may load on request."""
        return []

    def excludes(self) -> dict[str, list[Any]]:
        """Rows whose field value is in the listed set are never returned."""
        return {}

    def purge(self) -> bool:
        """True for hard delete, False for soft delete."""
        return False


COMMON_FIELDS = frozenset(f.name for f in msgspec.structs.fields(Base))
# the only common fields a partial update may overwrite
PATCHABLE_COMMON_FIELDS = frozenset({"remark", "order"})

_COLLECTIONS = (list, tuple, set, frozenset)


def _union_args(tp: Any) -> tuple[Any, ...]:
    if typing.get_origin(tp) in (typing.Union, types.UnionType):
        return typing.get_args(tp)
    return (tp,)


def _is_struct(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, Struct)


class FieldSpec(Struct, frozen=True, kw_only=True):
    name: str
    wire: str
    type: Any
    nullable: bool
    common: bool
    collection: bool
    nested: bool
    default: Any = NODEFAULT
    default_factory: Any = NODEFAULT

    @property
    def scalar_type(self) -> Any:
        """Declared type without the `None` member, used to coerce filters."""
        args = [a for a in _union_args(self.type) if a is not type(None)]
        if len(args) == 1:
            return args[0]
        return typing.Union[tuple(args)]

    def is_zero(self, value: Any) -> bool:
        if self.nullable:
            return value is None
        if isinstance(value, (dt.datetime, dt.date, dt.time)):
            return False
        return not value

    def zero(self) -> Any:
        if self.default_factory is not NODEFAULT:
            return self.default_factory()
        if isinstance(self.default, (list, dict, set)):
            return copy.copy(self.default)
        return self.default

    @classmethod
    def from_field(cls, info: msgspec.structs.FieldInfo) -> "FieldSpec":
        members = _union_args(info.type)
        nullable = type(None) in members
        concrete = [m for m in members if m is not type(None)]
        collection = any(
            m in _COLLECTIONS or typing.get_origin(m) in _COLLECTIONS
            for m in concrete
        )
        return cls(
            name=info.name,
            wire=info.encode_name,
            type=info.type,
            nullable=nullable,
            common=info.name in COMMON_FIELDS,
            collection=collection,
            nested=not collection and any(_is_struct(m) for m in concrete),
            default=info.default,
            default_factory=info.default_factory,
        )


class ModelSpec(Generic[T]):
    """Field-descriptor table of a resource type, built once at registration."""

    def __init__(self, model: type[T]):
        if not (isinstance(model, type) and issubclass(model, Base)):
            raise TypeError(f"{model!r} must subclass crudflow.model.Base")
        self.model = model
        self.name = model.__name__
        infos = msgspec.structs.fields(model)
        missing = [f.name for f in infos if f.required]
        if missing:
            raise TypeError(
                f"{self.name} must declare a default for field(s): {', '.join(missing)}"
            )
        self.fields: dict[str, FieldSpec] = {
            info.name: FieldSpec.from_field(info) for info in infos
        }
        self._by_wire = {f.wire: f for f in self.fields.values()}

        sample = self.new()
        self.physical_name = sample.table_name() or table_name_of(self.name)
        self.excludes = sample.excludes()
        self.purge = sample.purge()

        by_lower = {name.lower(): f for name, f in self.fields.items()}
        self.relations: dict[str, FieldSpec] = {}
        for relation in sample.expands():
            field = by_lower.get(relation.lower())
            if field is None:
                raise TypeError(f"{self.name}.expands() names unknown field {relation!r}")
            self.relations[relation] = field

    def new(self) -> T:
        return self.model()

    def field(self, name: str) -> FieldSpec | None:
        return self.fields.get(name) or self._by_wire.get(name)

    @property
    def queryable(self) -> dict[str, FieldSpec]:
        """Fields that can be used as equality filters from the query string."""
        return {
            name: f
            for name, f in self.fields.items()
            if not f.collection and not f.nested
        }

    def relation(self, name: str) -> tuple[str, FieldSpec] | None:
        """Look up a declared relation, ignoring case."""
        for relation, field in self.relations.items():
            if relation.lower() == name.lower():
                return relation, field
        return None
