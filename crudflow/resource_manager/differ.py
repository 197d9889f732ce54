import logging
from typing import Any, TypeVar

from crudflow.model import PATCHABLE_COMMON_FIELDS, Base, FieldSpec, ModelSpec

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)


def _loggable(field: FieldSpec, value: Any) -> str:
    if field.nullable and value is None:
        return "<nil>"
    return repr(value) if isinstance(value, str) else str(value)


def _patchable(field: FieldSpec) -> bool:
    if field.common:
        return field.name in PATCHABLE_COMMON_FIELDS
    # nested structs are replaced by update, never merged
    return not field.nested


def patch_value(spec: ModelSpec[T], existing: T, incoming: T) -> list[str]:
    """Copy every non-zero field of `incoming` onto `existing` in place.

    Zero values (`None` for optional fields, falsy otherwise) mean "not
    sent" and leave the stored value untouched. Of the common fields only
    `remark` and `order` can be patched.

    Returns the names of the fields that were overwritten.
    """
    changed = []
    for field in spec.fields.values():
        if not _patchable(field):
            continue
        new = getattr(incoming, field.name)
        if field.is_zero(new):
            continue
        old = getattr(existing, field.name)
        logger.info(
            "[PATCH %s] field: %r: %s --> %s",
            spec.name,
            field.name,
            _loggable(field, old),
            _loggable(field, new),
        )
        setattr(existing, field.name, new)
        changed.append(field.name)
    return changed
