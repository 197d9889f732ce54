from collections.abc import Iterable

from crudflow.types import MissingIdentifierError


def collect_ids(
    route_id: str | None,
    query_ids: Iterable[str] | None = None,
    body_ids: Iterable[str] | None = None,
) -> list[str]:
    """Union of identifiers from route, query string and body.

    Order is first occurrence across route, query, body. Empty strings are
    dropped.
    """
    ids: dict[str, None] = {}
    for source in ([route_id or ""], query_ids or (), body_ids or ()):
        for resource_id in source:
            if resource_id:
                ids.setdefault(resource_id, None)
    return list(ids)


def resolve_id(route_id: str | None, body_id: str | None) -> str:
    """The route parameter wins over an id carried in the body."""
    if route_id:
        return route_id
    if body_id:
        return body_id
    raise MissingIdentifierError()
