"""Business hooks and the registry that resolves them per model and phase."""

from typing import Any, Generic, TypeVar

import msgspec

from crudflow.types import Phase, RequestContext

T = TypeVar("T")


class Service(Generic[T]):
    """No-op implementation of every hook.

    Subclass and override what you need. `before_*` / `after_*` hooks
    run in unified mode and receive the resource (a list of resources
    for batch, list and import/export phases). They may mutate it in
    place. Raise `ServiceError` to reject the operation.

    `handle_*` methods are used in custom mode only: they receive the
    decoded request and their return value becomes the response data.
    """

    def before_create(self, ctx: RequestContext, resource: T) -> None:
        pass

    def after_create(self, ctx: RequestContext, resource: T) -> None:
        pass

    def before_delete(self, ctx: RequestContext, resource: T) -> None:
        pass

    def after_delete(self, ctx: RequestContext, resource: T) -> None:
        pass

    def before_update(self, ctx: RequestContext, resource: T) -> None:
        pass

    def after_update(self, ctx: RequestContext, resource: T) -> None:
        pass

    def before_patch(self, ctx: RequestContext, resource: T) -> None:
        pass

    def after_patch(self, ctx: RequestContext, resource: T) -> None:
        pass

    def before_list(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_list(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_get(self, ctx: RequestContext, resource: T) -> None:
        pass

    def after_get(self, ctx: RequestContext, resource: T) -> None:
        pass

    def before_create_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_create_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_delete_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_delete_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_update_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_update_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_patch_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_patch_many(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_import(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_import(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def before_export(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def after_export(self, ctx: RequestContext, resources: list[T]) -> None:
        pass

    def handle_create(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_delete(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_update(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_patch(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_list(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_get(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_create_many(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_delete_many(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_update_many(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_patch_many(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_import(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def handle_export(self, ctx: RequestContext, req: Any) -> Any:
        return None

    def filter(self, ctx: RequestContext, filters: dict[str, tuple]) -> dict[str, tuple]:
        """Adjust the equality filters resolved from the query string."""
        return filters

    def filter_raw(self, ctx: RequestContext) -> str:
        """Raw predicate forwarded to the storage layer, empty for none."""
        return ""

    def export(self, ctx: RequestContext, resources: list[T]) -> bytes:
        return msgspec.json.encode(resources)

    def import_(self, ctx: RequestContext, data: bytes, model: type[T]) -> list[T]:
        return msgspec.json.decode(data, type=list[model])


class ServiceRegistry:
    """Services keyed by model and phase.

    Lookup order: exact (model, phase), then the model-wide service, then
    a shared no-op `Service`.
    """

    def __init__(self):
        self._services: dict[tuple[type, Phase | None], Service] = {}
        self._default = Service()

    def register(self, model: type, service: Service, *phases: Phase) -> None:
        if not phases:
            self._services[(model, None)] = service
            return
        for phase in phases:
            self._services[(model, phase)] = service

    def lookup(self, model: type, phase: Phase) -> Service:
        service = self._services.get((model, phase))
        if service is None:
            service = self._services.get((model, None), self._default)
        return service
