import logging
from collections.abc import Callable
from contextlib import AbstractContextManager, nullcontext
from functools import partial
from typing import Any, Generic, TypeVar

import msgspec

from crudflow.audit import AuditManager
from crudflow.config import ControllerConfig
from crudflow.model import Base, ModelSpec
from crudflow.query import resolve_query
from crudflow.resource_manager.collector import collect_ids, resolve_id
from crudflow.resource_manager.differ import patch_value
from crudflow.response import Reply, error_reply
from crudflow.service import Service, ServiceRegistry
from crudflow.tracing import controller_span, trace_operation
from crudflow.types import (
    BatchRequest,
    BatchSummary,
    CRUDError,
    DispatchMode,
    ExpandPath,
    HookStage,
    IDatabase,
    ListResult,
    MissingIdentifierError,
    NotFoundError,
    OperationCancelledError,
    Pagination,
    PersistenceError,
    Phase,
    QueryConfig,
    QueryDescriptor,
    RequestContext,
    RouteParamNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)

Handler = Callable[[RequestContext], Reply]


class ResourceManager(Generic[T]):
    """Runs every CRUD operation of one resource type.

    Unified mode (request, response and storage types are the same
    class): before hook -> persistence -> after hook -> audit, with actor
    and timestamp fields filled in from the request context.

    Custom mode: the body (or query string for reads) is decoded into the
    request type and handed to `Service.handle_<phase>`, which owns the
    whole operation.

    Every operation returns a `Reply`; errors are mapped onto the
    response envelope and never escape.
    """

    def __init__(
        self,
        resource_type: type[T],
        *,
        database: IDatabase[T],
        name: str | None = None,
        request_type: type | None = None,
        response_type: type | None = None,
        services: ServiceRegistry | None = None,
        audit: AuditManager | None = None,
        config: ControllerConfig | None = None,
    ):
        self.resource_type = resource_type
        self.spec: ModelSpec[T] = ModelSpec(resource_type)
        self.name = name or self.spec.name
        self.request_type = request_type or resource_type
        self.response_type = response_type or resource_type
        if self.request_type is resource_type and self.response_type is resource_type:
            self.mode = DispatchMode.unified
        else:
            self.mode = DispatchMode.custom
        self.db = database
        self.services = services or ServiceRegistry()
        self.audit = audit or AuditManager()
        self.config = config or ControllerConfig()

        self._decoder = msgspec.json.Decoder(resource_type)
        self._batch_decoder = msgspec.json.Decoder(BatchRequest[resource_type])
        self._ids_decoder = msgspec.json.Decoder(list[str])
        self._request_decoder = msgspec.json.Decoder(self.request_type)
        # rows loaded for a write keep every relation
        self._full_expands = tuple(
            ExpandPath(
                relation=relation,
                depth=self.config.max_depth,
                is_collection=field.collection,
            )
            for relation, field in self.spec.relations.items()
        )

    def _service(self, ctx: RequestContext) -> Service[T]:
        return self.services.lookup(self.resource_type, ctx.phase)

    @staticmethod
    def _decode(decoder: msgspec.json.Decoder, body: bytes) -> Any:
        try:
            return decoder.decode(body)
        except msgspec.DecodeError as e:
            raise ValidationError(str(e)) from e

    def _resolve(self, ctx: RequestContext) -> QueryDescriptor:
        return resolve_query(
            ctx.query,
            self.spec,
            default_size=self.config.default_page_size,
            max_depth=self.config.max_depth,
        )

    def _hook(self, ctx: RequestContext, stage: HookStage, payload: Any) -> None:
        ctx.check()
        fn = getattr(self._service(ctx), ctx.phase.hook_name(stage))
        trace_operation(ctx.phase, self.name, partial(fn, ctx, payload), stage=stage)

    def _persist(self, ctx: RequestContext, fn: Callable[..., Any], *args: Any) -> Any:
        ctx.check()
        try:
            return trace_operation(
                ctx.phase, self.name, partial(fn, ctx, *args), component="database"
            )
        except CRUDError:
            raise
        except Exception as e:
            logger.exception("%s %s: persistence failed", ctx.phase.label, self.name)
            raise PersistenceError(f"{ctx.phase.value} {self.name} failed") from e

    def _audit(self, ctx: RequestContext, record_id: str = "", **payloads: Any) -> None:
        try:
            self.audit.record(ctx, self.spec, record_id, **payloads)
        except Exception as e:
            logger.warning(
                "%s %s: audit record for %r dropped: %s",
                ctx.phase.label,
                self.name,
                record_id,
                e,
            )

    def _stamp_created(self, ctx: RequestContext, resource: T) -> None:
        if not resource.get_id():
            resource.set_id()
        resource.set_created_by(ctx.user)
        resource.set_updated_by(ctx.user)
        resource.set_created_at(ctx.now)
        resource.set_updated_at(ctx.now)

    def _stamp_updated(self, ctx: RequestContext, resource: T) -> None:
        resource.set_updated_by(ctx.user)
        resource.set_updated_at(ctx.now)

    def _stub(self, resource_id: str) -> T:
        stub = self.spec.new()
        stub.set_id(resource_id)
        return stub

    def _load_one(self, ctx: RequestContext, resource_id: str) -> T:
        # fetch two rows so an ambiguous id is detected
        db = (
            self.db.with_query({"id": (resource_id,)}, QueryConfig())
            .with_pagination(Pagination(page=1, size=2))
            .with_expand(self._full_expands)
        )
        rows = self._persist(ctx, db.list)
        if len(rows) != 1:
            raise NotFoundError(resource_id)
        return rows[0]

    def _configure(
        self,
        query: QueryDescriptor,
        filters: dict[str, tuple],
        config: QueryConfig,
        *,
        paged: bool = True,
    ) -> IDatabase[T]:
        db = (
            self.db.with_query(filters, config)
            .with_exclude(self.spec.excludes)
            .with_cache(query.cache)
        )
        if query.index is not None:
            db = db.with_index(query.index)
        if query.time_range is not None:
            db = db.with_time_range(query.time_range)
        if not paged:
            return db
        if query.cursor is not None:
            db = db.with_cursor(query.cursor)
        elif query.pagination is not None:
            db = db.with_pagination(query.pagination)
        return db.with_select(query.select).with_expand(query.expands).with_order(
            query.sort_by
        )

    def _filters(self, ctx: RequestContext, query: QueryDescriptor):
        svc = self._service(ctx)
        filters = svc.filter(ctx, dict(query.filters))
        config = msgspec.structs.replace(query.config, raw=svc.filter_raw(ctx))
        return filters, config

    def _decode_batch(self, ctx: RequestContext, *, with_ids: bool) -> BatchRequest[T]:
        req = self._decode(self._batch_decoder, ctx.body)
        if req.ids and req.items:
            raise ValidationError("ids and items are mutually exclusive")
        if with_ids and req.items:
            raise ValidationError(f"{ctx.phase.value} expects ids, not items")
        if not with_ids and req.ids:
            raise ValidationError(f"{ctx.phase.value} expects items, not ids")
        return req

    def _batch_scope(
        self, ctx: RequestContext, req: BatchRequest[T]
    ) -> AbstractContextManager:
        if req.options.atomic:
            return self.db.transaction(ctx)
        return nullcontext()

    def _run(self, phase: Phase, ctx: RequestContext, handler: Handler) -> Reply:
        ctx = ctx.with_phase(phase)
        if self.config.log_request:
            logger.debug("%s %s request: %r", phase.label, self.name, ctx.body)
        try:
            with controller_span(phase, self.name, ctx):
                ctx.check()
                if self.mode is DispatchMode.custom:
                    reply = self._dispatch_custom(ctx)
                else:
                    reply = handler(ctx)
        except CRUDError as e:
            logger.error("%s %s: %s", phase.label, self.name, e)
            return error_reply(e)
        except Exception as e:
            return error_reply(e)
        if self.config.log_response:
            logger.debug("%s %s response: %r", phase.label, self.name, reply)
        return reply

    def _bind_custom(self, ctx: RequestContext) -> Any:
        if not ctx.phase.is_read and ctx.body.strip():
            return self._decode(self._request_decoder, ctx.body)
        # bodiless writes get a zero request; the id stays on ctx.route_id
        params: dict[str, Any] = dict(ctx.query) if ctx.phase.is_read else {}
        if ctx.route_id and ctx.phase.is_read:
            params["id"] = ctx.route_id
        try:
            return msgspec.convert(params, type=self.request_type, strict=False)
        except msgspec.ValidationError as e:
            raise ValidationError(str(e)) from e

    def _dispatch_custom(self, ctx: RequestContext) -> Reply:
        req = self._bind_custom(ctx)
        handler = getattr(self._service(ctx), ctx.phase.handler_name)
        ctx.check()
        rsp = trace_operation(ctx.phase, self.name, partial(handler, ctx, req))
        return Reply.ok(rsp)

    def _create(self, ctx: RequestContext) -> Reply:
        if not ctx.body.strip():
            logger.warning("%s: empty request body, nothing created", self.name)
            return Reply.ok(None, status=201)
        resource = self._decode(self._decoder, ctx.body)
        self._stamp_created(ctx, resource)
        self._hook(ctx, HookStage.before, resource)
        self._persist(ctx, self.db.create, [resource])
        self._hook(ctx, HookStage.after, resource)
        self._audit(
            ctx, resource.get_id(), new=resource, request=ctx.body, response=resource
        )
        return Reply.ok(resource, status=201)

    def _delete(self, ctx: RequestContext) -> Reply:
        body_ids = []
        if ctx.body.strip():
            body_ids = self._decode(self._ids_decoder, ctx.body)
        ids = collect_ids(ctx.route_id, ctx.query_values("id"), body_ids)
        stubs = [self._stub(resource_id) for resource_id in ids]
        for stub in stubs:
            self._hook(ctx, HookStage.before, stub)

        snapshots: dict[str, T] = {}
        for resource_id in ids:
            try:
                snapshots[resource_id] = self._persist(ctx, self.db.get, resource_id)
            except (NotFoundError, PersistenceError) as e:
                logger.error(
                    "%s: failed to load %r before delete: %s", self.name, resource_id, e
                )

        self._persist(ctx, self.db.with_purge(self.spec.purge).delete, ids)
        for stub in stubs:
            self._hook(ctx, HookStage.after, stub)
        for resource_id in ids:
            self._audit(ctx, resource_id, old=snapshots.get(resource_id))
        return Reply.no_content()

    def _update(self, ctx: RequestContext) -> Reply:
        resource = self._decode(self._decoder, ctx.body)
        resource_id = resolve_id(ctx.route_id, resource.get_id())
        resource.set_id(resource_id)
        existing = self._load_one(ctx, resource_id)
        resource.set_created_at(existing.get_created_at())
        resource.set_created_by(existing.get_created_by())
        self._stamp_updated(ctx, resource)

        self._hook(ctx, HookStage.before, resource)
        self._persist(ctx, self.db.update, [resource])
        self._hook(ctx, HookStage.after, resource)
        self._audit(
            ctx,
            resource_id,
            old=existing,
            new=resource,
            request=ctx.body,
            response=resource,
        )
        return Reply.ok(resource)

    def _patch(self, ctx: RequestContext) -> Reply:
        incoming = self._decode(self._decoder, ctx.body)
        resource_id = resolve_id(ctx.route_id, incoming.get_id())
        existing = self._load_one(ctx, resource_id)
        old = msgspec.to_builtins(existing)
        self._stamp_updated(ctx, existing)
        patch_value(self.spec, existing, incoming)

        self._hook(ctx, HookStage.before, existing)
        self._persist(ctx, self.db.update, [existing])
        self._hook(ctx, HookStage.after, existing)
        self._audit(
            ctx, resource_id, old=old, new=existing, request=ctx.body, response=existing
        )
        return Reply.ok(existing)

    def _list(self, ctx: RequestContext) -> Reply:
        query = self._resolve(ctx)
        filters, config = self._filters(ctx, query)
        resources: list[T] = []

        self._hook(ctx, HookStage.before, resources)
        db = self._configure(query, filters, config)
        resources.extend(self._persist(ctx, db.list))
        self._hook(ctx, HookStage.after, resources)

        result = ListResult(items=resources)
        # cursor pages never carry a total
        if query.needs_total:
            db = self._configure(query, filters, config, paged=False)
            result.total = self._persist(ctx, db.count)
        self._audit(ctx)
        return Reply.ok(result)

    def _get(self, ctx: RequestContext) -> Reply:
        if not ctx.route_id:
            raise RouteParamNotFoundError("id")
        query = self._resolve(ctx)
        resource = self._stub(ctx.route_id)

        self._hook(ctx, HookStage.before, resource)
        db = (
            self.db.with_select(query.select)
            .with_expand(query.expands)
            .with_cache(query.cache)
        )
        if query.index is not None:
            db = db.with_index(query.index)
        resource = self._persist(ctx, db.get, ctx.route_id)
        self._hook(ctx, HookStage.after, resource)

        if not resource.get_id():
            raise NotFoundError(ctx.route_id)
        self._audit(ctx, ctx.route_id)
        return Reply.ok(resource)

    def _create_many(self, ctx: RequestContext) -> Reply:
        req = self._decode_batch(ctx, with_ids=False)
        for item in req.items:
            self._stamp_created(ctx, item)

        self._hook(ctx, HookStage.before, req.items)
        with self._batch_scope(ctx, req):
            self._persist(ctx, self.db.create, req.items)
            self._hook(ctx, HookStage.after, req.items)
        for item in req.items:
            self._audit(ctx, item.get_id(), new=item)
        req.summary = BatchSummary(total=len(req.items), succeeded=len(req.items))
        return Reply.ok(req, status=201)

    def _delete_many(self, ctx: RequestContext) -> Reply:
        req = self._decode_batch(ctx, with_ids=True)
        if req.options.purge:
            logger.warning(
                "%s: purge is decided by the model, request purge flag ignored",
                self.name,
            )
        ids = collect_ids(None, None, req.ids)
        stubs = [self._stub(resource_id) for resource_id in ids]

        self._hook(ctx, HookStage.before, stubs)
        with self._batch_scope(ctx, req):
            self._persist(ctx, self.db.with_purge(self.spec.purge).delete, ids)
            self._hook(ctx, HookStage.after, stubs)
        for resource_id in ids:
            self._audit(ctx, resource_id)
        return Reply.no_content()

    def _update_many(self, ctx: RequestContext) -> Reply:
        req = self._decode_batch(ctx, with_ids=False)
        for item in req.items:
            if not item.get_id():
                raise MissingIdentifierError()
            self._stamp_updated(ctx, item)

        self._hook(ctx, HookStage.before, req.items)
        with self._batch_scope(ctx, req):
            self._persist(ctx, self.db.update, req.items)
            self._hook(ctx, HookStage.after, req.items)
        for item in req.items:
            self._audit(ctx, item.get_id(), new=item)
        req.summary = BatchSummary(total=len(req.items), succeeded=len(req.items))
        return Reply.ok(req)

    def _patch_many(self, ctx: RequestContext) -> Reply:
        req = self._decode_batch(ctx, with_ids=False)
        total = len(req.items)
        patched: list[T] = []
        olds: list[dict] = []
        for item in req.items:
            resource_id = item.get_id()
            # a failed read skips the item, a failed write below aborts the batch
            try:
                if not resource_id:
                    raise MissingIdentifierError()
                existing = self._load_one(ctx, resource_id)
            except OperationCancelledError:
                raise
            except CRUDError as e:
                logger.error("%s: skip patching %r: %s", self.name, resource_id, e)
                continue
            olds.append(msgspec.to_builtins(existing))
            self._stamp_updated(ctx, existing)
            patch_value(self.spec, existing, item)
            patched.append(existing)

        self._hook(ctx, HookStage.before, patched)
        with self._batch_scope(ctx, req):
            self._persist(ctx, self.db.update, patched)
            self._hook(ctx, HookStage.after, patched)
        for old, resource in zip(olds, patched):
            self._audit(ctx, resource.get_id(), old=old, new=resource)
        req.items = patched
        req.summary = BatchSummary(
            total=total, succeeded=len(patched), failed=total - len(patched)
        )
        return Reply.ok(req)

    def _export(self, ctx: RequestContext) -> Reply:
        query = self._resolve(ctx)
        filters, config = self._filters(ctx, query)
        resources: list[T] = []

        self._hook(ctx, HookStage.before, resources)
        db = self._configure(query, filters, config)
        resources.extend(self._persist(ctx, db.list))
        self._hook(ctx, HookStage.after, resources)

        svc = self._service(ctx)
        data = trace_operation(ctx.phase, self.name, partial(svc.export, ctx, resources))
        self._audit(ctx)
        return Reply(
            status=200,
            content=data,
            headers={"Content-Disposition": f'attachment; filename="{self.name}.json"'},
        )

    def _import(self, ctx: RequestContext) -> Reply:
        if not ctx.body.strip():
            raise ValidationError("empty import payload")
        svc = self._service(ctx)
        try:
            resources = trace_operation(
                ctx.phase,
                self.name,
                partial(svc.import_, ctx, ctx.body, self.resource_type),
            )
        except msgspec.DecodeError as e:
            raise ValidationError(str(e)) from e
        for resource in resources:
            self._stamp_created(ctx, resource)

        self._hook(ctx, HookStage.before, resources)
        self._persist(ctx, self.db.update, resources)
        self._hook(ctx, HookStage.after, resources)
        for resource in resources:
            self._audit(ctx, resource.get_id(), new=resource)
        summary = BatchSummary(total=len(resources), succeeded=len(resources))
        return Reply.ok(BatchRequest(items=resources, summary=summary))

    def create(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.create, ctx, self._create)

    def delete(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.delete, ctx, self._delete)

    def update(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.update, ctx, self._update)

    def patch(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.patch, ctx, self._patch)

    def get(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.get, ctx, self._get)

    def create_many(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.create_many, ctx, self._create_many)

    def delete_many(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.delete_many, ctx, self._delete_many)

    def update_many(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.update_many, ctx, self._update_many)

    def patch_many(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.patch_many, ctx, self._patch_many)

    def export(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.export, ctx, self._export)

    def import_(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.import_, ctx, self._import)

    def list(self, ctx: RequestContext) -> Reply:
        return self._run(Phase.list, ctx, self._list)
