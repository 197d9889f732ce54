import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Literal, TypeVar

from fastapi import APIRouter, FastAPI

from crudflow.audit import AuditManager
from crudflow.config import AuditConfig, ControllerConfig
from crudflow.crud.route_templates.basic import DependencyProvider, IRouteTemplate
from crudflow.crud.route_templates.batch import BatchRouteTemplate
from crudflow.crud.route_templates.create import CreateRouteTemplate
from crudflow.crud.route_templates.delete import DeleteRouteTemplate
from crudflow.crud.route_templates.export_import import (
    ExportRouteTemplate,
    ImportRouteTemplate,
)
from crudflow.crud.route_templates.get import ReadRouteTemplate
from crudflow.crud.route_templates.search import ListRouteTemplate
from crudflow.crud.route_templates.update import PatchRouteTemplate, UpdateRouteTemplate
from crudflow.model import Base
from crudflow.resource_manager.core import ResourceManager
from crudflow.resource_manager.memory import MemoryDatabase
from crudflow.service import Service, ServiceRegistry
from crudflow.types import IAuditStore, IDatabase, Phase
from crudflow.util.naming import NameConverter

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)


def default_route_templates(
    dependency_provider: DependencyProvider | None = None,
) -> list[IRouteTemplate]:
    deps = dependency_provider or DependencyProvider()
    return [
        BatchRouteTemplate(deps),
        ExportRouteTemplate(deps),
        ImportRouteTemplate(deps),
        CreateRouteTemplate(deps, order=100),
        ListRouteTemplate(deps, order=110),
        ReadRouteTemplate(deps, order=120),
        UpdateRouteTemplate(deps, order=130),
        PatchRouteTemplate(deps, order=140),
        DeleteRouteTemplate(deps, order=150),
    ]


class AutoCRUD:
    """把模型註冊成 CRUD API

    所有模型共用同一個 ServiceRegistry、AuditManager 與 ControllerConfig。

    Example:
        crud = AutoCRUD()
        crud.add_model(User)
        app = FastAPI(lifespan=crud.lifespan)
        app.include_router(crud.apply(APIRouter()))
    """

    def __init__(
        self,
        *,
        model_naming: Literal["same", "pascal", "camel", "snake", "kebab"]
        | Callable[[type], str] = "kebab",
        dependency_provider: DependencyProvider | None = None,
        route_templates: list[IRouteTemplate] | None = None,
        config: ControllerConfig | None = None,
        audit_config: AuditConfig | None = None,
        audit_store: IAuditStore | None = None,
    ):
        self.resource_managers: dict[str, ResourceManager] = {}
        self.model_naming = model_naming
        self.config = config or ControllerConfig()
        self.services = ServiceRegistry()
        self.audit = AuditManager(audit_config, audit_store)
        if route_templates is None:
            route_templates = default_route_templates(dependency_provider)
        self.route_templates: list[IRouteTemplate] = list(route_templates)

    def _resource_name(self, model: type[T]) -> str:
        if callable(self.model_naming):
            return self.model_naming(model)
        return NameConverter(model.__name__).to(self.model_naming)

    def add_route_template(self, template: IRouteTemplate) -> None:
        """添加路由模板"""
        self.route_templates.append(template)

    def add_service(self, model: type[T], service: Service, *phases: Phase) -> None:
        """註冊業務邏輯；不指定 phases 時套用到該模型的所有操作"""
        self.services.register(model, service, *phases)

    def add_model(
        self,
        model: type[T],
        *,
        name: str | None = None,
        request_type: type | None = None,
        response_type: type | None = None,
        database_factory: Callable[[], IDatabase[T]] | None = None,
    ) -> ResourceManager[T]:
        """
        Add a model to the AutoCRUD system.

        :param model: The storage model, a subclass of crudflow.model.Base.
        :param name: Route name, derived from the class name with `model_naming` if omitted.
        :param request_type: Request type for custom mode; same as model if omitted.
        :param response_type: Response type for custom mode; same as model if omitted.
        :param database_factory: A callable returning the IDatabase for the model,
            an in-memory database if omitted.
        :return: The ResourceManager created for the model.
        """
        database = database_factory() if database_factory else MemoryDatabase(model)
        resource_manager = ResourceManager(
            model,
            database=database,
            request_type=request_type,
            response_type=response_type,
            services=self.services,
            audit=self.audit,
            config=self.config,
        )
        model_name = name or self._resource_name(model)
        if model_name in self.resource_managers:
            raise ValueError(f"model name {model_name!r} is already registered")
        self.resource_managers[model_name] = resource_manager
        logger.info(
            "registered %s as /%s (%s mode)",
            model.__name__,
            model_name,
            resource_manager.mode,
        )
        return resource_manager

    def get_resource_manager(self, model_or_name: type[T] | str) -> ResourceManager[T]:
        if isinstance(model_or_name, str):
            return self.resource_managers[model_or_name]
        for resource_manager in self.resource_managers.values():
            if resource_manager.resource_type is model_or_name:
                return resource_manager
        raise KeyError(model_or_name)

    def apply(self, router: APIRouter) -> APIRouter:
        """將所有路由模板應用到所有模型，依 order 由小到大註冊"""
        for route_template in sorted(self.route_templates, key=lambda t: t.order):
            for model_name, resource_manager in self.resource_managers.items():
                route_template.apply(model_name, resource_manager, router)
        return router

    def start(self) -> None:
        self.audit.start()

    def stop(self) -> None:
        self.audit.stop()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        self.start()
        try:
            yield
        finally:
            self.stop()
