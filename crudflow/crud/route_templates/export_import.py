import datetime as dt
import textwrap
from typing import TypeVar

from fastapi import APIRouter, Depends, Request

from crudflow.crud.route_templates.basic import (
    BaseRouteTemplate,
    build_context,
    envelope_responses,
    to_response,
)
from crudflow.resource_manager.core import ResourceManager
from crudflow.types import BatchRequest

T = TypeVar("T")


class ExportRouteTemplate(BaseRouteTemplate):
    """匯出資源的路由模板，回傳檔案下載"""

    def __init__(self, dependency_provider=None, order: int = 20):
        super().__init__(dependency_provider, order)

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        @router.get(
            f"/{model_name}/export",
            summary=f"Export {model_name}",
            tags=[f"{model_name}"],
            description=textwrap.dedent(
                f"""
                Export `{model_name}` resources as a downloadable JSON file.

                **Query Parameters:**
                - Same filters and paging as the list endpoint

                **Response:**
                - The body produced by the service `export` hook
                - `Content-Disposition: attachment`""",
            ),
        )
        async def export_resources(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request, current_user=current_user, current_time=current_time
            )
            return to_response(resource_manager.export(ctx))


class ImportRouteTemplate(BaseRouteTemplate):
    """匯入資源的路由模板，以 upsert 寫入"""

    def __init__(self, dependency_provider=None, order: int = 20):
        super().__init__(dependency_provider, order)

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        @router.post(
            f"/{model_name}/import",
            responses=envelope_responses(
                BatchRequest[resource_manager.response_type]
            ),
            summary=f"Import {model_name}",
            tags=[f"{model_name}"],
            description=textwrap.dedent(
                f"""
                Import `{model_name}` resources.

                **Request Body:**
                - Parsed by the service `import_` hook, a JSON array by default
                - Existing ids are overwritten, missing ids are generated

                **Response:**
                - The imported items with a `summary`""",
            ),
        )
        async def import_resources(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request, current_user=current_user, current_time=current_time
            )
            return to_response(resource_manager.import_(ctx))
