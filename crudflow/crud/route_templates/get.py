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

T = TypeVar("T")


class ReadRouteTemplate(BaseRouteTemplate):
    """讀取單一資源的路由模板"""

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        @router.get(
            f"/{model_name}/{{resource_id}}",
            responses=envelope_responses(resource_manager.response_type),
            summary=f"Get {model_name} by ID",
            tags=[f"{model_name}"],
            description=textwrap.dedent(
                f"""
                Retrieve a single `{model_name}` resource.

                **Path Parameters:**
                - `resource_id`: The unique identifier of the resource

                **Query Parameters:**
                - `_select`: Comma separated fields to return, `id` is always kept
                - `_expand`: Relations to load, `all` for every declared relation
                - `_depth`: Depth for self referencing relations (1-99)
                - `_index` / `_index_mode`: Index hint forwarded to storage
                - `_nocache`: Set `false` to allow cached reads

                **Examples:**
                - `GET /{model_name}/123?_select=name,email`
                - `GET /{model_name}/123?_expand=all&_depth=2`

                **Error Responses:**
                - `404`: Resource does not exist or has been deleted""",
            ),
        )
        async def get_resource(
            resource_id: str,
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request,
                resource_id=resource_id,
                current_user=current_user,
                current_time=current_time,
            )
            return to_response(resource_manager.get(ctx))
