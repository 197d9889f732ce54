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


class CreateRouteTemplate(BaseRouteTemplate):
    """創建資源的路由模板"""

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        @router.post(
            f"/{model_name}",
            status_code=201,
            responses=envelope_responses(resource_manager.response_type, 201),
            summary=f"Create {model_name}",
            tags=[f"{model_name}"],
            description=textwrap.dedent(
                f"""
                Create a new `{model_name}` resource.

                **Request Body:**
                - JSON object of the resource
                - `id` is generated when omitted
                - `created_by`, `updated_by`, `created_at` and `updated_at` are filled in by the server

                **Response:**
                - `201` with `{{"code": 0, "msg": "success", "data": <resource>}}`
                - An empty body creates nothing and returns `data: null`

                **Error Responses:**
                - `400`: Malformed body or rejected by a business hook
                - `409`: A resource with the same `id` already exists""",
            ),
        )
        async def create_resource(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request, current_user=current_user, current_time=current_time
            )
            return to_response(resource_manager.create(ctx))
