import datetime as dt
import textwrap
from typing import TypeVar

from fastapi import APIRouter, Depends, Request

from crudflow.crud.route_templates.basic import (
    BaseRouteTemplate,
    build_context,
    to_response,
)
from crudflow.resource_manager.core import ResourceManager

T = TypeVar("T")


class DeleteRouteTemplate(BaseRouteTemplate):
    """刪除資源的路由模板

    要刪除的 id 來自路徑、query string 的 `id`、以及 body 的 JSON 陣列，
    三者合併去重。
    """

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        description = textwrap.dedent(
            f"""
            Delete one or more `{model_name}` resources.

            **Identifiers:**
            - Path `resource_id`, repeated `?id=` query values and a JSON array body
              are merged in that order, duplicates and empty values removed

            **Soft Delete:**
            - Unless the model asks for purge, rows are only marked as deleted

            **Response:**
            - `204` with an empty body""",
        )

        async def delete_resource(
            request: Request,
            resource_id: str,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request,
                resource_id=resource_id,
                current_user=current_user,
                current_time=current_time,
            )
            return to_response(resource_manager.delete(ctx))

        async def delete_resource_without_path_id(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request,
                resource_id="",
                current_user=current_user,
                current_time=current_time,
            )
            return to_response(resource_manager.delete(ctx))

        for path, endpoint in (
            (f"/{model_name}/{{resource_id}}", delete_resource),
            (f"/{model_name}", delete_resource_without_path_id),
        ):
            router.add_api_route(
                path,
                endpoint,
                methods=["DELETE"],
                status_code=204,
                summary=f"Delete {model_name}",
                tags=[f"{model_name}"],
                description=description,
            )
