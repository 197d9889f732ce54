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


class UpdateRouteTemplate(BaseRouteTemplate):
    """整筆更新資源的路由模板

    `PUT /{model}/{id}` 與 `PUT /{model}` 都會註冊，後者從 body 的 `id` 取得目標。
    """

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        description = textwrap.dedent(
            f"""
            Replace a `{model_name}` resource.

            **Identifier:**
            - The path `resource_id` wins over the `id` in the body
            - Either one must be present

            **Behavior:**
            - The stored `created_at` and `created_by` are kept
            - `updated_by` and `updated_at` are set by the server

            **Error Responses:**
            - `400`: Missing identifier or malformed body
            - `404`: Resource does not exist""",
        )

        async def update_resource(
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
            return to_response(resource_manager.update(ctx))

        async def update_resource_without_path_id(
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
            return to_response(resource_manager.update(ctx))

        for path, endpoint in (
            (f"/{model_name}/{{resource_id}}", update_resource),
            (f"/{model_name}", update_resource_without_path_id),
        ):
            router.add_api_route(
                path,
                endpoint,
                methods=["PUT"],
                responses=envelope_responses(resource_manager.response_type),
                summary=f"Update {model_name}",
                tags=[f"{model_name}"],
                description=description,
            )


class PatchRouteTemplate(BaseRouteTemplate):
    """部分更新資源的路由模板

    只有非零值的欄位會覆蓋既有資料；共用欄位中只接受 `remark` 與 `order`。
    """

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        description = textwrap.dedent(
            f"""
            Partially update a `{model_name}` resource.

            **Merge Rules:**
            - Fields with a zero value (empty string, 0, false, null) are ignored
            - Of the common fields only `remark` and `order` can be patched
            - Nested objects are not merged

            **Examples:**
            - `PATCH /{model_name}/123` with `{{"name": "new name"}}`

            **Error Responses:**
            - `400`: Missing identifier or malformed body
            - `404`: Resource does not exist""",
        )

        async def patch_resource(
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
            return to_response(resource_manager.patch(ctx))

        async def patch_resource_without_path_id(
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
            return to_response(resource_manager.patch(ctx))

        for path, endpoint in (
            (f"/{model_name}/{{resource_id}}", patch_resource),
            (f"/{model_name}", patch_resource_without_path_id),
        ):
            router.add_api_route(
                path,
                endpoint,
                methods=["PATCH"],
                responses=envelope_responses(resource_manager.response_type),
                summary=f"Patch {model_name}",
                tags=[f"{model_name}"],
                description=description,
            )
