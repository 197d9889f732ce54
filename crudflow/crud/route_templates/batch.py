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


class BatchRouteTemplate(BaseRouteTemplate):
    """批量操作的路由模板

    在 `/{model}/batch` 上註冊 POST / PUT / PATCH / DELETE，分別對應
    create_many / update_many / patch_many / delete_many。
    必須在 `/{model}/{resource_id}` 之前註冊，否則 `batch` 會被當成 id。
    """

    def __init__(self, dependency_provider=None, order: int = 10):
        super().__init__(dependency_provider, order)

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        path = f"/{model_name}/batch"
        batch_type = BatchRequest[resource_manager.response_type]
        operations = [
            ("POST", resource_manager.create_many, 201, "Create"),
            ("PUT", resource_manager.update_many, 200, "Update"),
            ("PATCH", resource_manager.patch_many, 200, "Patch"),
            ("DELETE", resource_manager.delete_many, 204, "Delete"),
        ]
        for method, operation, status_code, verb in operations:
            router.add_api_route(
                path,
                self._endpoint(operation),
                methods=[method],
                status_code=status_code,
                responses=(
                    envelope_responses(batch_type, status_code)
                    if status_code != 204
                    else None
                ),
                summary=f"{verb} {model_name} in batch",
                tags=[f"{model_name}"],
                description=textwrap.dedent(
                    f"""
                    {verb} many `{model_name}` resources in one request.

                    **Request Body:**
                    - `{{"items": [...]}}` or `{{"ids": [...]}}`, never both
                    - `options.atomic`: run persistence in one transaction
                    - `options.purge`: ignored, the model decides whether rows are purged

                    **Response:**
                    - The processed items with a `summary` of total / succeeded / failed
                    - Batch patch skips items that cannot be loaded and counts them as failed""",
                ),
            )

    def _endpoint(self, operation):
        async def batch_endpoint(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request, current_user=current_user, current_time=current_time
            )
            return to_response(operation(ctx))

        return batch_endpoint
