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
from crudflow.types import ListResult

T = TypeVar("T")


class ListRouteTemplate(BaseRouteTemplate):
    """列出資源的路由模板"""

    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        @router.get(
            f"/{model_name}",
            responses=envelope_responses(ListResult[resource_manager.response_type]),
            summary=f"List {model_name}",
            tags=[f"{model_name}"],
            description=textwrap.dedent(
                f"""
                List `{model_name}` resources.

                **Filtering:**
                - Any non reserved query key is an equality filter on that field
                - Comma separated values match any of the values
                - `_fuzzy=true`: substring match instead of equality
                - `_or=true`: combine filters with OR instead of AND
                - `_column_name`, `_start_time`, `_end_time`: time range filter

                **Paging:**
                - `page` / `size`: offset pagination (default size 1000)
                - `_cursor_value`, `_cursor_fields`, `_cursor_next`: cursor pagination,
                  takes precedence over `page` / `size` and never returns `total`
                - `_nototal=true`: skip the total count

                **Shaping:**
                - `_sortby`: e.g. `name desc,created_at`
                - `_select`, `_expand`, `_depth`, `_index`, `_index_mode`, `_nocache`

                **Examples:**
                - `GET /{model_name}?name=alice,bob&size=10`
                - `GET /{model_name}?_cursor_value=user05&_cursor_next=true`""",
            ),
        )
        async def list_resources(
            request: Request,
            current_user: str = Depends(self.deps.get_user),
            current_time: dt.datetime = Depends(self.deps.get_now),
        ):
            ctx = await build_context(
                request, current_user=current_user, current_time=current_time
            )
            return to_response(resource_manager.list(ctx))
