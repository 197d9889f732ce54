import datetime as dt
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

import msgspec
from fastapi import APIRouter, Request, Response

from crudflow.resource_manager.core import ResourceManager
from crudflow.response import Code, Reply
from crudflow.types import RequestContext

T = TypeVar("T")

REQUEST_ID_HEADER = "X-Request-ID"


class IRouteTemplate(ABC):
    """路由模板基類，定義如何為資源生成 API 路由"""

    @abstractmethod
    def apply(
        self,
        model_name: str,
        resource_manager: ResourceManager[T],
        router: APIRouter,
    ) -> None:
        """將路由模板應用到指定的資源管理器和路由器

        Args:
            model_name: 路由上使用的模型名稱
            resource_manager: 資源管理器
            router: FastAPI 路由器
        """

    @property
    @abstractmethod
    def order(self) -> int:
        """獲取路由模板的排序權重，越小越先註冊"""


class DependencyProvider:
    """依賴提供者，統一管理用戶和時間的依賴函數"""

    def __init__(self, get_user: Callable = None, get_now: Callable = None):
        """初始化依賴提供者

        Args:
            get_user: 獲取當前用戶的 dependency 函數，如果為 None 則創建預設函數
            get_now: 獲取當前時間的 dependency 函數，如果為 None 則創建預設函數
        """
        self.get_user = get_user or self._create_default_user_dependency()
        self.get_now = get_now or self._create_default_now_dependency()

    def _create_default_user_dependency(self) -> Callable:
        def default_get_user() -> str:
            return "anonymous"

        return default_get_user

    def _create_default_now_dependency(self) -> Callable:
        def default_get_now() -> dt.datetime:
            return dt.datetime.now()

        return default_get_now


class BaseRouteTemplate(IRouteTemplate):
    def __init__(
        self,
        dependency_provider: DependencyProvider = None,
        order: int = 100,
    ):
        """初始化路由模板

        Args:
            dependency_provider: 依賴提供者，如果為 None 則創建預設的
            order: 註冊順序，固定路徑 (如 /batch) 必須排在 /{resource_id} 之前
        """
        self.deps = dependency_provider or DependencyProvider()
        self._order = order

    @property
    def order(self) -> int:
        return self._order

    def __lt__(self, other: IRouteTemplate):
        return self.order < other.order

    def __le__(self, other: IRouteTemplate):
        return self.order <= other.order


class MsgspecResponse(Response):
    media_type = "application/json"

    def render(self, content: msgspec.Struct) -> bytes:
        return msgspec.json.encode(content)


def envelope_responses(data_type: Any, status_code: int = 200) -> dict:
    """以信封格式 {code, msg, data} 產生 OpenAPI responses 描述"""
    name = getattr(data_type, "__name__", "Data")
    envelope = msgspec.defstruct(
        f"{name}Envelope{status_code}",
        [("code", int), ("msg", str), ("data", data_type | None, None)],
    )
    (schema,), components = msgspec.json.schema_components(
        [envelope],
        ref_template="#/components/schemas/{name}",
    )
    schema = components.get(envelope.__name__, schema)
    return {
        status_code: {
            "content": {"application/json": {"schema": schema}},
        },
    }


async def build_context(
    request: Request,
    *,
    resource_id: str = "",
    current_user: str = "",
    current_time: dt.datetime | None = None,
) -> RequestContext:
    """把 HTTP 請求轉成與傳輸層無關的 RequestContext"""
    client = request.client
    return RequestContext(
        method=request.method,
        path=request.url.path,
        route_id=resource_id or "",
        query=list(request.query_params.multi_items()),
        body=await request.body(),
        user=current_user,
        now=current_time or dt.datetime.now(),
        client_ip=client.host if client else "",
        request_id=request.headers.get(REQUEST_ID_HEADER, ""),
        user_agent=request.headers.get("user-agent", ""),
    )


def to_response(reply: Reply) -> Response:
    """把 Reply 轉成 FastAPI Response"""
    if reply.status == 204:
        return Response(status_code=204, headers=reply.headers)
    if reply.content is not None:
        return Response(
            content=reply.content,
            status_code=reply.status,
            media_type=reply.media_type,
            headers=reply.headers,
        )
    return MsgspecResponse(
        reply.envelope,
        status_code=reply.status or Code.success.status,
        headers=reply.headers,
    )
