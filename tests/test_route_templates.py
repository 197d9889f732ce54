"""測試 RouteTemplate 功能"""

import datetime as dt

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient

from crudflow.config import AuditConfig
from crudflow.crud.core import AutoCRUD
from crudflow.crud.route_templates.basic import DependencyProvider
from crudflow.crud.route_templates.create import CreateRouteTemplate
from crudflow.crud.route_templates.get import ReadRouteTemplate
from crudflow.service import Service
from crudflow.types import Phase
from crudflow.util.naming import NameConverter, NamingFormat
from tests.models import Category, User, UserDraft, UserQuery, UserView

FIXED_NOW = dt.datetime(2024, 5, 1, 12, 0)


class ViewService(Service):
    def handle_get(self, ctx, req):
        return UserView(id=req.id, display=req.name or "?")


@pytest.fixture
def autocrud():
    """創建 AutoCRUD 實例"""
    crud = AutoCRUD(
        model_naming="kebab",
        dependency_provider=DependencyProvider(
            get_user=lambda: "alice", get_now=lambda: FIXED_NOW
        ),
        audit_config=AuditConfig(enable=True, async_write=False),
    )
    crud.add_model(User)
    crud.add_model(Category)
    crud.add_model(
        User, name="user-view", request_type=UserQuery, response_type=UserView
    )
    crud.add_service(User, ViewService(), Phase.get)
    return crud


@pytest.fixture
def client(autocrud):
    """創建測試客戶端"""
    app = FastAPI(lifespan=autocrud.lifespan)
    app.include_router(autocrud.apply(APIRouter()))
    with TestClient(app) as client:
        yield client


def create_user(client, **fields):
    body = {"id": "user01", "name": "alice", "email": "a@example.com", "age": 30}
    body.update(fields)
    return client.post("/user", json=body)


class TestNameConverter:
    def test_pascal_to_kebab(self):
        assert NameConverter("UserProfile").to(NamingFormat.KEBAB) == "user-profile"

    def test_snake_to_pascal(self):
        assert NameConverter("user_profile").to("pascal") == "UserProfile"

    def test_callable_naming(self):
        crud = AutoCRUD(model_naming=lambda model: f"api-{model.__name__.lower()}")
        crud.add_model(User)
        assert list(crud.resource_managers) == ["api-user"]

    def test_duplicate_name(self):
        crud = AutoCRUD()
        crud.add_model(User)
        with pytest.raises(ValueError):
            crud.add_model(User)


class TestCreateRoute:
    def test_create(self, client):
        response = create_user(client)
        assert response.status_code == 201
        body = response.json()
        assert body["code"] == 0
        assert body["msg"] == "success"
        assert body["data"]["id"] == "user01"
        assert body["data"]["created_by"] == "alice"
        assert body["data"]["created_at"] == FIXED_NOW.isoformat()

    def test_duplicate(self, client):
        create_user(client)
        response = create_user(client)
        assert response.status_code == 409
        assert response.json()["code"] == 1010

    def test_invalid_body(self, client):
        response = client.post("/user", content=b"{not json")
        assert response.status_code == 400
        assert response.json()["code"] == 1000

    def test_empty_body(self, client):
        response = client.post("/user", content=b"")
        assert response.status_code == 201
        assert response.json() == {"code": 0, "msg": "success", "data": None}

    def test_audit_records_http_details(self, client, autocrud):
        create_user(client, password="s3cret")
        client.post(
            "/user",
            json={"id": "user02"},
            headers={"X-Request-ID": "req-42", "User-Agent": "tests"},
        )
        records = autocrud.audit.store.records
        assert [r.record_id for r in records] == ["user01", "user02"]
        assert records[1].request_id == "req-42"
        assert records[1].user_agent == "tests"
        assert records[1].method == "POST"
        assert records[1].uri == "/user"
        assert records[1].user == "alice"
        assert "s3cret" not in records[0].record


class TestReadRoutes:
    def test_get(self, client):
        create_user(client)
        response = client.get("/user/user01")
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "alice"

    def test_get_not_found(self, client):
        response = client.get("/user/nope")
        assert response.status_code == 404
        assert response.json() == {
            "code": 1008,
            "msg": "Resource 'nope' not found.",
            "data": None,
        }

    def test_list_with_total(self, client):
        for i in range(3):
            create_user(client, id=f"user{i:02d}", age=20 + i)
        response = client.get("/user", params={"size": 2, "_sortby": "age desc"})
        data = response.json()["data"]
        assert data["total"] == 3
        assert [u["age"] for u in data["items"]] == [22, 21]

    def test_list_filters(self, client):
        create_user(client, id="a", name="alice")
        create_user(client, id="b", name="bob")
        create_user(client, id="c", name="carol")
        response = client.get("/user", params={"name": "alice,carol", "_sortby": "id"})
        assert [u["id"] for u in response.json()["data"]["items"]] == ["a", "c"]

    def test_list_nototal_and_cursor(self, client):
        for i in range(3):
            create_user(client, id=f"user{i:02d}")
        data = client.get("/user", params={"_nototal": "true"}).json()["data"]
        assert "total" not in data
        data = client.get("/user", params={"_cursor_value": "user02"}).json()["data"]
        assert "total" not in data
        assert [u["id"] for u in data["items"]] == ["user00", "user01"]

    def test_expand_depth(self, client):
        client.post(
            "/category",
            json={
                "id": "c1",
                "children": [{"id": "c2", "children": [{"id": "c3"}]}],
            },
        )
        data = client.get("/category/c1").json()["data"]
        assert data["children"] == []
        data = client.get("/category/c1", params={"_expand": "all"}).json()["data"]
        assert data["children"][0]["id"] == "c2"
        assert data["children"][0]["children"] == []
        data = client.get(
            "/category/c1", params={"_expand": "all", "_depth": "2"}
        ).json()["data"]
        assert data["children"][0]["children"][0]["id"] == "c3"


class TestWriteRoutes:
    def test_patch_changes_only_sent_fields(self, client):
        create_user(client)
        response = client.patch("/user/user01", json={"name": "bob"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "bob"
        assert data["email"] == "a@example.com"
        assert data["age"] == 30

    def test_patch_id_in_body(self, client):
        create_user(client)
        response = client.patch("/user", json={"id": "user01", "age": 31})
        assert response.json()["data"]["age"] == 31

    def test_put_replaces(self, client):
        create_user(client)
        response = client.put("/user/user01", json={"name": "carol"})
        data = response.json()["data"]
        assert data["name"] == "carol"
        assert data["email"] == ""
        assert data["created_by"] == "alice"

    def test_put_without_id(self, client):
        response = client.put("/user", json={"name": "carol"})
        assert response.status_code == 400
        assert response.json()["msg"] == "id missing"

    def test_resource_id_query_is_not_an_identifier(self, client):
        """沒有路徑 id 時，?resource_id= 不會被當成目標"""
        create_user(client)
        response = client.put("/user?resource_id=user01", json={"name": "carol"})
        assert response.status_code == 400
        assert response.json()["msg"] == "id missing"
        response = client.patch("/user?resource_id=user01", json={"name": "carol"})
        assert response.status_code == 400
        assert client.get("/user/user01").json()["data"]["name"] == "alice"

    def test_delete(self, client):
        create_user(client)
        response = client.delete("/user/user01")
        assert response.status_code == 204
        assert response.content == b""
        assert client.get("/user/user01").status_code == 404

    def test_delete_by_query_ids(self, client):
        create_user(client, id="a")
        create_user(client, id="b")
        response = client.delete("/user?id=a&id=b")
        assert response.status_code == 204
        assert client.get("/user").json()["data"]["total"] == 0


class TestBatchRoutes:
    def test_batch_is_not_an_id(self, client):
        response = client.post(
            "/user/batch", json={"items": [{"id": "a"}, {"id": "b"}]}
        )
        assert response.status_code == 201
        assert response.json()["data"]["summary"]["succeeded"] == 2

        response = client.patch(
            "/user/batch", json={"items": [{"id": "a", "age": 5}, {"id": "z"}]}
        )
        assert response.status_code == 200
        assert response.json()["data"]["summary"] == {
            "total": 2,
            "succeeded": 1,
            "failed": 1,
        }

        response = client.put("/user/batch", json={"items": [{"id": "b", "name": "B"}]})
        assert response.status_code == 200

        response = client.request("DELETE", "/user/batch", json={"ids": ["a", "b"]})
        assert response.status_code == 204
        assert client.get("/user").json()["data"]["total"] == 0


class TestExportImportRoutes:
    def test_round_trip(self, client):
        create_user(client, id="a")
        create_user(client, id="b")
        response = client.get("/user/export")
        assert response.status_code == 200
        assert response.headers["content-disposition"] == (
            'attachment; filename="User.json"'
        )
        exported = response.json()
        assert sorted(u["id"] for u in exported) == ["a", "b"]

        client.delete("/user?id=a&id=b")
        response = client.post("/user/import", content=response.content)
        assert response.status_code == 200
        assert response.json()["data"]["summary"]["total"] == 2
        assert client.get("/user").json()["data"]["total"] == 2


class TestCustomModeRoutes:
    def test_custom_get(self, client):
        response = client.get("/user-view/u1", params={"name": "neo"})
        assert response.status_code == 200
        assert response.json()["data"] == {"id": "u1", "display": "neo"}

    def test_unified_populates_actor_custom_does_not(self, client):
        create_user(client)
        unified = client.get("/user/user01").json()["data"]
        assert unified["created_by"] == "alice"
        custom = client.get("/user-view/user01").json()["data"]
        assert "created_by" not in custom

    def test_custom_create_keeps_actor_fields_as_sent(self):
        class DraftService(Service):
            def handle_create(self, ctx, req):
                return req

        crud = AutoCRUD(
            dependency_provider=DependencyProvider(
                get_user=lambda: "alice", get_now=lambda: FIXED_NOW
            )
        )
        crud.add_model(
            User, name="user-draft", request_type=UserDraft, response_type=UserDraft
        )
        crud.add_service(User, DraftService(), Phase.create)
        app = FastAPI()
        app.include_router(crud.apply(APIRouter()))
        with TestClient(app) as client:
            sent = client.post("/user-draft", json={"id": "d1", "created_by": "bob"})
            blank = client.post("/user-draft", json={"id": "d2"})
        assert sent.json()["data"] == {
            "id": "d1",
            "name": "",
            "created_by": "bob",
            "updated_by": "",
        }
        assert blank.json()["data"]["created_by"] == ""
        assert blank.json()["data"]["updated_by"] == ""


class TestTemplateOrder:
    def test_templates_sorted_by_order(self):
        crud = AutoCRUD(route_templates=[])
        crud.add_route_template(ReadRouteTemplate(order=20))
        crud.add_route_template(CreateRouteTemplate(order=10))
        crud.add_model(User)
        router = crud.apply(APIRouter())
        assert [route.path for route in router.routes] == ["/user", "/user/{resource_id}"]
