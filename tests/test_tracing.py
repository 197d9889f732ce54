"""測試 OpenTelemetry span"""

import pytest
from opentelemetry.trace import StatusCode

from crudflow.resource_manager.core import ResourceManager
from crudflow.resource_manager.memory import MemoryDatabase
from crudflow.service import Service, ServiceRegistry
from crudflow.tracing import controller_span, trace_operation
from crudflow.types import HookStage, Phase, RequestContext, ServiceError
from tests.models import User


def by_name(spans):
    return {s.name: s for s in spans.get_finished_spans()}


class TestTraceOperation:
    def test_success_attributes(self, spans):
        result = trace_operation(Phase.create, "User", lambda: 42, stage=HookStage.before)
        assert result == 42
        span = by_name(spans)["Service.CreateBefore User"]
        assert span.attributes["component"] == "service"
        assert span.attributes["service.operation"] == "create"
        assert span.attributes["service.model"] == "User"
        assert span.attributes["service.stage"] == "before"
        assert span.attributes["service.success"] is True
        assert span.attributes["service.duration_ms"] >= 0
        assert span.status.status_code == StatusCode.UNSET

    def test_error_is_recorded_and_reraised(self, spans):
        def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            trace_operation(Phase.delete_many, "User", fail, component="database")
        span = by_name(spans)["Database.DeleteMany User"]
        assert span.attributes["database.success"] is False
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_controller_span(self, spans):
        ctx = RequestContext(method="GET", path="/user/1", request_id="r1")
        with controller_span(Phase.get, "User", ctx):
            pass
        span = by_name(spans)["Controller.Get User"]
        assert span.attributes["controller.method"] == "GET"
        assert span.attributes["controller.path"] == "/user/1"
        assert span.attributes["controller.request_id"] == "r1"


class RejectingService(Service):
    def before_create(self, ctx, resource):
        raise ServiceError("name is reserved", status_code=422)


class TestOrchestratorSpans:
    def test_spans_are_nested_under_controller(self, spans):
        manager = ResourceManager(User, database=MemoryDatabase(User))
        manager.create(RequestContext(body=b'{"id": "u1"}'))
        finished = by_name(spans)
        controller = finished["Controller.Create User"]
        for name in (
            "Service.CreateBefore User",
            "Database.Create User",
            "Service.CreateAfter User",
        ):
            assert finished[name].parent.span_id == controller.context.span_id

    def test_hook_error_marks_spans(self, spans):
        services = ServiceRegistry()
        services.register(User, RejectingService())
        manager = ResourceManager(
            User, database=MemoryDatabase(User), services=services
        )
        reply = manager.create(RequestContext(body=b'{"id": "u1"}'))
        assert reply.status == 422
        assert reply.envelope.msg == "name is reserved"
        finished = by_name(spans)
        assert finished["Service.CreateBefore User"].status.status_code == StatusCode.ERROR
        assert finished["Controller.Create User"].status.status_code == StatusCode.ERROR
        assert "Database.Create User" not in finished
