import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, Status, StatusCode

from crudflow.types import HookStage, Phase, RequestContext

R = TypeVar("R")

tracer = trace.get_tracer("crudflow")


def _mark_error(span: Span, exc: Exception) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


def _finish(span: Span, component: str, start: float, *, success: bool) -> None:
    span.set_attribute(f"{component}.duration_ms", (time.perf_counter() - start) * 1000)
    span.set_attribute(f"{component}.success", success)


def trace_operation(
    phase: Phase,
    model_name: str,
    fn: Callable[[], R],
    *,
    component: str = "service",
    stage: HookStage | None = None,
    parent: Context | None = None,
) -> R:
    """Run `fn` inside a child span and return whatever it returns.

    Exceptions are recorded on the span and re-raised unchanged.
    """
    operation = phase.label + (stage.value.capitalize() if stage else "")
    with tracer.start_as_current_span(
        f"{component.capitalize()}.{operation} {model_name}",
        context=parent,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("component", component)
        span.set_attribute(f"{component}.operation", phase.value)
        span.set_attribute(f"{component}.model", model_name)
        if stage is not None:
            span.set_attribute(f"{component}.stage", stage.value)
        start = time.perf_counter()
        try:
            result = fn()
        except Exception as e:
            _finish(span, component, start, success=False)
            _mark_error(span, e)
            raise
        _finish(span, component, start, success=True)
        return result


@contextmanager
def controller_span(
    phase: Phase, model_name: str, ctx: RequestContext
) -> Generator[Span, None, None]:
    with tracer.start_as_current_span(
        f"Controller.{phase.label} {model_name}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("component", "controller")
        span.set_attribute("controller.operation", phase.value)
        span.set_attribute("controller.model", model_name)
        span.set_attribute("controller.method", ctx.method)
        span.set_attribute("controller.path", ctx.path)
        if ctx.request_id:
            span.set_attribute("controller.request_id", ctx.request_id)
        try:
            yield span
        except Exception as e:
            _mark_error(span, e)
            raise
