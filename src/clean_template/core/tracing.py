"""OpenTelemetry configuration and utilities."""
from __future__ import annotations

import functools
import inspect
import os
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.status import Status, StatusCode

from clean_template.core.config import settings

# Type variables for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


def is_tracing_enabled() -> bool:
    """Check if tracing should be enabled.

    Tracing is disabled during tests and when explicitly disabled in config.
    """
    if "pytest" in os.environ.get("_", "") or os.environ.get("PYTEST_CURRENT_TEST"):
        return False

    return settings.otel_enabled


def configure_tracing() -> None:
    """Configure OpenTelemetry tracing if enabled."""
    if not is_tracing_enabled():
        return

    resource = Resource.create({
        "service.name": settings.otel_service_name,
        "service.version": "0.1.0",
        "deployment.environment": settings.environment,
        "service.namespace": "clean-template",
    })

    tracer_provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        insecure=not settings.is_production,
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(tracer_provider)


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for the given module name."""
    return trace.get_tracer(name)


def create_span(tracer: trace.Tracer, name: str, **attributes: Any) -> Any:
    """Create a span if tracing is enabled, otherwise return a no-op context manager."""
    if not is_tracing_enabled():
        return _NoOpSpan()

    span = tracer.start_span(name)
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, str(value))
    return span


# Tracing Decorators

def _entity_name(args: tuple[Any, ...]) -> str | None:
    """Entity class name when the traced callable is a repository method."""
    model = getattr(args[0], "model", None) if args else None
    return getattr(model, "__name__", None)


@contextmanager
def _database_span(func: Callable[..., Any], operation: str, args: tuple[Any, ...]) -> Iterator[Any]:
    tracer = get_tracer(func.__module__)
    entity = _entity_name(args)
    name = f"{entity}.{operation}" if entity else operation

    # Exceptions are recorded below, once
    with tracer.start_as_current_span(
        name, record_exception=False, set_status_on_exception=False
    ) as span:
        span.set_attribute("db.operation", operation)
        span.set_attribute("db.system", settings.database_system)
        span.set_attribute("component", "database")
        if entity:
            span.set_attribute("db.entity", entity)

        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


def trace_database(operation: str | None = None) -> Callable[[F], F]:
    """Trace a database operation, sync or async, with an OpenTelemetry span.

    On repository methods the span is named ``<Entity>.<operation>`` and
    carries the entity class in ``db.entity``.

    Args:
        operation: Database operation type. If None, uses function name

    Example:
        @trace_database()
        async def get_by_id(self, entity_id: int) -> Optional[T]:
            ...
    """
    def decorator(func: F) -> F:
        if not is_tracing_enabled():
            return func

        op_name = operation or func.__name__

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with _database_span(func, op_name, args):
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with _database_span(func, op_name, args):
                return func(*args, **kwargs)

        return sync_wrapper  # type: ignore
    return decorator


class _NoOpSpan:
    """No-op span for when tracing is disabled."""

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        pass

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_status(self, status: Any) -> None:
        pass

    def record_exception(self, exception: Exception) -> None:
        pass
