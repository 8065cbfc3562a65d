"""
Tracers handed to the service, extractors, stores and lock managers.

Each component takes an optional ``tracer`` and otherwise builds one with
``create_tracer(__name__, enable_tracing)``. Spans are opened with
``with tracer.span(name, attributes)``; the yielded span is None when
tracing is off, so callers check it before setting late attributes:

    >>> with tracer.span("contactmigration.migrate_contact", {ATTR_PERSON_ID: 1}) as span:
    ...     stage = await migrate()
    ...     if span is not None:
    ...         span.set_attribute(ATTR_STAGE, stage.value)
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

# Optional OpenTelemetry import
try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


@runtime_checkable
class Tracer(Protocol):
    """Opens named spans carrying ``contactmigration.*`` and ``db.*`` attributes."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is disabled or OpenTelemetry is missing."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Opens spans on the globally configured OpenTelemetry tracer provider.

    Requires the ``telemetry`` extra.
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """
    A span opened on a MockTracer.

    Attributes:
        name: Span name
        attributes: Attributes passed when the span was opened
        late_attributes: Attributes set on the span while it was open
    """

    name: str
    attributes: dict[str, Any] | None
    late_attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.late_attributes[key] = value


class MockTracer:
    """
    Tracer for tests that keeps every span it opened, in opening order.

    Example:
        >>> tracer = MockTracer()
        >>> service = ContactMigrationService(store, tracer=tracer)
        >>> await service.migrate_contact(request)
        >>> tracer.span_names[0]
        'contactmigration.migrate_contact'
        >>> tracer.recorded[0].late_attributes
        {'contactmigration.stage': 'assembled'}
    """

    def __init__(self) -> None:
        self.recorded: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[RecordedSpan, None, None]:
        recorded = RecordedSpan(name, attributes)
        self.recorded.append(recorded)
        yield recorded

    @property
    def enabled(self) -> bool:
        return True

    @property
    def spans(self) -> list[tuple[str, dict[str, Any] | None]]:
        """(name, opening attributes) of every span."""
        return [(span.name, span.attributes) for span in self.recorded]

    @property
    def span_names(self) -> list[str]:
        return [span.name for span in self.recorded]

    def clear(self) -> None:
        self.recorded.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the default tracer for a component named ``name``.

    Returns an OpenTelemetryTracer when tracing is enabled and the
    ``telemetry`` extra is installed, a NullTracer otherwise.
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "MockTracer",
    "create_tracer",
]
