"""
Tracers handed to stores and migration components.

Components never import OpenTelemetry directly. They take an optional
``tracer`` argument and fall back to ``create_tracer(__name__,
enable_tracing)``, so a page fetch, a reference lookup or a batch commit
can be traced in production, asserted on in tests (``MockTracer``) or
skipped entirely (``NullTracer``).

Example:
    >>> class BatchCommitter:
    ...     def __init__(self, store, tracer=None, enable_tracing=True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def commit(self):
    ...         with self._tracer.span("tenantfill.committer.commit", {ATTR_COLLECTION: "chats"}):
    ...             ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that can open a named span.

    ``span`` yields the live span, or None when nothing is recorded.
    """

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is switched off. Spans cost nothing."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Spans from the globally configured OpenTelemetry tracer provider.

    Without a configured provider the API returns non-recording spans, so
    enabling tracing in an application that never set one up is harmless.
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records every span opened through it.

    Example:
        >>> tracer = MockTracer()
        >>> fetcher = PageFetcher(store, get_job("chats"), tracer=tracer)
        >>> await fetcher.next_page(BatchCursor())
        >>> tracer.span_names
        ['tenantfill.pager.next_page']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer for a component.

    Args:
        name: Tracer name, usually the component's ``__name__``
        enable_tracing: False yields a NullTracer

    Returns:
        OpenTelemetryTracer or NullTracer
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanAttributes",
    "Tracer",
    "create_tracer",
]
