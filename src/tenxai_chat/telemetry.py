"""OpenTelemetry tracing integration for tenxai-chat.

Every model call, context assembly, summarization run and server sync gets
its own span. Exporting is off by default; ``TENXAI_OTEL_EXPORTER`` selects
``stdout`` or ``otlp`` (the latter needs the ``otlp`` extra).
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.trace import NoOpTracer, Span, Tracer

logger = logging.getLogger(__name__)

EXPORTERS = frozenset({"none", "stdout", "otlp"})

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TelemetryConfig:
    """Where chat spans go and under which service name."""

    service_name: str = "tenxai-chat"
    enabled: bool = True
    exporter: str = "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TelemetryConfig:
        env = os.environ if environ is None else environ
        return cls(
            service_name=env.get("TENXAI_OTEL_SERVICE_NAME", cls.service_name),
            exporter=env.get("TENXAI_OTEL_EXPORTER", cls.exporter).strip().lower(),
            otlp_endpoint=env.get("TENXAI_OTEL_ENDPOINT", cls.otlp_endpoint),
        )


def _span_processor(cfg: TelemetryConfig) -> SpanProcessor:
    if cfg.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return SimpleSpanProcessor(ConsoleSpanExporter())
    if cfg.exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return SimpleSpanProcessor(OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True))
    msg = f"Unknown exporter '{cfg.exporter}'. Valid exporters: {', '.join(sorted(EXPORTERS))}"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# ChatTracer
# ---------------------------------------------------------------------------


class ChatTracer:
    """Owns the tracer provider and hands out spans.

    Until :meth:`init` installs an exporter every span is a non-recording
    no-op, so instrumented code never has to check whether tracing is on.
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    def init(self) -> None:
        cfg = self._config
        if not cfg.enabled or cfg.exporter == "none":
            return

        processor = _span_processor(cfg)
        provider = TracerProvider(resource=Resource.create({"service.name": cfg.service_name}))
        provider.add_span_processor(processor)
        self._provider = provider
        self._tracer = provider.get_tracer(cfg.service_name)
        logger.info("Tracing %s spans to %s", cfg.service_name, cfg.exporter)

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=dict(attributes or {})) as s:
            yield s

    def record_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        """Attach an event to the active span; a no-op outside a recording span."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    def shutdown(self) -> None:
        """Flush and release the provider. Calling it twice is harmless."""
        if self._provider is None:
            return
        self._provider.shutdown()
        self._provider = None
        self._tracer = NoOpTracer()


# ---------------------------------------------------------------------------
# Process-wide tracer
# ---------------------------------------------------------------------------

_DEFAULT_TRACER: ChatTracer | None = None


def get_tracer() -> ChatTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = ChatTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> ChatTracer:
    """Install a tracer built from *config*, shutting down the previous one."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    tracer = ChatTracer(config)
    tracer.init()
    _DEFAULT_TRACER = tracer
    return tracer


# ---------------------------------------------------------------------------
# Span helpers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_context_assembly(session_id: str) -> Generator[Span, None, None]:
    with get_tracer().span("context/assemble", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_model_call(model: str, stream: bool) -> Generator[Span, None, None]:
    with get_tracer().span("model/call", {"model.name": model, "model.stream": stream}) as s:
        yield s


@contextlib.contextmanager
def trace_summarize(session_id: str, kind: str) -> Generator[Span, None, None]:
    """Trace a title or memory summarization ("title" | "memory")."""
    with get_tracer().span(
        "summarize/run", {"session.id": session_id, "summarize.kind": kind}
    ) as s:
        yield s


@contextlib.contextmanager
def trace_sync(session_id: str, operation: str) -> Generator[Span, None, None]:
    with get_tracer().span(
        "sync/request", {"session.id": session_id, "sync.operation": operation}
    ) as s:
        yield s
