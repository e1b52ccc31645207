"""OpenTelemetry tracing helpers for hybrid document retrieval.

The orchestrator opens one child span per stage (``embed``,
``vector_search``, ``keyword_search``, ``rank_fusion``, ``rerank``) on the
tracer it is given. Use :func:`traced_search` to add a parent span around a
whole search call.

Usage with Arize Phoenix (local backend):

    from docchat.tracing import configure_tracing, get_tracer, traced_search

    configure_tracing(
        endpoint="http://localhost:6006/v1/traces",
        service_name="docchat",
    )
    tracer = get_tracer("docchat.retrieval")
    searcher = HybridSearcher(embedder, retriever, reranker, tracer=tracer)
    search = traced_search(searcher.hybrid_search, tracer)
    result = await search("termination clause", user_id="u1", document_ids=["d1"])

Without a backend, ``configure_tracing()`` prints spans to stdout.
"""
from __future__ import annotations

from typing import Awaitable, Callable

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from .schema import RetrievalResult

# ---------------------------------------------------------------------------
# OpenInference semantic-convention attribute names
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_EMBEDDING_MODEL_NAME = "embedding.model_name"
ATTR_RERANKING_APPLIED = "retrieval.reranking_applied"
ATTR_SEARCH_METHOD = "retrieval.search_method"

# ---------------------------------------------------------------------------
# Provider lifecycle helpers
# ---------------------------------------------------------------------------

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "docchat",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint URL to send traces to. When *None* and
            no *exporter* is given, spans are printed to stdout.
        service_name: Label identifying this application in the backend.
        exporter: An already-constructed exporter (e.g. ``InMemorySpanExporter``
            in tests). When provided, *endpoint* is ignored.

    Returns:
        The configured :class:`~opentelemetry.sdk.trace.TracerProvider`.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint. Install it with:\n"
                "  pip install opentelemetry-exporter-otlp-proto-http"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the most recently configured provider.

    Falls back to the global (no-op unless configured) provider.
    """
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


# ---------------------------------------------------------------------------
# Span-wrapping helper
# ---------------------------------------------------------------------------


def traced_search(
    search: Callable[..., Awaitable[RetrievalResult]],
    tracer: trace.Tracer,
) -> Callable[..., Awaitable[RetrievalResult]]:
    """Wrap an async search callable so every call is recorded as a span.

    The span is named ``"document_search"`` and records the query, the number
    of passages returned, the search method and whether reranking ran.
    Exceptions mark the span as ERROR and are re-raised.
    """

    async def _wrapped(query: str, **kwargs) -> RetrievalResult:
        with tracer.start_as_current_span("document_search") as span:
            span.set_attribute(ATTR_INPUT_VALUE, query)
            try:
                result = await search(query, **kwargs)
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(result.passages))
            span.set_attribute(ATTR_SEARCH_METHOD, result.search_method)
            span.set_attribute(ATTR_RERANKING_APPLIED, result.reranking_applied)
            span.set_status(trace.StatusCode.OK)
            return result

    return _wrapped
