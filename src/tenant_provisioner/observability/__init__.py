"""Observability module for structured logging and OpenTelemetry-aligned tracing."""

from tenant_provisioner.observability.context import (
    bind_tenant,
    get_trace_context,
    set_trace_context,
    trace_context,
    unbind_tenant,
)
from tenant_provisioner.observability.logging import JsonFormatter, configure_logging
from tenant_provisioner.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "JsonFormatter",
    "bind_tenant",
    "configure_logging",
    "create_span",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "unbind_tenant",
]
