"""
Observability: run-scoped trace context and structured logging.

- Trace context propagates via ContextVar, no manual id passing
- JSON logging for production, colourised logging for development
"""

from flowrun.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "HumanReadableFormatter",
    "StructuredFormatter",
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
