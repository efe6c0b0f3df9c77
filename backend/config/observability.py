"""
Request context storage for structured logging.

The context is kept in a context variable so it follows the request through
threads and async tasks alike, and is merged into every log event by
``config.logging.add_request_context``.
"""

import contextvars
from typing import Any, Dict

_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "request_context", default={}
)


def set_request_context(
    request_id: str = "",
    trace_id: str = "",
    actor: str = "",
    path: str = "",
    method: str = "",
    **extra,
) -> None:
    """
    Set request context for the current execution context.

    This context will be automatically included in all log messages
    within the same request.
    """
    context = {
        "request_id": request_id,
        "trace_id": trace_id or request_id,  # Fall back to request_id if no trace_id
        "actor": actor,
        "path": path,
        "method": method,
        **extra,
    }
    # Filter out empty values
    context = {k: v for k, v in context.items() if v}
    _request_context.set(context)


def get_request_context() -> Dict[str, Any]:
    """Get the current request context."""
    return _request_context.get()


def clear_request_context() -> None:
    """Clear the request context."""
    _request_context.set({})
