"""
Correlation ID system for tracing one logical API request across retries.
Provides request tracking and log correlation capabilities.
"""

import uuid
import contextvars
from contextlib import contextmanager
from typing import Optional, Dict, Any, Iterator

# Context variable to store correlation ID for the current request/operation
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)

# Context variable to store additional correlation context
_correlation_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    'correlation_context', default={}
)


class CorrelationIdManager:
    """Manager for correlation ID lifecycle and context propagation"""

    @staticmethod
    def generate_correlation_id() -> str:
        """Generate a new correlation ID using UUID4."""
        return str(uuid.uuid4())

    @staticmethod
    def get_correlation_id() -> Optional[str]:
        return _correlation_id.get()

    @staticmethod
    def get_correlation_context() -> Dict[str, Any]:
        return _correlation_context.get().copy()

    @staticmethod
    def clear_correlation() -> None:
        """Clear correlation ID and context from current context"""
        _correlation_id.set(None)
        _correlation_context.set({})


@contextmanager
def correlation_scope(operation: str, **additional_context) -> Iterator[str]:
    """
    Run a block under a correlation ID, restoring the previous one on exit.

    A nested scope reuses the outer correlation ID so a replayed request
    logs under the same ID as its first attempt.

    Args:
        operation: Name of the operation (e.g. "GET /client/accounts")
        **additional_context: Additional context key-value pairs

    Yields:
        The correlation ID in effect inside the block
    """
    outer_id = _correlation_id.get()
    correlation_id = outer_id or CorrelationIdManager.generate_correlation_id()
    id_token = _correlation_id.set(correlation_id)
    context = _correlation_context.get().copy()
    context.setdefault("operation", operation)
    context.update(additional_context)
    ctx_token = _correlation_context.set(context)
    try:
        yield correlation_id
    finally:
        _correlation_context.reset(ctx_token)
        _correlation_id.reset(id_token)
