"""
structlog processors applied to every log event before rendering.
"""

from typing import Any, Callable, Dict, Iterable

from core.config.settings import Settings
from .correlation import CorrelationIdManager

REDACTED = "[REDACTED]"

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def add_correlation_id(logger, name, event_dict):
    """Add correlation ID to log events if available"""
    correlation_id = CorrelationIdManager.get_correlation_id()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
        correlation_context = CorrelationIdManager.get_correlation_context()
        if correlation_context:
            event_dict.setdefault("correlation_context", correlation_context)
    return event_dict


def make_standard_context(settings: Settings) -> Processor:
    """Bind standard context fields once from settings."""
    env = settings.environment.value
    app_name = settings.app_name
    version = settings.version

    def add_standard_context(logger, name, event_dict):
        event_dict.setdefault("env", env)
        event_dict.setdefault("service", app_name)
        event_dict.setdefault("version", version)
        return event_dict

    return add_standard_context


def make_redactor(keys: Iterable[str]) -> Processor:
    """Build a processor that redacts sensitive fields recursively.

    Matching is case-insensitive on dict keys; values nested in lists and
    tuples are walked too.
    """
    keys_to_redact = {k.lower() for k in keys}

    def _redact(obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = REDACTED
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, (list, tuple)):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict):
        return _redact(event_dict)

    return redact_sensitive


def normalize_error(logger, name, event_dict):
    """Add normalized error fields if an error is attached to the event."""
    error = event_dict.get("error")
    if isinstance(error, BaseException):
        event_dict.setdefault("error_type", type(error).__name__)
        event_dict["error"] = str(error)
    if "error" in event_dict and not event_dict.get("error_message"):
        event_dict["error_message"] = str(event_dict["error"])
    return event_dict
