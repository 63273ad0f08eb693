import json
import logging

from opentelemetry import trace


def _configure(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


request_logger = _configure("rus.request")
audit_logger = _configure("rus.audit")
upload_logger = _configure("rus.upload")


def trace_id() -> str | None:
    span_context = trace.get_current_span().get_span_context()
    if not span_context or not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")


def log_event(logger: logging.Logger, payload: dict, level: int = logging.INFO) -> None:
    payload.setdefault("trace_id", trace_id())
    logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))


def audit_event(payload: dict) -> None:
    payload.setdefault("event", "audit")
    log_event(audit_logger, payload)
