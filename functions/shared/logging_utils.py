"""
JSON logging for the billing Lambdas.

Every line carries the API Gateway request id and, once the webhook has
parsed its payload, the Stripe event id, so one delivery can be followed
through CloudWatch Logs Insights.
"""

import json
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
stripe_event_id_var: ContextVar[str] = ContextVar("stripe_event_id", default="")

# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(),
            "function_name": os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        }
        stripe_event_id = stripe_event_id_var.get()
        if stripe_event_id:
            entry["stripe_event_id"] = stripe_event_id

        entry.update({k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(level: int = logging.INFO) -> logging.Logger:
    """Route the root logger through StructuredFormatter. Call first in each handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    stream = logging.StreamHandler()
    stream.setFormatter(StructuredFormatter())
    root_logger.addHandler(stream)
    return root_logger


def set_request_id(event: dict) -> str:
    """
    Bind the request id for this invocation.

    Prefers the API Gateway request id, then an X-Request-Id header, then a
    fresh UUID. Also clears any Stripe event id left by a previous
    invocation in the same container.
    """
    request_id = (event.get("requestContext") or {}).get("requestId")
    if not request_id:
        headers = event.get("headers") or {}
        request_id = headers.get("x-request-id") or headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid.uuid4())

    request_id_var.set(request_id)
    stripe_event_id_var.set("")
    return request_id


def set_stripe_event_id(event_id: str) -> None:
    stripe_event_id_var.set(event_id or "")


def mask_email(email: Optional[str]) -> str:
    """Mask an email address for log lines (``ali***@example.com``)."""
    if not email:
        return "<none>"
    local, _, domain = email.partition("@")
    if not domain:
        return local[:3] + "***"
    return f"{local[:3]}***@{domain}"


def log_api_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    latency_ms: float,
    user_id: Optional[str] = None,
) -> None:
    logger.info(
        f"{method} {path} -> {status_code}",
        extra={
            "http_method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": latency_ms,
            "user_id": user_id or "anonymous",
        },
    )


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log a call to Stripe or another dependency; failures at WARNING."""
    outcome = "success" if success else "failed"
    logger.log(
        logging.INFO if success else logging.WARNING,
        f"External call to {service}: {operation} -> {outcome}",
        extra={
            "service": service,
            "operation": operation,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
        },
    )
