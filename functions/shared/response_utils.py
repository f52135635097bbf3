"""
API Gateway proxy responses for the billing endpoints.

Browser-facing endpoints (checkout, billing portal) pass the request Origin
so allowed frontends get CORS headers. The Stripe webhook never does.
"""

import json
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional

FRONTEND_URL = os.environ.get("FRONTEND_URL") or "https://sprouttie.app"

ALLOWED_ORIGINS: List[str] = [FRONTEND_URL]
if os.environ.get("ALLOW_DEV_CORS") == "true":
    ALLOWED_ORIGINS += ["http://localhost:3000", "http://127.0.0.1:3000"]


def get_cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """CORS headers for an allowed origin, or nothing."""
    if not origin or origin not in ALLOWED_ORIGINS:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Allow-Credentials": "true",
    }


def get_origin(event: dict) -> Optional[str]:
    headers = event.get("headers") or {}
    return headers.get("origin") or headers.get("Origin")


def decimal_default(obj: Any) -> Any:
    """json.dumps hook: DynamoDB numbers come back as Decimal."""
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _build(status_code: int, body: Any, headers: Optional[Dict[str, str]], origin: Optional[str]) -> dict:
    response_headers = {"Content-Type": "application/json", **get_cors_headers(origin)}
    response_headers.update(headers or {})
    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(body, default=decimal_default),
    }


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
    origin: Optional[str] = None,
) -> dict:
    """
    Error body: ``{"error": {"code": ..., "message": ..., "details"?: ...}}``.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message
        headers: Extra response headers
        details: Optional structured context
        origin: Request Origin header for CORS
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return _build(status_code, {"error": error}, headers, origin)


def success_response(
    data: Any,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    origin: Optional[str] = None,
) -> dict:
    """JSON body as-is, with CORS headers when the origin is allowed."""
    return _build(status_code, data, headers, origin)
