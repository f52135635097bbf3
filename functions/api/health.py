"""
Health Check Endpoint - GET /health

Returns service status and which billing settings are present.
No authentication required.
"""

import json
import os
import time
from datetime import datetime, timezone

from billing.plans import PRICE_ENV_VARS
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id

logger = configure_structured_logging()


def handler(event, context):
    """
    Lambda handler for health check.

    Returns:
        200 with status information. Secret values are never echoed, only
        whether they are configured.
    """
    start_time = time.time()
    set_request_id(event)

    config = {
        "stripe_secret_configured": bool(
            os.environ.get("STRIPE_SECRET_ARN") or os.environ.get("STRIPE_SECRET_KEY")
        ),
        "webhook_secret_configured": bool(
            os.environ.get("STRIPE_WEBHOOK_SECRET_ARN") or os.environ.get("STRIPE_WEBHOOK_SECRET")
        ),
        "prices_configured": sum(1 for var in PRICE_ENV_VARS.values() if os.environ.get(var)),
    }

    response = {
        "statusCode": 200,
        "headers": {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        },
        "body": json.dumps({
            "status": "healthy",
            "version": "1.0.0",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config": config,
        }),
    }

    latency_ms = (time.time() - start_time) * 1000
    log_api_request(logger, "GET", "/health", 200, latency_ms)

    return response
