"""
CloudWatch custom metrics for billing.

Emission is fire-and-forget: a metrics outage is logged and never changes
what the webhook answers Stripe.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional

from shared.aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE") or "Sprouttie"


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """
    Put one data point in the billing namespace.

    Args:
        metric_name: e.g. "UnknownPrice", "IdentityUnresolved"
        value: Data point value (default: 1.0)
        unit: CloudWatch unit name
        dimensions: Optional name -> value filters
    """
    datum = {
        "MetricName": metric_name,
        "Value": value,
        "Unit": unit,
        "Timestamp": datetime.now(timezone.utc),
    }
    if dimensions:
        datum["Dimensions"] = [{"Name": name, "Value": val} for name, val in dimensions.items()]

    try:
        get_cloudwatch().put_metric_data(Namespace=NAMESPACE, MetricData=[datum])
    except Exception as e:
        logger.warning(f"Failed to emit metric {metric_name}: {e}")
        return

    logger.debug(f"Emitted metric: {metric_name}={value} {unit}", extra={"dimensions": dimensions})


def emit_webhook_outcome(outcome: str, event_type: str) -> None:
    """Count one reconciled webhook delivery by outcome and event type."""
    emit_metric(
        "WebhookOutcome",
        dimensions={"Outcome": outcome, "EventType": event_type[:64]},
    )
