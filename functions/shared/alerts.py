"""
Operator alerts via SNS.

Used for conditions that are acknowledged to Stripe but still need a human:
events whose user could not be resolved and prices missing from the catalog.
"""

import logging
import os

from shared.aws_clients import get_sns

logger = logging.getLogger(__name__)


def alert_operator(subject: str, message: str) -> bool:
    """Publish an alert to ALERT_TOPIC_ARN (best-effort).

    Returns:
        True if the alert was published, False if skipped or failed.
    """
    alert_topic_arn = os.environ.get("ALERT_TOPIC_ARN")
    if not alert_topic_arn:
        logger.debug("ALERT_TOPIC_ARN not configured, skipping alert")
        return False

    try:
        get_sns().publish(
            TopicArn=alert_topic_arn,
            Subject=f"Sprouttie: {subject}"[:100],
            Message=message,
        )
        logger.info(f"Operator alert sent: {subject}")
        return True
    except Exception as e:
        # Don't let SNS failures break webhook handling
        logger.error(f"Failed to send operator alert '{subject}': {e}")
        return False
