"""
Webhook event ledger.

One DynamoDB item per Stripe event id, claimed with a conditional write
before any billing state is touched. Correctness across concurrent Lambda
invocations rests on DynamoDB's conditional check alone; there is no
in-process locking.

Records are never deleted. A claim whose processing failed stays in the
ledger with status "failed" and can be claimed again by Stripe's redelivery;
a "processing" claim from a crashed invocation can be taken over once its
lease has expired.
"""

import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from botocore.exceptions import ClientError

from billing.errors import PersistenceError
from shared.aws_clients import get_dynamodb

logger = logging.getLogger(__name__)

BILLING_EVENTS_TABLE = os.environ.get("BILLING_EVENTS_TABLE") or "sprouttie-billing-events"
CLAIM_LEASE_SECONDS = int(os.environ.get("CLAIM_LEASE_SECONDS") or "300")

STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    ALREADY_PROCESSED = "already_processed"


class EventLedger:
    """Append-only record of Stripe event ids this service has claimed."""

    def __init__(self, table=None, lease_seconds: int = CLAIM_LEASE_SECONDS):
        self.table = table if table is not None else get_dynamodb().Table(BILLING_EVENTS_TABLE)
        self.lease_seconds = lease_seconds

    def claim(
        self,
        event_id: str,
        event_type: str,
        customer_id: Optional[str] = None,
        livemode: Optional[bool] = None,
    ) -> ClaimResult:
        """Atomically claim an event id for processing.

        Returns:
            ClaimResult.CLAIMED if this invocation owns the event and should
            apply it, ClaimResult.ALREADY_PROCESSED if another delivery
            already did (or is doing) so.

        Raises:
            PersistenceError: if DynamoDB is unavailable.
        """
        now = int(time.time())
        try:
            response = self.table.update_item(
                Key={"pk": event_id},
                UpdateExpression=(
                    "SET event_type = :event_type, #status = :processing, claimed_at = :now, "
                    "first_claimed_at = if_not_exists(first_claimed_at, :now), "
                    "customer_id = :customer_id, livemode = :livemode, "
                    "attempts = if_not_exists(attempts, :zero) + :one"
                ),
                ConditionExpression=(
                    "attribute_not_exists(pk) OR #status = :failed "
                    "OR (#status = :processing AND claimed_at < :stale_before)"
                ),
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":event_type": event_type,
                    ":processing": STATUS_PROCESSING,
                    ":failed": STATUS_FAILED,
                    ":now": now,
                    ":stale_before": now - self.lease_seconds,
                    ":customer_id": customer_id or "unknown",
                    ":livemode": bool(livemode),
                    ":zero": 0,
                    ":one": 1,
                },
                ReturnValues="UPDATED_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return ClaimResult.ALREADY_PROCESSED
            raise PersistenceError(f"Failed to claim event {event_id}: {e}") from e

        attempts = int(response.get("Attributes", {}).get("attempts", 1))
        if attempts > 1:
            logger.info(f"Re-claimed event {event_id} for retry (attempt {attempts})")
        return ClaimResult.CLAIMED

    def mark_processed(self, event_id: str, outcome: str) -> None:
        """Record the final outcome (best-effort).

        The billing state is already committed at this point, so a failure
        here is logged rather than turned into a 500.
        """
        try:
            self.table.update_item(
                Key={"pk": event_id},
                UpdateExpression="SET #status = :processed, #outcome = :outcome, processed_at = :at",
                ExpressionAttributeNames={"#status": "status", "#outcome": "outcome"},
                ExpressionAttributeValues={
                    ":processed": STATUS_PROCESSED,
                    ":outcome": outcome,
                    ":at": datetime.now(timezone.utc).isoformat(),
                },
            )
        except ClientError as e:
            logger.error(f"Failed to mark event {event_id} processed: {e}")

    def mark_failed(self, event_id: str, error: str) -> None:
        """Flag a claimed event so Stripe's redelivery can claim it again.

        If this write fails too, the claim lease takes over.
        """
        try:
            self.table.update_item(
                Key={"pk": event_id},
                UpdateExpression="SET #status = :failed, #error = :error, failed_at = :at",
                ExpressionAttributeNames={"#status": "status", "#error": "error"},
                ExpressionAttributeValues={
                    ":failed": STATUS_FAILED,
                    ":error": error[:1000],
                    ":at": datetime.now(timezone.utc).isoformat(),
                },
            )
            logger.info(f"Marked event {event_id} failed to allow retry")
        except ClientError as e:
            logger.error(f"Failed to mark event {event_id} failed: {e}")

    def get(self, event_id: str) -> Optional[dict]:
        """Fetch the ledger record for an event id."""
        try:
            return self.table.get_item(Key={"pk": event_id}).get("Item")
        except ClientError as e:
            raise PersistenceError(f"Failed to read event {event_id}: {e}") from e
